"""
Action Space Module
===================

Hybrid discrete + continuous action layout for soccer agents.

An ActorOutput is a flat float vector with a fixed layout:

    [ discrete scores (D) | continuous params (C) | message bits (M) ]

Each discrete action owns a subset of the continuous params (its "slots").
Message bits are the agent's outgoing communication, in [-1, 1].

Author: MARL Soccer Team
"""

import string
from dataclasses import dataclass
from typing import Tuple, Optional, Sequence, List

import numpy as np


# Alphabet used for in-game say messages
MESSAGE_ALPHABET = string.ascii_lowercase
_LEVELS = len(MESSAGE_ALPHABET) - 1


@dataclass(frozen=True)
class Action:
    """Executable action: discrete choice plus its continuous arguments."""
    action: int
    name: str
    args: Tuple[float, ...]


@dataclass(frozen=True)
class ActionSpace:
    """
    Layout of the ActorOutput vector for a task's action space.

    Attributes:
        action_names: Name per discrete action (D entries)
        param_slots: Continuous param indices owned by each discrete action
        param_min: Lower bound per continuous param (C entries)
        param_max: Upper bound per continuous param (C entries)
        message_size: Number of communication bits (M)

    Example:
        >>> space = hfo_action_space(message_size=2)
        >>> out = space.random_output(np.random.default_rng(0))
        >>> space.get_action(out).name in space.action_names
        True
    """
    action_names: Tuple[str, ...]
    param_slots: Tuple[Tuple[int, ...], ...]
    param_min: Tuple[float, ...]
    param_max: Tuple[float, ...]
    message_size: int = 0

    def __post_init__(self):
        if len(self.action_names) == 0:
            raise ValueError("Action space needs at least one discrete action")
        if len(self.param_slots) != len(self.action_names):
            raise ValueError(
                f"param_slots has {len(self.param_slots)} entries, "
                f"expected {len(self.action_names)}"
            )
        if len(self.param_min) != len(self.param_max):
            raise ValueError("param_min and param_max differ in length")
        for slots in self.param_slots:
            for idx in slots:
                if not 0 <= idx < len(self.param_min):
                    raise ValueError(f"Param slot {idx} out of range")
        if any(lo > hi for lo, hi in zip(self.param_min, self.param_max)):
            raise ValueError("param_min must not exceed param_max")
        if self.message_size < 0:
            raise ValueError("message_size must be >= 0")

    @property
    def num_discrete(self) -> int:
        return len(self.action_names)

    @property
    def num_continuous(self) -> int:
        return len(self.param_min)

    @property
    def output_size(self) -> int:
        """Length of an ActorOutput vector."""
        return self.num_discrete + self.num_continuous + self.message_size

    @property
    def discrete_slice(self) -> slice:
        return slice(0, self.num_discrete)

    @property
    def continuous_slice(self) -> slice:
        return slice(self.num_discrete, self.num_discrete + self.num_continuous)

    @property
    def message_slice(self) -> slice:
        start = self.num_discrete + self.num_continuous
        return slice(start, start + self.message_size)

    @property
    def low(self) -> np.ndarray:
        return np.asarray(self.param_min, dtype=np.float32)

    @property
    def high(self) -> np.ndarray:
        return np.asarray(self.param_max, dtype=np.float32)

    def check_output(self, actor_output: np.ndarray) -> np.ndarray:
        """Return actor_output as float32, raising ValueError on a bad length."""
        out = np.asarray(actor_output, dtype=np.float32)
        if out.shape != (self.output_size,):
            raise ValueError(
                f"ActorOutput has shape {out.shape}, expected ({self.output_size},)"
            )
        return out

    def random_output(self, rng: np.random.Generator) -> np.ndarray:
        """
        Draw a uniformly random ActorOutput.

        Discrete scores and message bits are uniform in [-1, 1],
        continuous params are uniform within their bounds.
        """
        out = np.empty(self.output_size, dtype=np.float32)
        out[self.discrete_slice] = rng.uniform(-1.0, 1.0, self.num_discrete)
        out[self.continuous_slice] = rng.uniform(self.low, self.high)
        out[self.message_slice] = rng.uniform(-1.0, 1.0, self.message_size)
        return out

    def randomize_non_message(
        self,
        actor_output: np.ndarray,
        rng: np.random.Generator
    ) -> np.ndarray:
        """Randomize scores and params, keeping the message bits as they are."""
        out = self.check_output(actor_output).copy()
        rand = self.random_output(rng)
        out[:self.message_slice.start] = rand[:self.message_slice.start]
        return out

    def _to_action(self, actor_output: np.ndarray, choice: int) -> Action:
        params = actor_output[self.continuous_slice]
        slots = self.param_slots[choice]
        args = tuple(
            float(np.clip(params[i], self.param_min[i], self.param_max[i]))
            for i in slots
        )
        return Action(action=int(choice), name=self.action_names[choice], args=args)

    def get_action(self, actor_output: np.ndarray) -> Action:
        """Convert an ActorOutput into an Action by maxing over discrete scores."""
        out = self.check_output(actor_output)
        choice = int(np.argmax(out[self.discrete_slice]))
        return self._to_action(out, choice)

    def sample_action(
        self,
        actor_output: np.ndarray,
        rng: np.random.Generator
    ) -> Action:
        """
        Convert an ActorOutput into an Action by sampling the discrete scores.

        Scores are unnormalized weights; negative scores count as zero and
        an all-zero score vector samples uniformly.
        """
        out = self.check_output(actor_output)
        weights = np.clip(out[self.discrete_slice].astype(np.float64), 0.0, None)
        total = weights.sum()
        if total <= 0.0 or not np.isfinite(total):
            probs = np.full(self.num_discrete, 1.0 / self.num_discrete)
        else:
            probs = weights / total
        choice = int(rng.choice(self.num_discrete, p=probs))
        return self._to_action(out, choice)

    def message(self, actor_output: np.ndarray) -> np.ndarray:
        """Message bits of an ActorOutput."""
        return self.check_output(actor_output)[self.message_slice]

    def format_output(self, actor_output: np.ndarray) -> str:
        """Human readable summary: every discrete score with its params."""
        out = self.check_output(actor_output)
        scores = out[self.discrete_slice]
        params = out[self.continuous_slice]
        parts = []
        for i, name in enumerate(self.action_names):
            args = ", ".join(f"{params[j]:.3f}" for j in self.param_slots[i])
            parts.append(f"{name}({args})={scores[i]:.3f}")
        text = " ".join(parts)
        if self.message_size:
            bits = " ".join(f"{b:.3f}" for b in out[self.message_slice])
            text += f" MSG[{bits}]"
        return text

    @classmethod
    def uniform(
        cls,
        num_discrete: int,
        num_continuous: int,
        message_size: int = 0,
        low: float = -1.0,
        high: float = 1.0
    ) -> "ActionSpace":
        """
        Build a generic action space with contiguous param slots.

        Continuous params are split as evenly as possible across the
        discrete actions, in order.
        """
        chunks = np.array_split(np.arange(num_continuous), num_discrete)
        return cls(
            action_names=tuple(f"A{i}" for i in range(num_discrete)),
            param_slots=tuple(tuple(int(i) for i in c) for c in chunks),
            param_min=(float(low),) * num_continuous,
            param_max=(float(high),) * num_continuous,
            message_size=message_size
        )


def hfo_action_space(message_size: int = 0) -> ActionSpace:
    """
    Parameterized soccer action space: DASH, TURN, KICK.

    Params: dash power, dash direction, turn direction, kick power,
    kick direction. Powers in [0, 100], directions in degrees [-180, 180].
    """
    return ActionSpace(
        action_names=("DASH", "TURN", "KICK"),
        param_slots=((0, 1), (2,), (3, 4)),
        param_min=(0.0, -180.0, -180.0, 0.0, -180.0),
        param_max=(100.0, 180.0, 180.0, 100.0, 180.0),
        message_size=message_size
    )


# =============================================================================
# IN-GAME MESSAGES
# =============================================================================

def encode_message(bits: Sequence[float]) -> str:
    """
    Quantize message bits in [-1, 1] to a string for in-game speech.

    Each bit becomes one lowercase letter ('a' = -1, 'z' = +1).
    """
    values = np.clip(np.asarray(bits, dtype=np.float64), -1.0, 1.0)
    levels = np.rint((values + 1.0) / 2.0 * _LEVELS).astype(int)
    return "".join(MESSAGE_ALPHABET[i] for i in levels)


def decode_message(message: Optional[str], message_size: int) -> np.ndarray:
    """
    Inverse of encode_message.

    Missing, short or malformed messages decode to zeros in the
    affected positions.
    """
    bits = np.zeros(message_size, dtype=np.float32)
    if not message:
        return bits
    for i, ch in enumerate(message[:message_size]):
        idx = MESSAGE_ALPHABET.find(ch)
        if idx >= 0:
            bits[i] = idx / _LEVELS * 2.0 - 1.0
    return bits


def decode_hear_features(
    messages: Sequence[Optional[str]],
    message_size: int,
    num_teammates: int
) -> np.ndarray:
    """
    Turn messages heard from teammates into a flat feature vector.

    Args:
        messages: One message per teammate (None if silent)
        message_size: Bits per message
        num_teammates: Number of teammates expected

    Returns:
        Array of shape (num_teammates * message_size,)
    """
    feats: List[np.ndarray] = []
    for i in range(num_teammates):
        msg = messages[i] if i < len(messages) else None
        feats.append(decode_message(msg, message_size))
    if not feats:
        return np.zeros(0, dtype=np.float32)
    return np.concatenate(feats).astype(np.float32)
