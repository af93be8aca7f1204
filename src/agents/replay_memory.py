"""
Replay Memory Module
====================

Bounded FIFO experience store for off-policy actor-critic training.

Stores:
    - State stacks
    - Task ids
    - ActorOutputs
    - Rewards
    - On-policy targets (filled in by labeling)
    - Next state stacks (None at episode end)

A single instance may be shared by reference between agent threads, so
every public operation holds the internal lock.

Author: MARL Soccer Team
"""

import os
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np


class InsufficientMemoryError(ValueError):
    """Raised when a sample is requested from a memory holding too few entries."""


def _frozen(array: np.ndarray) -> np.ndarray:
    out = np.array(array, dtype=np.float32, copy=True)
    out.flags.writeable = False
    return out


@dataclass(frozen=True, eq=False)
class Transition:
    """
    One step of experience.

    next_state is None exactly when the transition ends an episode.
    on_policy_target is None until the transition has been labeled.
    """
    state: np.ndarray
    task_id: int
    actor_output: np.ndarray
    reward: float
    on_policy_target: Optional[float] = None
    next_state: Optional[np.ndarray] = None

    def __post_init__(self):
        object.__setattr__(self, "state", _frozen(self.state))
        object.__setattr__(self, "actor_output", _frozen(self.actor_output))
        if self.next_state is not None:
            object.__setattr__(self, "next_state", _frozen(self.next_state))
        object.__setattr__(self, "task_id", int(self.task_id))
        object.__setattr__(self, "reward", float(self.reward))

    @property
    def terminal(self) -> bool:
        return self.next_state is None

    @property
    def labeled(self) -> bool:
        return self.on_policy_target is not None

    @property
    def target(self) -> float:
        """The on-policy target; reading it before labeling is an error."""
        if self.on_policy_target is None:
            raise ValueError("Transition has not been labeled yet")
        return self.on_policy_target

    def with_target(self, target: float) -> "Transition":
        return replace(self, on_policy_target=float(target))


class ReplayMemory:
    """
    Fixed-capacity FIFO of transitions with uniform sampling.

    Attributes:
        capacity: Maximum number of stored transitions

    Example:
        >>> memory = ReplayMemory(capacity=1000)
        >>> memory.add(transition)
        >>> batch = memory.sample(32, np.random.default_rng(0))
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"Replay capacity must be positive, got {capacity}")
        self.capacity = capacity
        # Ring storage: once full, _start is the slot of the oldest transition
        self._buffer: List[Transition] = []
        self._start = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    def __getitem__(self, index: int) -> Transition:
        with self._lock:
            return self._at(index)

    def _at(self, index: int) -> Transition:
        size = len(self._buffer)
        if index < 0:
            index += size
        if not 0 <= index < size:
            raise IndexError(f"Replay index {index} out of range for size {size}")
        return self._buffer[(self._start + index) % size]

    def _ordered(self) -> List[Transition]:
        """Transitions oldest first."""
        return self._buffer[self._start:] + self._buffer[:self._start]

    def __iter__(self) -> Iterator[Transition]:
        # Iterate over a snapshot so concurrent adds cannot break iteration
        with self._lock:
            items = self._ordered()
        return iter(items)

    def add(self, transition: Transition):
        """Append a transition, evicting the oldest one at capacity."""
        with self._lock:
            if len(self._buffer) < self.capacity:
                self._buffer.append(transition)
            else:
                self._buffer[self._start] = transition
                self._start = (self._start + 1) % self.capacity

    def extend(self, transitions: Sequence[Transition]):
        with self._lock:
            for t in transitions:
                self.add(t)

    def clear(self):
        with self._lock:
            self._buffer = []
            self._start = 0

    def sample_indices(self, n: int, rng: np.random.Generator) -> np.ndarray:
        """Draw n indices uniformly with replacement."""
        with self._lock:
            size = len(self._buffer)
            if size < n or size == 0:
                raise InsufficientMemoryError(
                    f"Cannot sample {n} transitions from a memory of {size}"
                )
            return rng.integers(0, size, size=n)

    def get(self, indices: Sequence[int]) -> List[Transition]:
        with self._lock:
            return [self._at(int(i)) for i in indices]

    def sample(self, n: int, rng: np.random.Generator) -> List[Transition]:
        """Sample n transitions uniformly with replacement."""
        with self._lock:
            return self.get(self.sample_indices(n, rng))

    def sample_states(self, n: int, rng: np.random.Generator) -> np.ndarray:
        """Sample n state stacks, shape (n, state_input_count, state_size)."""
        batch = self.sample(n, rng)
        return np.stack([t.state for t in batch])

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, path: Union[str, Path]):
        """
        Write all transitions, oldest first, to a compressed numpy archive.

        The archive goes through a temporary file, so an interrupted save
        never leaves a truncated file under the final name.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            items = self._ordered()

        arrays = {"capacity": np.array(self.capacity)}
        if items:
            terminal = np.array([t.terminal for t in items])
            labeled = np.array([t.labeled for t in items])
            arrays.update(
                states=np.stack([t.state for t in items]),
                task_ids=np.array([t.task_id for t in items], dtype=np.int64),
                actor_outputs=np.stack([t.actor_output for t in items]),
                rewards=np.array([t.reward for t in items], dtype=np.float32),
                targets=np.array(
                    [t.on_policy_target if t.labeled else np.nan for t in items],
                    dtype=np.float64
                ),
                labeled=labeled,
                terminal=terminal,
                next_states=np.stack([
                    np.zeros_like(t.state) if t.terminal else t.next_state
                    for t in items
                ])
            )

        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "wb") as f:
            np.savez_compressed(f, **arrays)
        os.replace(tmp, path)

    def load(
        self,
        path: Union[str, Path],
        state_shape: Optional[Tuple[int, int]] = None,
        output_size: Optional[int] = None
    ):
        """
        Replace the contents with transitions read from an archive.

        The archive is fully decoded before the memory is touched. If the
        archive holds more transitions than the capacity, the newest are kept.

        Raises:
            FileNotFoundError: If the archive does not exist
            ValueError: If stored shapes disagree with state_shape/output_size
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Missing replay memory file: {path}")

        with np.load(path) as data:
            arrays = {k: data[k] for k in data.files}

        items: List[Transition] = []
        if "states" in arrays:
            states = arrays["states"]
            outputs = arrays["actor_outputs"]
            if state_shape is not None and tuple(states.shape[1:]) != tuple(state_shape):
                raise ValueError(
                    f"Stored states have shape {states.shape[1:]}, "
                    f"expected {tuple(state_shape)}"
                )
            if output_size is not None and outputs.shape[1] != output_size:
                raise ValueError(
                    f"Stored actor outputs have size {outputs.shape[1]}, "
                    f"expected {output_size}"
                )
            for i in range(len(states)):
                items.append(Transition(
                    state=states[i],
                    task_id=int(arrays["task_ids"][i]),
                    actor_output=outputs[i],
                    reward=float(arrays["rewards"][i]),
                    on_policy_target=float(arrays["targets"][i]) if arrays["labeled"][i] else None,
                    next_state=None if arrays["terminal"][i] else arrays["next_states"][i]
                ))

        with self._lock:
            self._buffer = items[-self.capacity:]
            self._start = 0
