"""
DQN Agent Module
================

Actor-critic Deep Q-Learning agent for parameterized soccer actions.

Key Features:
    - Epsilon-greedy selection over hybrid discrete + continuous actions
    - Target-network bootstrapped labeling of episode transitions
    - Critic regression + deterministic policy gradient actor step
    - Inverting gradients to keep continuous params within bounds
    - Soft target updates after every step
    - Optional communication channel and semantic message network
    - Lockstep team updates (see synchronization.py)
    - Snapshots of networks, solver state and replay memory

Reference: Hausknecht & Stone, "Deep Reinforcement Learning in
Parameterized Action Space" (ICLR 2016)

Author: MARL Soccer Team
"""

import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import torch
import torch.nn.functional as F

from environment.action_space import (
    Action,
    ActionSpace,
    decode_hear_features,
    encode_message,
)

from .actor import Actor
from .approximator import FunctionApproximator, TorchApproximator
from .critic import Critic, SemanticNet
from .replay_memory import InsufficientMemoryError, ReplayMemory, Transition
from .snapshot import (
    SnapshotPaths,
    find_latest_snapshot,
    remove_snapshots,
    snapshot_paths,
)
from . import synchronization


# Weight of the newest loss in the exponentially smoothed losses
LOSS_SMOOTHING = 0.01


class DQNAgent:
    """
    Actor-critic DQN agent.

    The networks are opaque function approximators: the agent only runs
    them forward, pushes gradients back into them and asks them to step.

    Attributes:
        action_space: Layout of the ActorOutput vector
        actor, critic: Online approximators
        actor_target, critic_target: Slowly tracking copies
        semantic: Message approximator (None without communication)
        memory: Replay memory (possibly shared with teammates)
        rng: Per-agent random generator

    Example:
        >>> space = hfo_action_space()
        >>> agent = DQNAgent(space, state_size=58, seed=1)
        >>> out = agent.select_action(state, task_id=0, epsilon=0.1)
        >>> action = agent.get_action(out)
        >>> # ... collect an episode ...
        >>> agent.add_transitions(agent.label_transitions(episode))
        >>> if agent.ready_to_update():
        ...     stats = agent.update()
    """

    def __init__(
        self,
        action_space: ActionSpace,
        state_size: int,
        state_input_count: int = 1,
        num_tasks: int = 1,
        num_teammates: int = 0,
        gamma: float = 0.99,
        tau: float = 0.001,
        replay_capacity: int = 500_000,
        minibatch_size: int = 32,
        actor_lr: float = 1e-5,
        critic_lr: float = 1e-3,
        semantic_lr: float = 1e-3,
        hidden_dim: int = 128,
        invert_gradients: bool = True,
        seed: int = 0,
        device: str = "cpu",
        actor: Optional[FunctionApproximator] = None,
        critic: Optional[FunctionApproximator] = None,
        semantic: Optional[FunctionApproximator] = None
    ):
        """
        Initialize agent.

        Args:
            action_space: Discrete actions, param bounds and message size
            state_size: Features per observation
            state_input_count: Observations per state stack
            num_tasks: Number of task ids the networks are conditioned on
            num_teammates: Teammates heard through the message slots
            gamma: Discount factor in [0, 1)
            tau: Soft target update rate in [0, 1]
            replay_capacity: Replay memory capacity
            minibatch_size: Transitions per update
            actor_lr, critic_lr, semantic_lr: Adam learning rates
            hidden_dim: Hidden layer size of the default networks
            invert_gradients: Bound continuous params with inverting gradients
            seed: Seed for this agent's RNG and network initialization
            device: Torch device
            actor, critic, semantic: Custom approximators replacing the defaults
        """
        if state_size <= 0:
            raise ValueError(f"state_size must be positive, got {state_size}")
        if state_input_count < 1:
            raise ValueError(f"state_input_count must be >= 1, got {state_input_count}")
        if num_tasks < 1:
            raise ValueError(f"num_tasks must be >= 1, got {num_tasks}")
        if not 0.0 <= gamma < 1.0:
            raise ValueError(f"gamma must be in [0, 1), got {gamma}")
        if not 0.0 <= tau <= 1.0:
            raise ValueError(f"tau must be in [0, 1], got {tau}")
        if minibatch_size <= 0:
            raise ValueError(f"minibatch_size must be positive, got {minibatch_size}")
        if num_teammates < 0:
            raise ValueError(f"num_teammates must be >= 0, got {num_teammates}")
        if action_space.message_size * num_teammates > state_size:
            raise ValueError(
                f"{num_teammates} teammates x {action_space.message_size} message bits "
                f"do not fit in a state of {state_size} features"
            )

        self.action_space = action_space
        self.state_size = state_size
        self.state_input_count = state_input_count
        self.num_tasks = num_tasks
        self.num_teammates = num_teammates
        self.gamma = gamma
        self.tau = tau
        self.minibatch_size = minibatch_size
        self.invert_gradients = invert_gradients
        self.seed = seed
        self.device = torch.device(device)

        self.rng = np.random.default_rng(seed)
        self.memory = ReplayMemory(replay_capacity)
        self.memory_shared = False

        with torch.random.fork_rng(devices=[]):
            torch.manual_seed(seed)
            self.actor = actor or TorchApproximator(
                Actor(
                    state_size=state_size,
                    num_discrete=action_space.num_discrete,
                    num_continuous=action_space.num_continuous,
                    message_size=action_space.message_size,
                    state_input_count=state_input_count,
                    num_tasks=num_tasks,
                    hidden_dim=hidden_dim,
                    param_init=(action_space.low + action_space.high) / 2.0
                ),
                lambda p: torch.optim.Adam(p, lr=actor_lr),
                device=self.device
            )
            self.critic = critic or TorchApproximator(
                Critic(
                    state_size=state_size,
                    action_size=action_space.output_size,
                    state_input_count=state_input_count,
                    num_tasks=num_tasks,
                    hidden_dim=hidden_dim
                ),
                lambda p: torch.optim.Adam(p, lr=critic_lr),
                device=self.device
            )
            self.semantic = semantic
            if self.semantic is None and action_space.message_size > 0:
                self.semantic = TorchApproximator(
                    SemanticNet(
                        state_size=state_size,
                        message_size=action_space.message_size,
                        state_input_count=state_input_count,
                        num_tasks=num_tasks,
                        hidden_dim=hidden_dim
                    ),
                    lambda p: torch.optim.Adam(p, lr=semantic_lr),
                    device=self.device
                )

        self.actor_target = self.actor.clone()
        self.critic_target = self.critic.clone()

        self.smoothed_critic_loss = 0.0
        self.smoothed_actor_loss = 0.0
        self.smoothed_semantic_loss = 0.0

    # -------------------------------------------------------------------------
    # Sizes and counters
    # -------------------------------------------------------------------------

    @property
    def message_size(self) -> int:
        return self.action_space.message_size

    @property
    def state_shape(self):
        return (self.state_input_count, self.state_size)

    @property
    def actor_iter(self) -> int:
        return self.actor.iteration

    @property
    def critic_iter(self) -> int:
        return self.critic.iteration

    @property
    def semantic_iter(self) -> int:
        return self.semantic.iteration if self.semantic is not None else 0

    @property
    def min_iter(self) -> int:
        return min(self.actor_iter, self.critic_iter)

    @property
    def max_iter(self) -> int:
        return max(self.actor_iter, self.critic_iter, self.semantic_iter)

    @property
    def memory_size(self) -> int:
        return len(self.memory)

    # -------------------------------------------------------------------------
    # Input checks and conversions
    # -------------------------------------------------------------------------

    def _check_state(self, state: np.ndarray) -> np.ndarray:
        state = np.asarray(state, dtype=np.float32)
        if state.shape != self.state_shape:
            raise ValueError(
                f"State stack has shape {state.shape}, expected {self.state_shape}"
            )
        return state

    def _check_task(self, task_id: int) -> int:
        if not 0 <= int(task_id) < self.num_tasks:
            raise ValueError(f"task_id {task_id} not in [0, {self.num_tasks})")
        return int(task_id)

    def as_tensor(self, array: np.ndarray) -> torch.Tensor:
        return torch.as_tensor(np.asarray(array, dtype=np.float32), device=self.device)

    def _task_tensor(self, task_ids) -> torch.Tensor:
        return torch.as_tensor(np.asarray(task_ids, dtype=np.int64), device=self.device)

    # -------------------------------------------------------------------------
    # Action selection
    # -------------------------------------------------------------------------

    def get_actor_outputs(self, states: np.ndarray, task_ids: Sequence[int]) -> np.ndarray:
        """Greedy ActorOutputs for a batch of state stacks."""
        with torch.no_grad():
            out = self.actor(self.as_tensor(states), self._task_tensor(task_ids))
        return out.cpu().numpy()

    def select_actions(
        self,
        states: Sequence[np.ndarray],
        task_ids: Sequence[int],
        epsilon: float,
        randomize_messages: bool = False
    ) -> List[np.ndarray]:
        """Epsilon-greedy ActorOutputs for a batch of state stacks."""
        if len(states) != len(task_ids):
            raise ValueError("states and task_ids differ in length")
        batch = np.stack([self._check_state(s) for s in states])
        tasks = [self._check_task(t) for t in task_ids]
        outputs = self.get_actor_outputs(batch, tasks)

        selected = []
        for out in outputs:
            if self.rng.random() < epsilon:
                if randomize_messages:
                    out = self.action_space.random_output(self.rng)
                else:
                    out = self.action_space.randomize_non_message(out, self.rng)
            selected.append(out.astype(np.float32))
        return selected

    def select_action(
        self,
        state: np.ndarray,
        task_id: int,
        epsilon: float,
        randomize_messages: bool = False
    ) -> np.ndarray:
        """
        Epsilon-greedy ActorOutput for one state stack.

        With probability epsilon the scores and params are replaced by a
        uniformly random ActorOutput. Message bits stay greedy unless
        randomize_messages is set.
        """
        return self.select_actions([state], [task_id], epsilon, randomize_messages)[0]

    def get_action(self, actor_output: np.ndarray) -> Action:
        """Arg-max conversion of an ActorOutput."""
        return self.action_space.get_action(actor_output)

    def sample_action(self, actor_output: np.ndarray) -> Action:
        """Score-weighted sampling conversion of an ActorOutput."""
        return self.action_space.sample_action(actor_output, self.rng)

    def format_actor_output(self, actor_output: np.ndarray) -> str:
        return self.action_space.format_output(actor_output)

    def evaluate_action(
        self,
        state: np.ndarray,
        task_id: int,
        actor_output: np.ndarray
    ) -> float:
        """Q value of an ActorOutput under the online critic."""
        state = self._check_state(state)
        actor_output = self.action_space.check_output(actor_output)
        task_id = self._check_task(task_id)
        with torch.no_grad():
            q = self.critic(
                self.as_tensor(state[None]),
                self._task_tensor([task_id]),
                self.as_tensor(actor_output[None])
            )
        return float(q.item())

    # -------------------------------------------------------------------------
    # Communication
    # -------------------------------------------------------------------------

    def get_say_message(self, actor_output: np.ndarray) -> str:
        """Message bits of an ActorOutput, encoded for in-game speech."""
        return encode_message(self.action_space.message(actor_output))

    def get_hear_features(self, messages: Sequence[Optional[str]]) -> np.ndarray:
        return decode_hear_features(messages, self.message_size, self.num_teammates)

    def set_hear_features(
        self,
        observation: np.ndarray,
        messages: Sequence[Optional[str]]
    ) -> np.ndarray:
        """Copy of an observation with heard messages written into its slots."""
        obs = np.array(observation, dtype=np.float32, copy=True)
        width = self.message_size * self.num_teammates
        if width:
            obs[-width:] = self.get_hear_features(messages)
        return obs

    def get_semantic_message(self, state: np.ndarray, task_id: int) -> str:
        """Message the semantic network associates with a state, as a string."""
        if self.semantic is None:
            raise ValueError("Agent has no semantic network (message_size is 0)")
        state = self._check_state(state)
        task_id = self._check_task(task_id)
        with torch.no_grad():
            bits = self.semantic(self.as_tensor(state[None]), self._task_tensor([task_id]))
        return encode_message(bits[0].cpu().numpy())

    # -------------------------------------------------------------------------
    # Labeling and replay
    # -------------------------------------------------------------------------

    def target_values(self, next_states: np.ndarray, task_ids: Sequence[int]) -> np.ndarray:
        """Q'(s', a'(s')) under the target networks."""
        with torch.no_grad():
            s = self.as_tensor(next_states)
            t = self._task_tensor(task_ids)
            q = self.critic_target(s, t, self.actor_target(s, t))
        return q.squeeze(-1).cpu().numpy()

    def label_transitions(self, transitions: Sequence[Transition]) -> List[Transition]:
        """
        Fill in on-policy targets.

        Non-terminal transitions get r + gamma * Q'(s', a'(s')), terminal
        ones get r.
        """
        labeled = [t.with_target(t.reward) for t in transitions]
        pending = [i for i, t in enumerate(transitions) if not t.terminal]
        if pending:
            values = self.target_values(
                np.stack([self._check_state(transitions[i].next_state) for i in pending]),
                [transitions[i].task_id for i in pending]
            )
            for i, v in zip(pending, values):
                t = transitions[i]
                labeled[i] = t.with_target(t.reward + self.gamma * float(v))
        return labeled

    def add_transition(self, transition: Transition):
        self._check_state(transition.state)
        self._check_task(transition.task_id)
        self.action_space.check_output(transition.actor_output)
        if transition.next_state is not None:
            self._check_state(transition.next_state)
        if not transition.labeled:
            raise ValueError("Only labeled transitions may enter the replay memory")
        self.memory.add(transition)

    def add_transitions(self, transitions: Sequence[Transition]):
        for t in transitions:
            self.add_transition(t)

    def clear_replay_memory(self):
        self.memory.clear()

    def sample_states(self, n: int) -> np.ndarray:
        return self.memory.sample_states(n, self.rng)

    def ready_to_update(self) -> bool:
        return len(self.memory) >= self.minibatch_size

    def share_replay_memory(self, other: "DQNAgent"):
        """Make other store into and sample from this agent's memory."""
        other.memory = self.memory
        other.memory_shared = True
        self.memory_shared = True

    def share_parameters(self, other: "DQNAgent", num_actor_layers: int, num_critic_layers: int):
        """Make other use this agent's first layers of actor and critic."""
        self.actor.share_layers(other.actor, num_actor_layers)
        self.critic.share_layers(other.critic, num_critic_layers)

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def record_losses(
        self,
        critic_loss: Optional[float] = None,
        actor_loss: Optional[float] = None,
        semantic_loss: Optional[float] = None
    ):
        keep = 1.0 - LOSS_SMOOTHING
        if critic_loss is not None:
            self.smoothed_critic_loss = keep * self.smoothed_critic_loss + LOSS_SMOOTHING * critic_loss
        if actor_loss is not None:
            self.smoothed_actor_loss = keep * self.smoothed_actor_loss + LOSS_SMOOTHING * actor_loss
        if semantic_loss is not None:
            self.smoothed_semantic_loss = keep * self.smoothed_semantic_loss + LOSS_SMOOTHING * semantic_loss

    def critic_step(
        self,
        states: np.ndarray,
        task_ids: np.ndarray,
        actions: np.ndarray,
        targets: np.ndarray
    ) -> float:
        """Regress Q(s, a) onto on-policy targets; returns the MSE loss."""
        q = self.critic(
            self.as_tensor(states),
            self._task_tensor(task_ids),
            self.as_tensor(actions)
        ).squeeze(-1)
        loss = F.mse_loss(q, self.as_tensor(targets))
        self.critic.backward(loss)
        self.critic.update()
        return float(loss.item())

    def bound_gradients(self, actor_output: torch.Tensor, loss_grad: torch.Tensor) -> torch.Tensor:
        """
        Inverting gradients on the continuous params.

        Steps that grow a param are scaled by its remaining headroom to the
        upper bound, steps that shrink it by the headroom to the lower bound.
        """
        if not self.invert_gradients or self.action_space.num_continuous == 0:
            return loss_grad
        sl = self.action_space.continuous_slice
        low = self.as_tensor(self.action_space.low)
        high = self.as_tensor(self.action_space.high)
        width = torch.clamp(high - low, min=1e-8)
        params = actor_output[:, sl]
        grad = loss_grad[:, sl]
        # A negative loss gradient moves the param up
        scale = torch.where(grad < 0, (high - params) / width, (params - low) / width)
        bounded = loss_grad.clone()
        bounded[:, sl] = grad * scale
        return bounded

    def actor_step(self, states: np.ndarray, task_ids: np.ndarray) -> float:
        """
        Deterministic policy gradient step.

        dQ/da is taken through the critic on a detached action, so the
        critic's own parameters receive no gradient.
        """
        s = self.as_tensor(states)
        t = self._task_tensor(task_ids)
        actor_out = self.actor(s, t)
        action = actor_out.detach().requires_grad_(True)
        loss = -self.critic(s, t, action).mean()
        (loss_grad,) = torch.autograd.grad(loss, action)
        self.actor.backward(actor_out, self.bound_gradients(action.detach(), loss_grad))
        self.actor.update()
        return float(loss.item())

    def soft_update_targets(self):
        self.actor_target.soft_update(self.actor, self.tau)
        self.critic_target.soft_update(self.critic, self.tau)

    def update_on_batch(self, batch: Sequence[Transition]) -> Dict[str, float]:
        states = np.stack([t.state for t in batch])
        task_ids = np.array([t.task_id for t in batch], dtype=np.int64)
        actions = np.stack([t.actor_output for t in batch])
        targets = np.array([t.target for t in batch], dtype=np.float32)

        critic_loss = self.critic_step(states, task_ids, actions, targets)
        actor_loss = self.actor_step(states, task_ids)
        self.soft_update_targets()
        self.record_losses(critic_loss=critic_loss, actor_loss=actor_loss)

        return {
            "critic_loss": critic_loss,
            "actor_loss": actor_loss,
            "avg_q": -actor_loss
        }

    def update(self) -> Dict[str, float]:
        """
        One actor-critic update on a uniformly sampled minibatch.

        Raises:
            InsufficientMemoryError: If the memory holds fewer than a minibatch
        """
        return self.update_on_batch(self.memory.sample(self.minibatch_size, self.rng))

    def synchronized_update(self, group, participant: int) -> Dict[str, float]:
        return synchronization.synchronized_update(self, group, participant)

    def dial_update(self, group, participant: int, episode: Sequence[Transition]) -> Dict[str, float]:
        return synchronization.dial_update(self, group, participant, episode)

    def approx_synchronized_update(self, group, participant: int) -> Dict[str, float]:
        return synchronization.approx_synchronized_update(self, group, participant)

    def update_semantic(self, teammate_memory: ReplayMemory) -> float:
        """
        Train the semantic network on a teammate's experience.

        Targets are the message bits the teammate actually emitted.
        """
        if self.semantic is None:
            raise ValueError("Agent has no semantic network (message_size is 0)")
        batch = teammate_memory.sample(self.minibatch_size, self.rng)
        states = np.stack([self._check_state(t.state) for t in batch])
        task_ids = np.array([t.task_id for t in batch], dtype=np.int64)
        messages = np.stack([
            self.action_space.message(t.actor_output) for t in batch
        ])

        out = self.semantic(self.as_tensor(states), self._task_tensor(task_ids))
        loss = F.mse_loss(out, self.as_tensor(messages))
        self.semantic.backward(loss)
        self.semantic.update()

        loss = float(loss.item())
        self.record_losses(semantic_loss=loss)
        return loss

    def benchmark(self, iterations: int = 1000) -> Dict[str, float]:
        """Time full updates on the current memory."""
        if not self.ready_to_update():
            raise InsufficientMemoryError(
                f"Benchmark needs {self.minibatch_size} transitions, "
                f"memory holds {len(self.memory)}"
            )
        start = time.perf_counter()
        for _ in range(iterations):
            self.update()
        elapsed = time.perf_counter() - start
        return {
            "iterations": float(iterations),
            "seconds": elapsed,
            "updates_per_second": iterations / elapsed if elapsed > 0 else float("inf")
        }

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def snapshot(
        self,
        prefix: Union[str, Path],
        remove_old: bool = False,
        snapshot_memory: bool = True
    ) -> SnapshotPaths:
        """
        Save networks, solver state and optionally the replay memory.

        Files are tagged with max_iter, which counts semantic updates too.
        The replay memory goes first and every solver state right after its
        model, so an interrupted first write of a snapshot always lacks at
        least one required file. Rewriting an existing snapshot at the same
        iteration replaces files one at a time and can leave a mix.
        """
        iteration = self.max_iter
        paths = snapshot_paths(prefix, iteration, with_semantic=self.semantic is not None)
        if snapshot_memory:
            self.memory.save(paths.memory)
        self.actor.save(paths.actor)
        self.critic.save(paths.critic)
        if self.semantic is not None:
            self.semantic.save(paths.semantic)
        if remove_old:
            remove_snapshots(prefix, iteration)
        return paths

    def load_actor_weights(self, path: Union[str, Path]):
        self.actor.load_weights(path)
        self.actor_target = self.actor.clone()

    def load_critic_weights(self, path: Union[str, Path]):
        self.critic.load_weights(path)
        self.critic_target = self.critic.clone()

    def load_semantic_weights(self, path: Union[str, Path]):
        if self.semantic is None:
            raise ValueError("Agent has no semantic network (message_size is 0)")
        self.semantic.load_weights(path)

    def restore_actor_solver(self, path: Union[str, Path]):
        self.actor.restore_solver(path)

    def restore_critic_solver(self, path: Union[str, Path]):
        self.critic.restore_solver(path)

    def restore_semantic_solver(self, path: Union[str, Path]):
        if self.semantic is None:
            raise ValueError("Agent has no semantic network (message_size is 0)")
        self.semantic.restore_solver(path)

    def restore_snapshot(
        self,
        paths: SnapshotPaths,
        load_solver: bool = True,
        load_memory: bool = True
    ):
        """
        Restore an explicit snapshot.

        Raises:
            FileNotFoundError: If a required file is missing
        """
        for p in paths.required_files(load_solver, load_memory):
            if not p.exists():
                raise FileNotFoundError(f"Missing snapshot file: {p}")

        self.load_actor_weights(paths.actor_model)
        self.load_critic_weights(paths.critic_model)
        if self.semantic is not None and paths.semantic is not None:
            self.load_semantic_weights(paths.semantic_model)
        if load_solver:
            self.restore_actor_solver(paths.actor_solver)
            self.restore_critic_solver(paths.critic_solver)
            if self.semantic is not None and paths.semantic is not None:
                self.restore_semantic_solver(paths.semantic_solver)
        if load_memory:
            self.memory.load(paths.memory, self.state_shape, self.action_space.output_size)

    def restore_latest(
        self,
        prefix: Union[str, Path],
        load_solver: bool = True,
        load_memory: bool = True
    ) -> Optional[int]:
        """
        Restore the newest complete snapshot with this prefix.

        Returns:
            The restored iteration, or None when training starts fresh
        """
        paths = find_latest_snapshot(
            prefix,
            load_solver=load_solver,
            load_memory=load_memory,
            with_semantic=self.semantic is not None
        )
        if paths is None:
            return None
        self.restore_snapshot(paths, load_solver=load_solver, load_memory=load_memory)
        return paths.iteration
