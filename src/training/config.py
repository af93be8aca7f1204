"""
Training Configuration Module
=============================

Centralized configuration for agents and training runs.

Author: MARL Soccer Team
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any
import json
from pathlib import Path

from environment.action_space import ActionSpace, hfo_action_space


COMM_MODES = ("none", "sync", "approx_sync", "dial")


@dataclass
class AgentConfig:
    """Agent and network configuration."""

    # State
    state_size: int = 58            # Features per observation
    state_input_count: int = 1      # Observations per state stack
    num_tasks: int = 1              # Task ids the networks are conditioned on

    # Actions
    action_space: str = "hfo"       # "hfo" (DASH/TURN/KICK) or "uniform"
    num_discrete: int = 3           # Only used by "uniform"
    num_continuous: int = 5         # Only used by "uniform"
    message_size: int = 0           # Communication bits per step

    # Learning
    gamma: float = 0.99             # Discount factor
    tau: float = 0.001              # Soft target update rate
    replay_capacity: int = 500_000  # Replay memory size
    minibatch_size: int = 32        # Transitions per update
    actor_lr: float = 1e-5          # Actor learning rate
    critic_lr: float = 1e-3         # Critic learning rate
    semantic_lr: float = 1e-3       # Semantic network learning rate
    hidden_dim: int = 128           # Hidden layer size
    invert_gradients: bool = True   # Bound params with inverting gradients

    # Reproducibility
    seed: int = 0
    device: str = "cpu"

    def build_action_space(self) -> ActionSpace:
        if self.action_space == "hfo":
            return hfo_action_space(self.message_size)
        if self.action_space == "uniform":
            return ActionSpace.uniform(
                self.num_discrete, self.num_continuous, self.message_size
            )
        raise ValueError(f"Unknown action space '{self.action_space}'")

    def validate(self):
        """Raise ValueError on inconsistent settings."""
        if self.state_size <= 0:
            raise ValueError("state_size must be positive")
        if self.state_input_count < 1:
            raise ValueError("state_input_count must be >= 1")
        if not 0.0 <= self.gamma < 1.0:
            raise ValueError(f"gamma must be in [0, 1), got {self.gamma}")
        if not 0.0 <= self.tau <= 1.0:
            raise ValueError(f"tau must be in [0, 1], got {self.tau}")
        if self.minibatch_size <= 0 or self.replay_capacity <= 0:
            raise ValueError("minibatch_size and replay_capacity must be positive")
        if self.message_size < 0:
            raise ValueError("message_size must be >= 0")
        self.build_action_space()


@dataclass
class TrainingConfig:
    """Complete training configuration."""

    # Sub-config
    agent: AgentConfig = field(default_factory=AgentConfig)

    # Team
    num_agents: int = 1             # Concurrent agents, one thread each
    comm_mode: str = "none"         # "none", "sync", "approx_sync" or "dial"
    share_replay_memory: bool = False
    share_actor_layers: int = 0     # Leading actor layers shared with agent 0
    share_critic_layers: int = 0    # Leading critic layers shared with agent 0
    semantic_update: bool = False   # Train semantic nets on teammate memory

    # Task
    task: str = "move_to_ball"
    task_params: Dict[str, Any] = field(default_factory=dict)

    # Training budget
    max_episodes: int = 10_000      # Episodes per agent
    max_iter: int = 10_000_000      # Stop once the critic reaches this many updates

    # Exploration
    epsilon_start: float = 1.0
    epsilon_end: float = 0.1
    epsilon_decay_iters: int = 10_000   # Linear decay over critic updates
    randomize_messages: bool = False    # Exploration also randomizes message bits

    # Updates
    update_ratio: float = 0.1       # Updates per environment step

    # Evaluation and snapshots
    eval_interval: int = 1000       # Evaluate every N episodes (0 = never)
    eval_episodes: int = 10         # Greedy episodes per evaluation
    snapshot_interval: int = 10_000 # Snapshot every N critic updates
    snapshot_memory: bool = True
    remove_old_snapshots: bool = True
    resume: bool = True             # Restore the latest complete snapshot

    # Logging and paths
    log_interval: int = 10          # Print stats every N episodes
    experiment_name: str = "marl_soccer"
    output_dir: str = "outputs"

    # Reproducibility
    seed: int = 0

    @property
    def save_prefix(self) -> Path:
        return Path(self.output_dir) / self.experiment_name / "agent"

    def validate(self):
        """Raise ValueError on inconsistent settings."""
        self.agent.validate()
        if self.num_agents < 1:
            raise ValueError("num_agents must be >= 1")
        if self.comm_mode not in COMM_MODES:
            raise ValueError(f"comm_mode must be one of {COMM_MODES}, got '{self.comm_mode}'")
        if self.comm_mode != "none" and self.share_replay_memory:
            raise ValueError(
                "Synchronized updates need one replay memory per agent; "
                "disable share_replay_memory"
            )
        if self.agent.message_size * (self.num_agents - 1) > self.agent.state_size:
            raise ValueError("Heard messages do not fit in the observation")
        if self.semantic_update and self.agent.message_size == 0:
            raise ValueError("semantic_update requires message_size > 0")
        if self.update_ratio < 0:
            raise ValueError("update_ratio must be >= 0")
        if not 0.0 <= self.epsilon_end <= self.epsilon_start <= 1.0:
            raise ValueError("Need 0 <= epsilon_end <= epsilon_start <= 1")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    def save(self, path: str):
        """Save configuration to JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "TrainingConfig":
        """Load configuration from JSON; unknown keys are ignored."""
        with open(path, "r") as f:
            data = json.load(f)

        config = cls()

        if "agent" in data:
            for k, v in data["agent"].items():
                if hasattr(config.agent, k):
                    setattr(config.agent, k, v)

        for k, v in data.items():
            if k != "agent" and hasattr(config, k) and k != "save_prefix":
                setattr(config, k, v)

        return config


# =============================================================================
# PRESETS
# =============================================================================

def get_debug_config() -> TrainingConfig:
    """Tiny config for smoke runs."""
    config = TrainingConfig()
    config.agent.state_size = 8
    config.agent.hidden_dim = 32
    config.agent.replay_capacity = 1000
    config.agent.minibatch_size = 8
    config.max_episodes = 5
    config.epsilon_decay_iters = 50
    config.update_ratio = 1.0
    config.eval_interval = 2
    config.eval_episodes = 1
    config.snapshot_interval = 20
    config.log_interval = 1
    return config


def get_full_config() -> TrainingConfig:
    """Single agent, full budget."""
    config = TrainingConfig()
    config.max_episodes = 50_000
    config.epsilon_decay_iters = 500_000
    return config


def get_dial_config(num_agents: int = 2, message_size: int = 4) -> TrainingConfig:
    """Team of communicating agents trained with DIAL updates."""
    config = TrainingConfig()
    config.num_agents = num_agents
    config.comm_mode = "dial"
    config.semantic_update = True
    config.agent.message_size = message_size
    config.max_episodes = 50_000
    config.epsilon_decay_iters = 500_000
    return config
