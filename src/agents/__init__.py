"""
Agents Module
=============

Actor-critic DQN agents for parameterized soccer actions.
    - approximator: Function approximator contract and PyTorch backend
    - actor / critic: Default actor, critic and semantic networks
    - replay_memory: Bounded FIFO of labeled transitions
    - dqn_agent: Action selection, labeling, updates, persistence
    - synchronization: Lockstep team updates exchanging message gradients
    - snapshot: Snapshot file naming, discovery and cleanup
"""

from .approximator import FunctionApproximator, TorchApproximator, parameter_layers
from .actor import Actor
from .critic import Critic, SemanticNet
from .replay_memory import InsufficientMemoryError, ReplayMemory, Transition
from .snapshot import (
    SnapshotPaths,
    find_hi_score,
    find_latest_snapshot,
    hi_score_prefix,
    remove_snapshots,
    snapshot_paths,
)
from .synchronization import SyncGroup
from .dqn_agent import DQNAgent

__all__ = [
    # Approximators
    "FunctionApproximator",
    "TorchApproximator",
    "parameter_layers",
    # Networks
    "Actor",
    "Critic",
    "SemanticNet",
    # Memory
    "InsufficientMemoryError",
    "ReplayMemory",
    "Transition",
    # Snapshots
    "SnapshotPaths",
    "find_hi_score",
    "find_latest_snapshot",
    "hi_score_prefix",
    "remove_snapshots",
    "snapshot_paths",
    # Agent
    "SyncGroup",
    "DQNAgent",
]
