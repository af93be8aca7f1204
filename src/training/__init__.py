"""
Training Module
===============

Training infrastructure for soccer agents.

Components:
    - config: Agent and training configuration
    - metrics: Logging and metrics tracking
    - trainer: Episode runner and multi-agent trainer

Example:
    >>> from training import MultiAgentTrainer, get_debug_config
    >>> config = get_debug_config()
    >>> trainer = MultiAgentTrainer(config, envs=[env])
    >>> trainer.train()
"""

from .config import (
    AgentConfig,
    TrainingConfig,
    COMM_MODES,
    get_debug_config,
    get_full_config,
    get_dial_config
)

from .metrics import (
    MetricsLogger,
    RollingStats,
    EvaluationResult
)

from .trainer import build_agent, Episode, EpisodeRunner, MultiAgentTrainer

__all__ = [
    # Config
    "AgentConfig",
    "TrainingConfig",
    "COMM_MODES",
    "get_debug_config",
    "get_full_config",
    "get_dial_config",
    # Metrics
    "MetricsLogger",
    "RollingStats",
    "EvaluationResult",
    # Trainer
    "build_agent",
    "Episode",
    "EpisodeRunner",
    "MultiAgentTrainer"
]
