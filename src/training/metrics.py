"""
Metrics Logger Module
=====================

Logging and metrics tracking for training.

Features:
    - Rolling statistics
    - CSV logging
    - JSON history
    - Printed progress lines

Author: MARL Soccer Team
"""

import csv
import json
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional
from collections import deque
from dataclasses import dataclass, field
import numpy as np


@dataclass
class RollingStats:
    """Rolling statistics tracker."""

    window_size: int = 100
    _values: deque = field(default_factory=lambda: deque(maxlen=100))

    def __post_init__(self):
        self._values = deque(maxlen=self.window_size)

    def add(self, value: float):
        self._values.append(value)

    @property
    def mean(self) -> float:
        if len(self._values) == 0:
            return 0.0
        return float(np.mean(self._values))

    @property
    def std(self) -> float:
        if len(self._values) < 2:
            return 0.0
        return float(np.std(self._values))

    @property
    def max(self) -> float:
        if len(self._values) == 0:
            return 0.0
        return float(np.max(self._values))

    def __len__(self) -> int:
        return len(self._values)


class MetricsLogger:
    """
    Per-agent training metrics.

    Tracks:
        - Episode rewards and lengths
        - Critic, actor and semantic losses
        - Epsilon and update counts

    One CSV row per episode goes to <output_dir>/<experiment>/<agent>_log.csv.
    Several agents may log into one directory from different threads.

    Example:
        >>> logger = MetricsLogger("outputs", "run1", agent_name="agent0")
        >>> logger.log_update(critic_loss=0.5, actor_loss=-1.2)
        >>> logger.log_episode(reward=3.5, length=120, epsilon=0.4, iteration=50)
        >>> logger.save()
    """

    FIELDS = (
        "episode", "iteration", "reward", "episode_length", "epsilon",
        "critic_loss", "actor_loss", "semantic_loss", "memory_size", "time_elapsed"
    )

    def __init__(
        self,
        output_dir: str,
        experiment_name: str = "experiment",
        agent_name: str = "agent",
        window_size: int = 100
    ):
        self.output_dir = Path(output_dir) / experiment_name
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.experiment_name = experiment_name
        self.agent_name = agent_name
        self.window_size = window_size

        # Rolling statistics
        self.episode_rewards = RollingStats(window_size)
        self.episode_lengths = RollingStats(window_size)
        self.critic_losses = RollingStats(window_size)
        self.actor_losses = RollingStats(window_size)
        self.semantic_losses = RollingStats(window_size)

        # Full history for plotting
        self.history: Dict[str, List[float]] = {k: [] for k in self.FIELDS}

        # Counters
        self.total_steps = 0
        self.total_episodes = 0
        self.total_updates = 0
        self.start_time = time.time()

        self._lock = threading.Lock()
        csv_path = self.output_dir / f"{agent_name}_log.csv"
        self._csv_file = open(csv_path, "w", newline="")
        self._csv_writer = csv.DictWriter(self._csv_file, fieldnames=list(self.FIELDS))
        self._csv_writer.writeheader()

    def log_update(
        self,
        critic_loss: Optional[float] = None,
        actor_loss: Optional[float] = None,
        semantic_loss: Optional[float] = None
    ):
        if critic_loss is not None:
            self.critic_losses.add(critic_loss)
        if actor_loss is not None:
            self.actor_losses.add(actor_loss)
        if semantic_loss is not None:
            self.semantic_losses.add(semantic_loss)
        self.total_updates += 1

    def log_episode(
        self,
        reward: float,
        length: int,
        epsilon: float = 0.0,
        iteration: int = 0,
        memory_size: int = 0
    ):
        """Record a finished episode and append a CSV row."""
        self.episode_rewards.add(reward)
        self.episode_lengths.add(length)
        self.total_episodes += 1
        self.total_steps += length

        record = {
            "episode": self.total_episodes,
            "iteration": iteration,
            "reward": reward,
            "episode_length": length,
            "epsilon": epsilon,
            "critic_loss": self.critic_losses.mean,
            "actor_loss": self.actor_losses.mean,
            "semantic_loss": self.semantic_losses.mean,
            "memory_size": memory_size,
            "time_elapsed": time.time() - self.start_time
        }
        for key, value in record.items():
            self.history[key].append(value)

        with self._lock:
            if self._csv_writer:
                self._csv_writer.writerow(record)
                self._csv_file.flush()

    def get_stats(self) -> Dict[str, float]:
        """Current rolling statistics."""
        return {
            "reward_mean": self.episode_rewards.mean,
            "reward_std": self.episode_rewards.std,
            "reward_max": self.episode_rewards.max,
            "episode_length_mean": self.episode_lengths.mean,
            "critic_loss_mean": self.critic_losses.mean,
            "actor_loss_mean": self.actor_losses.mean,
            "semantic_loss_mean": self.semantic_losses.mean,
            "total_steps": self.total_steps,
            "total_episodes": self.total_episodes,
            "total_updates": self.total_updates,
            "time_elapsed": time.time() - self.start_time
        }

    def print_stats(self, prefix: str = ""):
        stats = self.get_stats()
        fps = self.total_steps / max(stats["time_elapsed"], 1e-6)

        print(f"{prefix}[{self.agent_name}] Episodes: {self.total_episodes} | "
              f"Steps: {self.total_steps:,} | "
              f"Reward: {stats['reward_mean']:.2f}+/-{stats['reward_std']:.2f} | "
              f"Critic: {stats['critic_loss_mean']:.4f} | "
              f"Actor: {stats['actor_loss_mean']:.4f} | "
              f"FPS: {fps:.0f}")

    def save(self):
        """Save history and final stats as JSON."""
        with open(self.output_dir / f"{self.agent_name}_history.json", "w") as f:
            json.dump(self.history, f, indent=2)

        with open(self.output_dir / f"{self.agent_name}_final_stats.json", "w") as f:
            json.dump(self.get_stats(), f, indent=2)

    def close(self):
        with self._lock:
            if self._csv_file:
                self._csv_file.close()
                self._csv_file = None
                self._csv_writer = None

    def __del__(self):
        self.close()


class EvaluationResult:
    """Container for greedy evaluation episodes."""

    def __init__(self):
        self.rewards: List[float] = []
        self.episode_lengths: List[int] = []

    def add_episode(self, reward: float, length: int):
        self.rewards.append(reward)
        self.episode_lengths.append(length)

    @property
    def score(self) -> int:
        """Integer score used to name best-scoring snapshots."""
        return int(round(float(np.mean(self.rewards)))) if self.rewards else 0

    def summary(self) -> Dict[str, float]:
        if not self.rewards:
            return {"reward_mean": 0.0, "reward_std": 0.0, "episode_length_mean": 0.0}
        return {
            "reward_mean": float(np.mean(self.rewards)),
            "reward_std": float(np.std(self.rewards)),
            "episode_length_mean": float(np.mean(self.episode_lengths))
        }
