"""
Test Suite for Training Infrastructure
======================================

Tests for configuration and metrics logging.

Test Categories:
    - Configuration: Validation, serialization, presets
    - Metrics Logger: Rolling stats, CSV output, JSON history
    - Evaluation results

Author: MARL Soccer Team
"""

import pytest
import numpy as np
import sys
import os
import csv
import json
import tempfile
from pathlib import Path

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


# =============================================================================
# CONFIGURATION TESTS
# =============================================================================

class TestTrainingConfig:
    """Test TrainingConfig class."""

    def test_default_creation(self):
        """Test creating config with defaults."""
        from training.config import TrainingConfig

        config = TrainingConfig()

        assert config.agent.gamma == 0.99
        assert config.agent.action_space == "hfo"
        assert config.comm_mode == "none"
        assert config.num_agents == 1
        config.validate()

    def test_save_prefix(self):
        from training.config import TrainingConfig

        config = TrainingConfig(output_dir="runs", experiment_name="exp")

        assert config.save_prefix == Path("runs") / "exp" / "agent"

    def test_build_action_space(self):
        from training.config import AgentConfig

        hfo = AgentConfig(message_size=2).build_action_space()
        uniform = AgentConfig(action_space="uniform", num_discrete=2,
                              num_continuous=4).build_action_space()

        assert hfo.output_size == 10
        assert uniform.output_size == 6

    def test_unknown_action_space(self):
        from training.config import AgentConfig

        with pytest.raises(ValueError):
            AgentConfig(action_space="joystick").validate()

    def test_invalid_comm_mode(self):
        from training.config import TrainingConfig

        with pytest.raises(ValueError):
            TrainingConfig(comm_mode="telepathy").validate()

    def test_sync_with_shared_memory_rejected(self):
        from training.config import TrainingConfig

        config = TrainingConfig(num_agents=2, comm_mode="sync", share_replay_memory=True)

        with pytest.raises(ValueError):
            config.validate()

    def test_messages_must_fit(self):
        from training.config import TrainingConfig

        config = TrainingConfig(num_agents=3)
        config.agent.state_size = 6
        config.agent.message_size = 4

        with pytest.raises(ValueError):
            config.validate()

    def test_semantic_needs_messages(self):
        from training.config import TrainingConfig

        with pytest.raises(ValueError):
            TrainingConfig(semantic_update=True).validate()

    def test_epsilon_order(self):
        from training.config import TrainingConfig

        with pytest.raises(ValueError):
            TrainingConfig(epsilon_start=0.1, epsilon_end=0.5).validate()

    def test_invalid_gamma(self):
        from training.config import TrainingConfig

        config = TrainingConfig()
        config.agent.gamma = 1.0

        with pytest.raises(ValueError):
            config.validate()

    def test_to_dict(self):
        from training.config import TrainingConfig

        d = TrainingConfig().to_dict()

        assert isinstance(d, dict)
        assert d["agent"]["tau"] == 0.001
        assert d["comm_mode"] == "none"

    def test_save_and_load(self):
        from training.config import TrainingConfig

        config = TrainingConfig()
        config.agent.message_size = 3
        config.agent.gamma = 0.95
        config.num_agents = 2
        config.comm_mode = "dial"
        config.task_params = {"ball_proximity_index": 5}
        config.experiment_name = "test_experiment"

        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            config.save(path)
            loaded = TrainingConfig.load(path)

        assert loaded.agent.message_size == 3
        assert loaded.agent.gamma == 0.95
        assert loaded.comm_mode == "dial"
        assert loaded.task_params == {"ball_proximity_index": 5}
        assert loaded.experiment_name == "test_experiment"


class TestConfigPresets:
    """Test configuration presets."""

    def test_debug_config(self):
        from training.config import get_debug_config

        config = get_debug_config()

        assert config.max_episodes == 5
        config.validate()

    def test_full_config(self):
        from training.config import get_full_config

        config = get_full_config()

        assert config.max_episodes == 50_000
        config.validate()

    def test_dial_config(self):
        from training.config import get_dial_config

        config = get_dial_config(num_agents=3, message_size=2)

        assert config.comm_mode == "dial"
        assert config.agent.message_size == 2
        assert config.semantic_update
        config.validate()


# =============================================================================
# METRICS TESTS
# =============================================================================

class TestRollingStats:
    """Test RollingStats."""

    def test_empty(self):
        from training.metrics import RollingStats

        stats = RollingStats(window_size=3)

        assert stats.mean == 0.0
        assert stats.std == 0.0
        assert stats.max == 0.0

    def test_window(self):
        from training.metrics import RollingStats

        stats = RollingStats(window_size=3)
        for v in (1.0, 2.0, 3.0, 4.0):
            stats.add(v)

        assert len(stats) == 3
        assert stats.mean == pytest.approx(3.0)
        assert stats.max == 4.0


class TestMetricsLogger:
    """Test MetricsLogger."""

    def test_csv_rows(self):
        from training.metrics import MetricsLogger

        with tempfile.TemporaryDirectory() as tmpdir:
            logger = MetricsLogger(tmpdir, "exp", agent_name="agent0")
            logger.log_update(critic_loss=0.5, actor_loss=-1.0)
            logger.log_episode(reward=2.0, length=10, epsilon=0.5, iteration=3)
            logger.log_episode(reward=4.0, length=20, epsilon=0.4, iteration=6)
            logger.close()

            with open(Path(tmpdir) / "exp" / "agent0_log.csv") as f:
                rows = list(csv.DictReader(f))

        assert len(rows) == 2
        assert float(rows[1]["reward"]) == 4.0
        assert int(rows[1]["iteration"]) == 6
        assert float(rows[0]["critic_loss"]) == 0.5

    def test_stats(self):
        from training.metrics import MetricsLogger

        with tempfile.TemporaryDirectory() as tmpdir:
            logger = MetricsLogger(tmpdir, "exp")
            logger.log_episode(reward=1.0, length=5)
            logger.log_episode(reward=3.0, length=15)
            stats = logger.get_stats()
            logger.close()

        assert stats["reward_mean"] == pytest.approx(2.0)
        assert stats["total_steps"] == 20
        assert stats["total_episodes"] == 2

    def test_save(self):
        from training.metrics import MetricsLogger

        with tempfile.TemporaryDirectory() as tmpdir:
            logger = MetricsLogger(tmpdir, "exp", agent_name="agent1")
            logger.log_episode(reward=1.0, length=5)
            logger.save()
            logger.close()

            with open(Path(tmpdir) / "exp" / "agent1_history.json") as f:
                history = json.load(f)
            assert (Path(tmpdir) / "exp" / "agent1_final_stats.json").exists()

        assert history["reward"] == [1.0]

    def test_close_twice(self):
        from training.metrics import MetricsLogger

        with tempfile.TemporaryDirectory() as tmpdir:
            logger = MetricsLogger(tmpdir, "exp")
            logger.close()
            logger.close()


class TestEvaluationResult:
    """Test EvaluationResult."""

    def test_score_rounds_mean(self):
        from training.metrics import EvaluationResult

        result = EvaluationResult()
        result.add_episode(2.0, 10)
        result.add_episode(3.4, 12)

        assert result.score == 3
        assert result.summary()["episode_length_mean"] == 11.0

    def test_empty(self):
        from training.metrics import EvaluationResult

        result = EvaluationResult()

        assert result.score == 0
        assert result.summary()["reward_mean"] == 0.0

    def test_negative_score(self):
        from training.metrics import EvaluationResult

        result = EvaluationResult()
        result.add_episode(-4.6, 3)

        assert result.score == -5
        assert np.isclose(result.summary()["reward_std"], 0.0)
