"""
Test Suite for Trainer Module
=============================

Tests for src/training/trainer.py against a scripted environment.

Test Categories:
    - Episode rollouts
    - Exploration schedule
    - Snapshots, best scores and resume
    - Multi-agent training in each communication mode

Author: MARL Soccer Team
"""

import pytest
import numpy as np
import sys
import os
import tempfile
from pathlib import Path

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from agents.replay_memory import Transition
from agents.snapshot import find_hi_score, find_latest_snapshot
from environment.base import SoccerEnvironment
from environment.reward import MoveToBall
from training.config import TrainingConfig
from training.trainer import EpisodeRunner, MultiAgentTrainer, build_agent

STATE_SIZE = 6
EPISODE_LENGTH = 6


class FakeEnv:
    """Fixed-length episodes of random observations."""

    def __init__(self, seed=0, length=EPISODE_LENGTH, heard=()):
        self.rng = np.random.default_rng(seed)
        self.length = length
        self.heard = list(heard)
        self.said = []
        self.t = 0

    def _observe(self):
        return self.rng.uniform(-1, 1, STATE_SIZE).astype(np.float32)

    def reset(self):
        self.t = 0
        return self._observe()

    def step(self, action, message):
        self.t += 1
        self.said.append(message)
        return self._observe(), self.t >= self.length

    def hear(self):
        return list(self.heard)


def make_config(tmpdir, **kwargs):
    params = dict(
        output_dir=str(tmpdir),
        experiment_name="test",
        task_params={"ball_proximity_index": 2},
        max_episodes=4,
        epsilon_decay_iters=20,
        update_ratio=1.0,
        eval_interval=2,
        eval_episodes=1,
        snapshot_interval=5,
        log_interval=2,
    )
    params.update(kwargs)
    config = TrainingConfig(**params)
    config.agent.action_space = "uniform"
    config.agent.num_discrete = 2
    config.agent.num_continuous = 2
    config.agent.state_size = STATE_SIZE
    config.agent.hidden_dim = 16
    config.agent.minibatch_size = 4
    config.agent.replay_capacity = 200
    config.agent.critic_lr = 1e-2
    config.agent.actor_lr = 1e-2
    return config


@pytest.fixture
def tmpdir_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class TestEpisodeRunner:
    """Tests for single-agent episodes."""

    def test_fake_env_is_soccer_environment(self):
        assert isinstance(FakeEnv(), SoccerEnvironment)

    def test_comm_mode_needs_group(self, tmpdir_path):
        config = make_config(tmpdir_path, comm_mode="sync")
        agent = build_agent(config.agent)

        with pytest.raises(ValueError):
            EpisodeRunner(agent, FakeEnv(), MoveToBall(ball_proximity_index=2), config)

    def test_run_episode(self, tmpdir_path):
        config = make_config(tmpdir_path)
        agent = build_agent(config.agent)
        runner = EpisodeRunner(agent, FakeEnv(), MoveToBall(ball_proximity_index=2), config)

        episode = runner.run_episode(epsilon=0.5)
        runner.logger.close()

        assert episode.length == EPISODE_LENGTH
        t = episode.transitions
        assert t[0].reward == 0.0
        assert t[-1].terminal
        assert not any(x.terminal for x in t[:-1])
        assert t[0].state.shape == (1, STATE_SIZE)
        assert t[0].actor_output.shape == (agent.action_space.output_size,)
        for x in t[1:-1]:
            assert x.reward == pytest.approx(float(x.next_state[-1, 2] - x.state[-1, 2]))
        assert episode.reward == pytest.approx(sum(x.reward for x in t))

    def test_state_stacking(self, tmpdir_path):
        config = make_config(tmpdir_path)
        config.agent.state_input_count = 3
        agent = build_agent(config.agent)
        runner = EpisodeRunner(agent, FakeEnv(), MoveToBall(ball_proximity_index=2), config)

        episode = runner.run_episode(epsilon=1.0)
        runner.logger.close()

        first, second = episode.transitions[0], episode.transitions[1]
        assert first.state.shape == (3, STATE_SIZE)
        # The first state repeats the reset observation
        assert np.array_equal(first.state[0], first.state[2])
        assert np.array_equal(second.state, first.next_state)

    def test_epsilon_decay(self, tmpdir_path):
        config = make_config(tmpdir_path, epsilon_start=1.0, epsilon_end=0.1)
        config.epsilon_decay_iters = 10
        agent = build_agent(config.agent)
        runner = EpisodeRunner(agent, FakeEnv(), MoveToBall(ball_proximity_index=2), config)

        assert runner.epsilon() == pytest.approx(1.0)

        runner.train_episode()
        runner.logger.close()

        assert agent.critic_iter == EPISODE_LENGTH
        assert runner.epsilon() == pytest.approx(1.0 - 0.9 * EPISODE_LENGTH / 10)

    def test_train_snapshots_and_resume(self, tmpdir_path):
        config = make_config(tmpdir_path)
        agent = build_agent(config.agent)
        runner = EpisodeRunner(agent, FakeEnv(), MoveToBall(ball_proximity_index=2), config)

        result = runner.train()

        assert result["total_episodes"] == 4
        assert result["iteration"] == 4 * EPISODE_LENGTH
        latest = find_latest_snapshot(runner.prefix)
        assert latest.iteration == 4 * EPISODE_LENGTH
        assert find_hi_score(runner.prefix) == result["best_score"]
        assert (tmpdir_path / "test" / "agent0_log.csv").exists()

        config.max_episodes = 1
        fresh = build_agent(config.agent)
        resumed = EpisodeRunner(fresh, FakeEnv(seed=1), MoveToBall(ball_proximity_index=2), config)
        result = resumed.train()

        assert result["iteration"] == 5 * EPISODE_LENGTH
        assert fresh.memory_size == 5 * EPISODE_LENGTH


class QuietEnv(FakeEnv):
    """All-zero observations while teammates keep talking."""

    MESSAGES = (["az", "za"], ["mm", "bq"], ["zz", "aa"])

    def _observe(self):
        return np.zeros(STATE_SIZE, dtype=np.float32)

    def hear(self):
        return list(self.MESSAGES[self.t % len(self.MESSAGES)])


class TestHeardMessages:
    """Tests for message features written into observations."""

    def test_reward_ignores_heard_messages(self, tmpdir_path):
        config = make_config(tmpdir_path)
        config.agent.message_size = 2
        agent = build_agent(config.agent, num_teammates=2)
        runner = EpisodeRunner(agent, QuietEnv(), MoveToBall(ball_proximity_index=3), config)

        episode = runner.run_episode(epsilon=1.0)
        runner.logger.close()

        assert [t.reward for t in episode.transitions] == [0.0] * EPISODE_LENGTH
        # Heard slots are the last 4 features, game features stay untouched
        heard = episode.transitions[1].state[-1]
        assert np.any(heard[2:] != 0.0)
        assert np.all(heard[:2] == 0.0)


class TestMultiAgentTrainer:
    """Tests for concurrent team training."""

    def test_env_count_mismatch(self, tmpdir_path):
        config = make_config(tmpdir_path, num_agents=2)

        with pytest.raises(ValueError):
            MultiAgentTrainer(config, envs=[FakeEnv()])

    def test_shared_memory_with_sync_rejected(self, tmpdir_path):
        config = make_config(tmpdir_path, num_agents=2, comm_mode="sync",
                             share_replay_memory=True)

        with pytest.raises(ValueError):
            MultiAgentTrainer(config, envs=[FakeEnv(), FakeEnv(seed=1)])

    def test_shared_memory_local_updates(self, tmpdir_path):
        config = make_config(tmpdir_path, num_agents=2, share_replay_memory=True,
                             max_episodes=2, eval_interval=0)
        trainer = MultiAgentTrainer(config, envs=[FakeEnv(), FakeEnv(seed=1)])

        trainer.train()

        a, b = trainer.agents
        assert a.memory is b.memory
        assert a.memory_size == 4 * EPISODE_LENGTH
        assert (tmpdir_path / "test" / "config.json").exists()

    def test_sync_mode(self, tmpdir_path):
        config = make_config(tmpdir_path, num_agents=2, comm_mode="sync",
                             max_episodes=2, eval_interval=0)
        config.agent.message_size = 1
        envs = [FakeEnv(seed=0, heard=["m"]), FakeEnv(seed=1, heard=["c"])]
        trainer = MultiAgentTrainer(config, envs=envs)

        results = trainer.train()

        assert [r["iteration"] for r in results] == [2 * EPISODE_LENGTH] * 2
        assert all(len(msg) == 1 for msg in envs[0].said)

    def test_approx_sync_mode(self, tmpdir_path):
        config = make_config(tmpdir_path, num_agents=2, comm_mode="approx_sync",
                             max_episodes=2, eval_interval=0)
        trainer = MultiAgentTrainer(config, envs=[FakeEnv(), FakeEnv(seed=1)])

        results = trainer.train()

        assert [r["iteration"] for r in results] == [2 * EPISODE_LENGTH] * 2

    def test_dial_mode(self, tmpdir_path):
        config = make_config(tmpdir_path, num_agents=2, comm_mode="dial",
                             semantic_update=True, max_episodes=2, eval_interval=0)
        config.agent.message_size = 2
        envs = [FakeEnv(seed=0, length=6), FakeEnv(seed=1, length=5)]
        trainer = MultiAgentTrainer(config, envs=envs)

        results = trainer.train()

        assert [r["iteration"] for r in results] == [2, 2]
        assert all(agent.semantic_iter >= 1 for agent in trainer.agents)
        latest = find_latest_snapshot(trainer.runners[1].prefix, with_semantic=True)
        assert latest is not None

    def test_mismatched_start_iterations_rejected(self, tmpdir_path):
        config = make_config(tmpdir_path, num_agents=2, comm_mode="sync",
                             max_episodes=1, eval_interval=0, resume=False)
        agents = [build_agent(config.agent, num_teammates=1, seed=i) for i in range(2)]
        rng = np.random.default_rng(0)
        lead = agents[0]
        episode = [
            Transition(
                state=rng.uniform(-1, 1, lead.state_shape).astype(np.float32),
                task_id=0,
                actor_output=lead.action_space.random_output(rng),
                reward=1.0
            )
            for _ in range(4)
        ]
        lead.add_transitions(lead.label_transitions(episode))
        lead.update()

        trainer = MultiAgentTrainer(config, envs=[FakeEnv(), FakeEnv(seed=1)], agents=agents)

        with pytest.raises(ValueError):
            trainer.train()
        assert agents[1].critic_iter == 0
