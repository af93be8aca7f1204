"""
Trainer Module
==============

Training loop connecting soccer environments, DQN agents and logging.

Per agent (one thread each):
1. Play an episode epsilon-greedily, stacking observations into states
   and writing heard teammate messages into the observation
2. Label the episode with the target networks and store it
3. Run updates in proportion to the episode length
   (local, synchronized, approximately synchronized or DIAL)
4. Train the semantic network on teammate experience
5. Evaluate greedily, snapshot, keep the best-scoring snapshot

Author: MARL Soccer Team
"""

import sys
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

import numpy as np

from agents.dqn_agent import DQNAgent
from agents.replay_memory import InsufficientMemoryError, Transition
from agents.snapshot import find_hi_score, hi_score_prefix, remove_snapshots
from agents.synchronization import SyncGroup
from environment.base import SoccerEnvironment
from environment.reward import make_task

from .config import AgentConfig, TrainingConfig
from .metrics import EvaluationResult, MetricsLogger


def build_agent(config: AgentConfig, num_teammates: int = 0, seed: Optional[int] = None) -> DQNAgent:
    """Create an agent from its configuration."""
    config.validate()
    return DQNAgent(
        action_space=config.build_action_space(),
        state_size=config.state_size,
        state_input_count=config.state_input_count,
        num_tasks=config.num_tasks,
        num_teammates=num_teammates,
        gamma=config.gamma,
        tau=config.tau,
        replay_capacity=config.replay_capacity,
        minibatch_size=config.minibatch_size,
        actor_lr=config.actor_lr,
        critic_lr=config.critic_lr,
        semantic_lr=config.semantic_lr,
        hidden_dim=config.hidden_dim,
        invert_gradients=config.invert_gradients,
        seed=config.seed if seed is None else seed,
        device=config.device
    )


class Episode(NamedTuple):
    transitions: List[Transition]
    reward: float
    length: int


class EpisodeRunner:
    """
    Drives one agent through episodes of one task.

    Attributes:
        agent: Agent being trained
        env: Connection to the simulator
        task: Task computing rewards from observations
        config: Training configuration
        prefix: Snapshot prefix for this agent
        group: Synchronization group (None for local updates)
        participant: Id of this agent in the group
        teammates: Other agents, whose memories feed the semantic network

    Example:
        >>> runner = EpisodeRunner(agent, env, MoveToBall(), config)
        >>> summary = runner.train()
    """

    def __init__(
        self,
        agent: DQNAgent,
        env: SoccerEnvironment,
        task,
        config: TrainingConfig,
        name: str = "agent0",
        group: Optional[SyncGroup] = None,
        participant: int = 0,
        teammates: Optional[List[DQNAgent]] = None,
        logger: Optional[MetricsLogger] = None
    ):
        if config.comm_mode != "none" and group is None:
            raise ValueError(f"comm_mode '{config.comm_mode}' needs a SyncGroup")

        self.agent = agent
        self.env = env
        self.task = task
        self.config = config
        self.name = name
        self.group = group
        self.participant = participant
        self.teammates = teammates or []
        self.prefix = Path(str(config.save_prefix) + str(participant))
        self.logger = logger or MetricsLogger(
            output_dir=config.output_dir,
            experiment_name=config.experiment_name,
            agent_name=name
        )

        self.episodes = 0
        self.last_snapshot_iter = agent.critic_iter
        self.best_score = find_hi_score(self.prefix)

    # -------------------------------------------------------------------------
    # Acting
    # -------------------------------------------------------------------------

    def epsilon(self) -> float:
        """Linear decay from epsilon_start to epsilon_end over critic updates."""
        cfg = self.config
        if cfg.epsilon_decay_iters <= 0:
            return cfg.epsilon_end
        frac = min(1.0, self.agent.critic_iter / cfg.epsilon_decay_iters)
        return cfg.epsilon_start + frac * (cfg.epsilon_end - cfg.epsilon_start)

    def run_episode(self, epsilon: float) -> Episode:
        """Play one episode; transitions are returned unlabeled."""
        agent = self.agent
        raw_obs = np.array(self.env.reset(), dtype=np.float32)
        first = agent.set_hear_features(raw_obs, [])
        frames = deque([first] * agent.state_input_count, maxlen=agent.state_input_count)

        transitions = []
        total_reward = 0.0
        done = False
        while not done:
            state = np.stack(frames)
            out = agent.select_action(
                state, self.task.task_id, epsilon,
                randomize_messages=self.config.randomize_messages
            )
            action = agent.get_action(out)
            message = agent.get_say_message(out) if agent.message_size else ""

            next_raw, done = self.env.step(action, message)
            next_raw = np.array(next_raw, dtype=np.float32)
            # Rewards read the raw observation; heard messages only enter stored states.
            # No reward for the first action of an episode
            reward = self.task.reward(raw_obs if transitions else None, next_raw)
            frames.append(agent.set_hear_features(next_raw, self.env.hear()))

            transitions.append(Transition(
                state=state,
                task_id=self.task.task_id,
                actor_output=out,
                reward=reward,
                next_state=None if done else np.stack(frames)
            ))
            total_reward += reward
            raw_obs = next_raw

        return Episode(transitions, total_reward, len(transitions))

    # -------------------------------------------------------------------------
    # Learning
    # -------------------------------------------------------------------------

    def _num_updates(self, episode_length: int) -> int:
        n = int(episode_length * self.config.update_ratio)
        if self.group is not None:
            n = int(self.group.broadcast(self.participant, n))
        return n

    def update(self, episode: List[Transition]) -> Dict[str, float]:
        """Run this episode's share of updates in the configured mode."""
        agent = self.agent
        mode = self.config.comm_mode
        stats: Dict[str, float] = {}

        if mode == "dial":
            stats = agent.dial_update(self.group, self.participant, episode)
            if stats:
                self.logger.log_update(stats["critic_loss"], stats["actor_loss"])
        else:
            for _ in range(self._num_updates(len(episode))):
                try:
                    if mode == "sync":
                        stats = agent.synchronized_update(self.group, self.participant)
                    elif mode == "approx_sync":
                        stats = agent.approx_synchronized_update(self.group, self.participant)
                    else:
                        stats = agent.update()
                except InsufficientMemoryError:
                    # Every participant sees the same memory sizes and stops together
                    break
                self.logger.log_update(stats["critic_loss"], stats["actor_loss"])

        if self.config.semantic_update and agent.semantic is not None:
            for mate in self.teammates:
                if len(mate.memory) >= agent.minibatch_size:
                    loss = agent.update_semantic(mate.memory)
                    self.logger.log_update(semantic_loss=loss)
                    stats["semantic_loss"] = loss

        return stats

    def train_episode(self) -> Dict[str, float]:
        epsilon = self.epsilon()
        episode = self.run_episode(epsilon)
        labeled = self.agent.label_transitions(episode.transitions)
        self.agent.add_transitions(labeled)
        stats = self.update(labeled)

        self.episodes += 1
        self.logger.log_episode(
            reward=episode.reward,
            length=episode.length,
            epsilon=epsilon,
            iteration=self.agent.critic_iter,
            memory_size=self.agent.memory_size
        )
        return stats

    # -------------------------------------------------------------------------
    # Evaluation and snapshots
    # -------------------------------------------------------------------------

    def evaluate(self, n_episodes: int) -> EvaluationResult:
        """Greedy episodes, not stored in memory."""
        result = EvaluationResult()
        for _ in range(n_episodes):
            episode = self.run_episode(epsilon=0.0)
            result.add_episode(episode.reward, episode.length)
        return result

    def maybe_snapshot(self, force: bool = False) -> bool:
        interval = self.config.snapshot_interval
        it = self.agent.critic_iter
        due = interval > 0 and it // interval > self.last_snapshot_iter // interval
        if not (due or force):
            return False
        self.agent.snapshot(
            self.prefix,
            remove_old=self.config.remove_old_snapshots,
            snapshot_memory=self.config.snapshot_memory
        )
        self.last_snapshot_iter = it
        return True

    def record_score(self, result: EvaluationResult) -> bool:
        """Snapshot under a HiScore prefix when the evaluation beats the best so far."""
        score = result.score
        if self.best_score is not None and score <= self.best_score:
            return False
        self.agent.snapshot(hi_score_prefix(self.prefix, score), snapshot_memory=False)
        if self.best_score is not None:
            remove_snapshots(hi_score_prefix(self.prefix, self.best_score), sys.maxsize)
        self.best_score = score
        return True

    def check_lockstep(self):
        """
        Synchronized teammates must start from the same critic iteration.

        Otherwise one reaches max_iter first and leaves the others waiting
        at the barrier.

        Raises:
            ValueError: If the group disagrees on the starting iteration
        """
        if self.group is None:
            return
        iterations = self.group.all_gather(self.participant, self.agent.critic_iter)
        if len(set(iterations)) > 1:
            raise ValueError(
                f"Teammates start from different iterations {iterations}; "
                "restore matching snapshots or start fresh"
            )

    def train(self) -> Dict[str, Any]:
        """Run until max_episodes or max_iter is reached."""
        cfg = self.config
        if cfg.resume:
            restored = self.agent.restore_latest(self.prefix, load_memory=cfg.snapshot_memory)
            if restored is None:
                print(f"[{self.name}] No complete snapshot at {self.prefix}, training from scratch")
            else:
                print(f"[{self.name}] Restored snapshot at iteration {restored}")
                self.last_snapshot_iter = self.agent.critic_iter

        self.check_lockstep()

        start = time.time()
        while self.episodes < cfg.max_episodes and self.agent.critic_iter < cfg.max_iter:
            self.train_episode()

            if cfg.log_interval > 0 and self.episodes % cfg.log_interval == 0:
                self.logger.print_stats()

            if cfg.eval_interval > 0 and self.episodes % cfg.eval_interval == 0:
                result = self.evaluate(cfg.eval_episodes)
                summary = result.summary()
                print(f"  [{self.name} Eval] Reward: {summary['reward_mean']:.2f} | "
                      f"Length: {summary['episode_length_mean']:.1f}")
                if self.record_score(result):
                    print(f"  [{self.name}] New best score: {self.best_score}")

            self.maybe_snapshot()

        self.maybe_snapshot(force=True)
        self.logger.save()
        self.logger.close()

        stats = self.logger.get_stats()
        stats["time_elapsed"] = time.time() - start
        stats["iteration"] = self.agent.critic_iter
        stats["best_score"] = self.best_score
        return stats


class MultiAgentTrainer:
    """
    Trains a team of agents concurrently, one thread per agent.

    Attributes:
        config: Training configuration
        agents: One agent per environment
        group: Synchronization group (None when comm_mode is "none")
        runners: One EpisodeRunner per agent

    Example:
        >>> config = get_dial_config(num_agents=2)
        >>> trainer = MultiAgentTrainer(config, envs=[env_a, env_b])
        >>> results = trainer.train()
    """

    def __init__(
        self,
        config: TrainingConfig,
        envs: List[SoccerEnvironment],
        agents: Optional[List[DQNAgent]] = None
    ):
        config.validate()
        if len(envs) != config.num_agents:
            raise ValueError(f"Expected {config.num_agents} environments, got {len(envs)}")

        self.config = config
        self.task = make_task(config.task, **config.task_params)
        num_teammates = config.num_agents - 1
        self.agents = agents or [
            build_agent(config.agent, num_teammates, seed=config.agent.seed + i)
            for i in range(config.num_agents)
        ]
        if len(self.agents) != config.num_agents:
            raise ValueError(f"Expected {config.num_agents} agents, got {len(self.agents)}")

        lead = self.agents[0]
        for other in self.agents[1:]:
            if config.share_replay_memory:
                lead.share_replay_memory(other)
            if config.share_actor_layers or config.share_critic_layers:
                lead.share_parameters(other, config.share_actor_layers, config.share_critic_layers)

        self.group = SyncGroup(config.num_agents) if config.comm_mode != "none" else None

        self.output_dir = Path(config.output_dir) / config.experiment_name
        self.output_dir.mkdir(parents=True, exist_ok=True)
        config.save(self.output_dir / "config.json")

        self.runners = [
            EpisodeRunner(
                agent=agent,
                env=env,
                task=self.task,
                config=config,
                name=f"agent{i}",
                group=self.group,
                participant=i,
                teammates=[a for a in self.agents if a is not agent]
            )
            for i, (agent, env) in enumerate(zip(self.agents, envs))
        ]

    def train(self) -> List[Dict[str, Any]]:
        """Train all agents; re-raises the first error raised in any thread."""
        print("=" * 70)
        print(f"Starting Training: {self.config.experiment_name}")
        print(f"  Agents: {self.config.num_agents} | Task: {self.config.task} | "
              f"Comm: {self.config.comm_mode}")
        print(f"  Max episodes: {self.config.max_episodes:,}")
        print("=" * 70)

        results: List[Optional[Dict[str, Any]]] = [None] * len(self.runners)
        errors: List[BaseException] = []

        def work(i: int, runner: EpisodeRunner):
            try:
                results[i] = runner.train()
            except BaseException as e:
                errors.append(e)
                if self.group is not None:
                    self.group.abort()

        threads = [
            threading.Thread(target=work, args=(i, r), name=r.name, daemon=True)
            for i, r in enumerate(self.runners)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        if errors:
            raise errors[0]

        print("=" * 70)
        print("Training Complete!")
        for i, res in enumerate(results):
            print(f"  agent{i}: episodes {res['total_episodes']} | "
                  f"iteration {res['iteration']} | best score {res['best_score']}")
        print("=" * 70)
        return results
