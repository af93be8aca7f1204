"""
Task Reward Module
==================

Per-task shaped rewards computed from consecutive observations.

Tasks:
    - MoveToBall: reward the increase of the ball proximity feature
    - KickToGoal: reward the decrease of the ball-to-goal distance

R(t) = scale * [f(o_t) - f(o_{t-1})]    (sign chosen per task)
R(0) = 0                                (no previous observation)

Author: MARL Soccer Team
"""

from dataclasses import dataclass, asdict
from typing import Dict, Optional, Type

import numpy as np


@dataclass(frozen=True)
class MoveToBall:
    """
    Approach the ball.

    Attributes:
        ball_proximity_index: Observation feature holding ball proximity
        scale: Reward multiplier
        ball_x_min, ball_x_max: Ball start range handed to the environment
        task_id: Id the networks are conditioned on

    Example:
        >>> task = MoveToBall(ball_proximity_index=2)
        >>> round(task.reward(np.array([0, 0, 0.4]), np.array([0, 0, 0.5])), 2)
        0.1
    """
    ball_proximity_index: int = 53
    scale: float = 1.0
    ball_x_min: float = 0.0
    ball_x_max: float = 0.8
    task_id: int = 0

    name = "move_to_ball"

    def reward(self, prev_obs: Optional[np.ndarray], curr_obs: np.ndarray) -> float:
        if prev_obs is None:
            return 0.0
        i = self.ball_proximity_index
        return float(self.scale * (curr_obs[i] - prev_obs[i]))

    def to_dict(self) -> Dict:
        return {"name": self.name, **asdict(self)}


@dataclass(frozen=True)
class KickToGoal:
    """
    Move the ball toward the goal.

    The ball-to-goal distance is measured from the ball position features
    to (goal_x, goal_y) in the observation's coordinates.
    """
    ball_x_index: int = 0
    ball_y_index: int = 1
    goal_x: float = 1.0
    goal_y: float = 0.0
    scale: float = 1.0
    ball_x_min: float = 0.4
    ball_x_max: float = 0.8
    task_id: int = 0

    name = "kick_to_goal"

    def ball_goal_distance(self, obs: np.ndarray) -> float:
        return float(np.hypot(
            obs[self.ball_x_index] - self.goal_x,
            obs[self.ball_y_index] - self.goal_y
        ))

    def reward(self, prev_obs: Optional[np.ndarray], curr_obs: np.ndarray) -> float:
        if prev_obs is None:
            return 0.0
        return self.scale * (
            self.ball_goal_distance(prev_obs) - self.ball_goal_distance(curr_obs)
        )

    def to_dict(self) -> Dict:
        return {"name": self.name, **asdict(self)}


TASKS: Dict[str, Type] = {
    MoveToBall.name: MoveToBall,
    KickToGoal.name: KickToGoal,
}


def make_task(name: str, **params):
    """Build a task by name; unknown names raise ValueError."""
    if name not in TASKS:
        raise ValueError(f"Unknown task '{name}', expected one of {sorted(TASKS)}")
    return TASKS[name](**params)
