"""
Environment Module
==================

Action layout, task rewards and the simulator protocol for soccer agents.
    - action_space: Hybrid discrete + continuous ActorOutput layout, say/hear messages
    - reward: MoveToBall and KickToGoal task rewards
    - base: Protocol a simulator connection must satisfy
"""

from .action_space import (
    Action,
    ActionSpace,
    MESSAGE_ALPHABET,
    decode_hear_features,
    decode_message,
    encode_message,
    hfo_action_space,
)
from .reward import KickToGoal, MoveToBall, TASKS, make_task
from .base import SoccerEnvironment

__all__ = [
    "Action",
    "ActionSpace",
    "MESSAGE_ALPHABET",
    "decode_hear_features",
    "decode_message",
    "encode_message",
    "hfo_action_space",
    "KickToGoal",
    "MoveToBall",
    "TASKS",
    "make_task",
    "SoccerEnvironment",
]
