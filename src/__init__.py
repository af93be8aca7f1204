"""
MARL Soccer System
==================

Actor-critic Deep Q-Learning for simulated team soccer with a hybrid
discrete + continuous action space and learned communication.

Modules:
    - environment: Action layout, say/hear messages, task rewards
    - agents: Approximators, replay memory, DQN agent, team synchronization
    - training: Configuration, metrics, episode runner, multi-agent trainer
"""

__version__ = "1.0.0"
__author__ = "MARL Soccer Team"
