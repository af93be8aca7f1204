"""
Tests Package
=============

Unit tests for the soccer agents:
    - test_action_space, test_reward: Action layout, messages, task rewards
    - test_approximator, test_replay_memory: Networks and experience storage
    - test_dqn_agent, test_synchronization, test_snapshot: Agent updates and persistence
    - test_training, test_trainer: Configuration, metrics, training loop
"""
