"""
Critic Network Module
=====================

Default critic and semantic networks.

Critic architecture:
    input = [flattened state stack | one-hot task | ActorOutput]
    FC(in→H) → LayerNorm → ReLU → FC(H→H) → LayerNorm → ReLU → FC(H→1) = Q(s, a)

Semantic architecture:
    input = [flattened state stack | one-hot task]
    same trunk → tanh(FC(H→M)) = message

Author: MARL Soccer Team
"""

import torch
import torch.nn as nn

from .actor import build_trunk, init_weights, task_one_hot


class Critic(nn.Module):
    """
    Action-value network Q(s, task, a).

    Example:
        >>> critic = Critic(state_size=10, action_size=8)
        >>> q = critic(torch.randn(4, 1, 10), torch.zeros(4, dtype=torch.long),
        ...            torch.randn(4, 8))
        >>> q.shape
        torch.Size([4, 1])
    """

    def __init__(
        self,
        state_size: int,
        action_size: int,
        state_input_count: int = 1,
        num_tasks: int = 1,
        hidden_dim: int = 128
    ):
        super().__init__()

        self.state_size = state_size
        self.action_size = action_size
        self.state_input_count = state_input_count
        self.num_tasks = num_tasks

        in_dim = state_size * state_input_count + num_tasks + action_size
        self.trunk = build_trunk(in_dim, hidden_dim)
        self.q_head = nn.Linear(hidden_dim, 1)

        init_weights(self)
        nn.init.orthogonal_(self.q_head.weight, gain=1.0)

    def forward(
        self,
        states: torch.Tensor,
        task_ids: torch.Tensor,
        actions: torch.Tensor
    ) -> torch.Tensor:
        x = torch.cat([
            states.reshape(states.shape[0], -1),
            task_one_hot(task_ids, self.num_tasks),
            actions
        ], dim=-1)
        return self.q_head(self.trunk(x))


class SemanticNet(nn.Module):
    """Maps (state, task) to a message in [-1, 1]^M."""

    def __init__(
        self,
        state_size: int,
        message_size: int,
        state_input_count: int = 1,
        num_tasks: int = 1,
        hidden_dim: int = 128
    ):
        super().__init__()

        self.state_size = state_size
        self.message_size = message_size
        self.state_input_count = state_input_count
        self.num_tasks = num_tasks

        in_dim = state_size * state_input_count + num_tasks
        self.trunk = build_trunk(in_dim, hidden_dim)
        self.message_head = nn.Linear(hidden_dim, message_size)

        init_weights(self, [self.message_head])

    def forward(self, states: torch.Tensor, task_ids: torch.Tensor) -> torch.Tensor:
        x = torch.cat([
            states.reshape(states.shape[0], -1),
            task_one_hot(task_ids, self.num_tasks)
        ], dim=-1)
        return torch.tanh(self.message_head(self.trunk(x)))
