"""
Actor Network Module
====================

Default actor network for the hybrid discrete + continuous action space.

Architecture:
    input = [flattened state stack | one-hot task]
    Trunk: FC(in→H) → LayerNorm → ReLU → FC(H→H) → LayerNorm → ReLU
    Discrete head:   scores = FC(H→D)
    Continuous head: params = FC(H→C)          (unbounded, see inverting gradients)
    Message head:    bits   = tanh(FC(H→M))    (only when M > 0)

Output is a single ActorOutput tensor of shape (batch, D + C + M).

Author: MARL Soccer Team
"""

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F


def task_one_hot(task_ids: torch.Tensor, num_tasks: int) -> torch.Tensor:
    """One-hot encode integer task ids, shape (batch,) → (batch, num_tasks)."""
    return F.one_hot(task_ids.long(), num_classes=num_tasks).float()


def build_trunk(in_dim: int, hidden_dim: int) -> nn.Sequential:
    """Two hidden layers with LayerNorm, shared by all default networks."""
    return nn.Sequential(
        nn.Linear(in_dim, hidden_dim),
        nn.LayerNorm(hidden_dim),
        nn.ReLU(),
        nn.Linear(hidden_dim, hidden_dim),
        nn.LayerNorm(hidden_dim),
        nn.ReLU()
    )


def init_weights(module: nn.Module, heads=()):
    """Orthogonal initialization, small gain on output heads."""
    for m in module.modules():
        if isinstance(m, nn.Linear):
            nn.init.orthogonal_(m.weight, gain=np.sqrt(2))
            nn.init.constant_(m.bias, 0.0)
    for head in heads:
        nn.init.orthogonal_(head.weight, gain=0.01)


class Actor(nn.Module):
    """
    Actor network producing ActorOutput vectors.

    Attributes:
        state_size: Features per observation
        state_input_count: Observations per state stack
        num_tasks: Number of task ids
        num_discrete: Discrete actions (D)
        num_continuous: Continuous params (C)
        message_size: Communication bits (M)

    Example:
        >>> actor = Actor(state_size=10, num_discrete=3, num_continuous=5)
        >>> states = torch.randn(4, 1, 10)
        >>> actor(states, torch.zeros(4, dtype=torch.long)).shape
        torch.Size([4, 8])
    """

    def __init__(
        self,
        state_size: int,
        num_discrete: int,
        num_continuous: int,
        message_size: int = 0,
        state_input_count: int = 1,
        num_tasks: int = 1,
        hidden_dim: int = 128,
        param_init: np.ndarray = None
    ):
        super().__init__()

        self.state_size = state_size
        self.state_input_count = state_input_count
        self.num_tasks = num_tasks
        self.num_discrete = num_discrete
        self.num_continuous = num_continuous
        self.message_size = message_size

        in_dim = state_size * state_input_count + num_tasks
        self.trunk = build_trunk(in_dim, hidden_dim)
        self.score_head = nn.Linear(hidden_dim, num_discrete)
        self.param_head = nn.Linear(hidden_dim, num_continuous)
        self.message_head = nn.Linear(hidden_dim, message_size) if message_size else None

        heads = [self.score_head, self.param_head]
        if self.message_head is not None:
            heads.append(self.message_head)
        init_weights(self, heads)

        # Start continuous params at the middle of their valid range
        if param_init is not None and num_continuous:
            with torch.no_grad():
                self.param_head.bias.copy_(torch.as_tensor(param_init, dtype=torch.float32))

    @property
    def output_size(self) -> int:
        return self.num_discrete + self.num_continuous + self.message_size

    def forward(self, states: torch.Tensor, task_ids: torch.Tensor) -> torch.Tensor:
        """
        Args:
            states: Shape (batch, state_input_count, state_size)
            task_ids: Shape (batch,)

        Returns:
            ActorOutput batch, shape (batch, D + C + M)
        """
        x = torch.cat([
            states.reshape(states.shape[0], -1),
            task_one_hot(task_ids, self.num_tasks)
        ], dim=-1)
        features = self.trunk(x)

        parts = [self.score_head(features), self.param_head(features)]
        if self.message_head is not None:
            parts.append(torch.tanh(self.message_head(features)))
        return torch.cat(parts, dim=-1)
