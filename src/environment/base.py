"""
Environment Protocol
====================

What the training loop needs from a soccer simulator connection.
The simulator itself lives outside this package.

Author: MARL Soccer Team
"""

from typing import List, Protocol, Tuple, runtime_checkable

import numpy as np

from .action_space import Action


@runtime_checkable
class SoccerEnvironment(Protocol):
    """One agent's connection to a running game."""

    def reset(self) -> np.ndarray:
        """Start an episode and return the first observation."""
        ...

    def step(self, action: Action, message: str) -> Tuple[np.ndarray, bool]:
        """Act and say a message; return the next observation and whether the episode ended."""
        ...

    def hear(self) -> List[str]:
        """Messages heard from teammates on the last step."""
        ...
