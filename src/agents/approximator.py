"""
Function Approximator Module
============================

Trainable function approximator contract used by the DQN agent, plus the
PyTorch backend implementing it.

The agent never inspects a network's architecture. It only calls:
    forward (or the handle itself), backward, update, clone, soft_update,
    save, load_weights, restore_solver, share_layers

Author: MARL Soccer Team
"""

import copy
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

import torch
import torch.nn as nn


OptimizerFactory = Callable[[Iterable[nn.Parameter]], torch.optim.Optimizer]

MODEL_SUFFIX = ".model"
SOLVER_SUFFIX = ".solverstate"


class FunctionApproximator(ABC):
    """Capability contract for a trainable function approximator."""

    @property
    @abstractmethod
    def iteration(self) -> int:
        """Number of optimizer updates applied so far."""

    @abstractmethod
    def forward(self, *inputs):
        """Batched forward pass, pure given the current parameters."""

    def __call__(self, *inputs):
        return self.forward(*inputs)

    @abstractmethod
    def backward(self, outputs, output_gradients=None):
        """Accumulate parameter gradients from gradients w.r.t. outputs."""

    @abstractmethod
    def update(self):
        """Apply one optimizer step and increment the iteration counter."""

    @abstractmethod
    def clone(self) -> "FunctionApproximator":
        """Independent deep copy with identical parameters."""

    @abstractmethod
    def soft_update(self, source: "FunctionApproximator", tau: float):
        """params <- tau * source.params + (1 - tau) * params."""

    @abstractmethod
    def save(self, path: Union[str, Path]) -> Tuple[Path, Path]:
        """Save parameters and optimizer state."""

    @abstractmethod
    def load_weights(self, model_path: Union[str, Path]):
        """Load parameters written by save(), leaving the optimizer alone."""

    @abstractmethod
    def restore_solver(self, solver_path: Union[str, Path]):
        """Load optimizer state and iteration counter written by save()."""

    @abstractmethod
    def restore(self, path: Union[str, Path]):
        """Restore parameters and optimizer state saved by save()."""

    @abstractmethod
    def share_layers(self, other: "FunctionApproximator", num_layers: int):
        """Alias the first num_layers layers of other to this handle's params."""


def _atomic_torch_save(obj, path: Path):
    """Write through a temporary file so a partial file never has the final name."""
    tmp = path.with_name(path.name + ".tmp")
    torch.save(obj, tmp)
    os.replace(tmp, path)


def parameter_layers(module: nn.Module) -> List[nn.Module]:
    """Submodules owning parameters directly, in registration order."""
    return [
        m for m in module.modules()
        if len(list(m.parameters(recurse=False))) > 0
    ]


class TorchApproximator(FunctionApproximator):
    """
    PyTorch implementation of the approximator contract.

    Wraps an nn.Module and an optimizer built by a factory, so clones and
    layer sharing can rebuild an optimizer with the same hyperparameters.

    Attributes:
        module: Wrapped network
        optimizer: Optimizer over module parameters
        device: Device the module lives on

    Example:
        >>> net = TorchApproximator(nn.Linear(4, 2),
        ...                         lambda p: torch.optim.Adam(p, lr=1e-3))
        >>> out = net.forward(torch.randn(8, 4))
        >>> net.backward(out, torch.ones_like(out))
        >>> net.update()
        >>> net.iteration
        1
    """

    def __init__(
        self,
        module: nn.Module,
        optimizer_factory: OptimizerFactory,
        device: Union[str, torch.device] = "cpu",
        iteration: int = 0
    ):
        self.device = torch.device(device)
        self.module = module.to(self.device)
        self.optimizer_factory = optimizer_factory
        self.optimizer = optimizer_factory(self.module.parameters())
        self._iteration = iteration

    @property
    def iteration(self) -> int:
        return self._iteration

    def parameters(self) -> List[nn.Parameter]:
        return list(self.module.parameters())

    def forward(self, *inputs):
        return self.module(*inputs)

    def zero_grad(self):
        self.optimizer.zero_grad(set_to_none=True)

    def backward(
        self,
        outputs: Union[torch.Tensor, Sequence[torch.Tensor]],
        output_gradients=None,
        retain_graph: bool = False
    ):
        """
        Accumulate parameter gradients.

        Args:
            outputs: Output tensor(s) of a forward pass
            output_gradients: Gradient(s) w.r.t. outputs (None for scalars)
            retain_graph: Keep the graph for a second backward
        """
        torch.autograd.backward(
            outputs,
            grad_tensors=output_gradients,
            retain_graph=retain_graph
        )

    def update(self):
        self.optimizer.step()
        self.zero_grad()
        self._iteration += 1

    def clone(self) -> "TorchApproximator":
        twin = TorchApproximator(
            copy.deepcopy(self.module),
            self.optimizer_factory,
            device=self.device,
            iteration=self._iteration
        )
        return twin

    @torch.no_grad()
    def soft_update(self, source: "TorchApproximator", tau: float):
        if not 0.0 <= tau <= 1.0:
            raise ValueError(f"tau must be in [0, 1], got {tau}")
        for p, src in zip(self.module.parameters(), source.module.parameters()):
            p.mul_(1.0 - tau).add_(src.detach(), alpha=tau)
        for b, src in zip(self.module.buffers(), source.module.buffers()):
            b.copy_(src)

    @torch.no_grad()
    def hard_update(self, source: "TorchApproximator"):
        self.soft_update(source, 1.0)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    @staticmethod
    def model_path(path: Union[str, Path]) -> Path:
        return Path(str(path) + MODEL_SUFFIX)

    @staticmethod
    def solver_path(path: Union[str, Path]) -> Path:
        return Path(str(path) + SOLVER_SUFFIX)

    def save(self, path: Union[str, Path]) -> Tuple[Path, Path]:
        """
        Save to <path>.model and <path>.solverstate.

        The solver state is written last, so a snapshot interrupted midway
        lacks its .solverstate and is never considered complete.
        """
        model_path = self.model_path(path)
        solver_path = self.solver_path(path)
        model_path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_torch_save(self.module.state_dict(), model_path)
        _atomic_torch_save(
            {
                "optimizer_state_dict": self.optimizer.state_dict(),
                "iteration": self._iteration
            },
            solver_path
        )
        return model_path, solver_path

    def load_weights(self, model_path: Union[str, Path]):
        """Load parameters only."""
        state = torch.load(Path(model_path), map_location=self.device)
        self.module.load_state_dict(state)

    def restore_solver(self, solver_path: Union[str, Path]):
        """Load optimizer state and iteration counter only."""
        state = torch.load(Path(solver_path), map_location=self.device)
        self.optimizer.load_state_dict(state["optimizer_state_dict"])
        self._iteration = int(state["iteration"])

    def restore(self, path: Union[str, Path]):
        model_path = self.model_path(path)
        solver_path = self.solver_path(path)
        for p in (model_path, solver_path):
            if not p.exists():
                raise FileNotFoundError(f"Missing snapshot file: {p}")
        self.load_weights(model_path)
        self.restore_solver(solver_path)

    # -------------------------------------------------------------------------
    # Parameter sharing
    # -------------------------------------------------------------------------

    def share_layers(self, other: "TorchApproximator", num_layers: int):
        """
        Make other use this handle's parameters for its first num_layers layers.

        This handle keeps ownership of the storage. The other handle drops
        its own tensors and rebuilds its optimizer over the aliased set, so
        updates from either side move the shared parameters.
        """
        mine = parameter_layers(self.module)
        theirs = parameter_layers(other.module)
        if num_layers > min(len(mine), len(theirs)):
            raise ValueError(
                f"Cannot share {num_layers} layers: networks have "
                f"{len(mine)} and {len(theirs)} parameterized layers"
            )
        for owner, slave in zip(mine[:num_layers], theirs[:num_layers]):
            for name, param in owner.named_parameters(recurse=False):
                slave_param: Optional[nn.Parameter] = getattr(slave, name, None)
                if slave_param is None or slave_param.shape != param.shape:
                    raise ValueError(
                        f"Layer parameter '{name}' does not match between networks"
                    )
                setattr(slave, name, param)
        other.optimizer = other.optimizer_factory(other.module.parameters())
