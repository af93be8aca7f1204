"""
Snapshot Files Module
=====================

Naming, discovery and cleanup of agent snapshots.

Layout for a prefix P and iteration N:
    P_actor_iter_N.model      P_actor_iter_N.solverstate
    P_critic_iter_N.model     P_critic_iter_N.solverstate
    P_semantic_iter_N.model   P_semantic_iter_N.solverstate   (with messages)
    P_iter_N.replaymemory

Best-scoring snapshots use the prefix P_HiScore<score>.

Author: MARL Soccer Team
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .approximator import MODEL_SUFFIX, SOLVER_SUFFIX

MEMORY_SUFFIX = ".replaymemory"
NETWORKS = ("actor", "critic", "semantic")


@dataclass(frozen=True)
class SnapshotPaths:
    """Files of one snapshot. Network entries are paths without suffix."""
    iteration: int
    actor: Path
    critic: Path
    semantic: Optional[Path]
    memory: Path

    @property
    def actor_model(self) -> Path:
        return Path(str(self.actor) + MODEL_SUFFIX)

    @property
    def actor_solver(self) -> Path:
        return Path(str(self.actor) + SOLVER_SUFFIX)

    @property
    def critic_model(self) -> Path:
        return Path(str(self.critic) + MODEL_SUFFIX)

    @property
    def critic_solver(self) -> Path:
        return Path(str(self.critic) + SOLVER_SUFFIX)

    @property
    def semantic_model(self) -> Optional[Path]:
        return Path(str(self.semantic) + MODEL_SUFFIX) if self.semantic else None

    @property
    def semantic_solver(self) -> Optional[Path]:
        return Path(str(self.semantic) + SOLVER_SUFFIX) if self.semantic else None

    def required_files(self, load_solver: bool = True, load_memory: bool = True) -> List[Path]:
        files = [self.actor_model, self.critic_model]
        if self.semantic is not None:
            files.append(self.semantic_model)
        if load_solver:
            files += [self.actor_solver, self.critic_solver]
            if self.semantic is not None:
                files.append(self.semantic_solver)
        if load_memory:
            files.append(self.memory)
        return files

    def is_complete(self, load_solver: bool = True, load_memory: bool = True) -> bool:
        return all(p.exists() for p in self.required_files(load_solver, load_memory))


def snapshot_paths(
    prefix: Union[str, Path],
    iteration: int,
    with_semantic: bool = True
) -> SnapshotPaths:
    prefix = str(prefix)
    return SnapshotPaths(
        iteration=int(iteration),
        actor=Path(f"{prefix}_actor_iter_{iteration}"),
        critic=Path(f"{prefix}_critic_iter_{iteration}"),
        semantic=Path(f"{prefix}_semantic_iter_{iteration}") if with_semantic else None,
        memory=Path(f"{prefix}_iter_{iteration}{MEMORY_SUFFIX}")
    )


def _snapshot_pattern(prefix: Path) -> re.Pattern:
    return re.compile(
        "^" + re.escape(prefix.name)
        + r"_(?:(?:actor|critic|semantic)_iter_(\d+)(?:\.model|\.solverstate)"
        + r"|iter_(\d+)\.replaymemory)$"
    )


def _matching_files(prefix: Union[str, Path]):
    """Yield (path, iteration) for every snapshot file with this prefix."""
    prefix = Path(prefix)
    directory = prefix.parent
    if not directory.is_dir():
        return
    pattern = _snapshot_pattern(prefix)
    for path in directory.iterdir():
        match = pattern.match(path.name)
        if match:
            yield path, int(match.group(1) or match.group(2))


def snapshot_iterations(prefix: Union[str, Path]) -> List[int]:
    """All iterations with at least one snapshot file, ascending."""
    return sorted({it for _, it in _matching_files(prefix)})


def find_latest_snapshot(
    prefix: Union[str, Path],
    load_solver: bool = True,
    load_memory: bool = True,
    with_semantic: bool = False
) -> Optional[SnapshotPaths]:
    """
    Newest complete snapshot with this prefix.

    A snapshot missing any file needed for the requested restore is
    skipped. Returns None when no complete snapshot exists.
    """
    for iteration in reversed(snapshot_iterations(prefix)):
        paths = snapshot_paths(prefix, iteration, with_semantic)
        if paths.is_complete(load_solver, load_memory):
            return paths
    return None


def remove_snapshots(prefix: Union[str, Path], min_iter: int) -> List[Path]:
    """Delete snapshot files with this prefix older than min_iter."""
    removed = []
    for path, iteration in _matching_files(prefix):
        if iteration < min_iter:
            path.unlink()
            removed.append(path)
    return removed


def hi_score_prefix(prefix: Union[str, Path], score: int) -> str:
    return f"{prefix}_HiScore{int(score)}"


def find_hi_score(prefix: Union[str, Path]) -> Optional[int]:
    """Highest score among <prefix>_HiScore<score>_* files, or None."""
    prefix = Path(prefix)
    if not prefix.parent.is_dir():
        return None
    pattern = re.compile("^" + re.escape(prefix.name) + r"_HiScore(-?\d+)_")
    scores = [
        int(m.group(1))
        for m in (pattern.match(p.name) for p in prefix.parent.iterdir())
        if m
    ]
    return max(scores) if scores else None
