"""
Test Suite for Snapshot Files Module
====================================

Tests for src/agents/snapshot.py

Author: MARL Soccer Team
"""

import pytest
import sys
import os
import tempfile
from pathlib import Path

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from agents.snapshot import (
    find_hi_score,
    find_latest_snapshot,
    hi_score_prefix,
    remove_snapshots,
    snapshot_iterations,
    snapshot_paths,
)


def touch_snapshot(prefix, iteration, solver=True, memory=True, semantic=False):
    paths = snapshot_paths(prefix, iteration, with_semantic=semantic)
    files = [paths.actor_model, paths.critic_model]
    if solver:
        files += [paths.actor_solver, paths.critic_solver]
    if semantic:
        files.append(paths.semantic_model)
        if solver:
            files.append(paths.semantic_solver)
    if memory:
        files.append(paths.memory)
    for f in files:
        f.touch()
    return paths


@pytest.fixture
def tmpdir_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class TestSnapshotPaths:
    """Tests for file naming."""

    def test_names(self):
        paths = snapshot_paths("run/agent0", 12)

        assert paths.actor_model == Path("run/agent0_actor_iter_12.model")
        assert paths.critic_solver == Path("run/agent0_critic_iter_12.solverstate")
        assert paths.semantic_model == Path("run/agent0_semantic_iter_12.model")
        assert paths.memory == Path("run/agent0_iter_12.replaymemory")

    def test_without_semantic(self):
        paths = snapshot_paths("agent0", 1, with_semantic=False)

        assert paths.semantic is None
        assert paths.semantic_model is None
        assert len(paths.required_files()) == 5


class TestFindLatestSnapshot:
    """Tests for snapshot discovery."""

    def test_no_snapshot(self, tmpdir_path):
        assert find_latest_snapshot(tmpdir_path / "agent0") is None

    def test_missing_directory(self, tmpdir_path):
        assert find_latest_snapshot(tmpdir_path / "nope" / "agent0") is None

    def test_picks_highest_complete(self, tmpdir_path):
        prefix = tmpdir_path / "agent0"
        touch_snapshot(prefix, 10)
        touch_snapshot(prefix, 20)

        assert find_latest_snapshot(prefix).iteration == 20

    def test_incomplete_snapshot_skipped(self, tmpdir_path):
        prefix = tmpdir_path / "agent0"
        touch_snapshot(prefix, 10)
        touch_snapshot(prefix, 20, solver=False)

        assert snapshot_iterations(prefix) == [10, 20]
        assert find_latest_snapshot(prefix).iteration == 10
        assert find_latest_snapshot(prefix, load_solver=False).iteration == 20

    def test_memory_only_required_when_loading_it(self, tmpdir_path):
        prefix = tmpdir_path / "agent0"
        touch_snapshot(prefix, 5, memory=False)

        assert find_latest_snapshot(prefix) is None
        assert find_latest_snapshot(prefix, load_memory=False).iteration == 5

    def test_semantic_files_required(self, tmpdir_path):
        prefix = tmpdir_path / "agent0"
        touch_snapshot(prefix, 5)

        assert find_latest_snapshot(prefix, with_semantic=True) is None

        touch_snapshot(prefix, 5, semantic=True)
        assert find_latest_snapshot(prefix, with_semantic=True).iteration == 5

    def test_other_prefix_ignored(self, tmpdir_path):
        touch_snapshot(tmpdir_path / "agent10", 50)
        touch_snapshot(tmpdir_path / "agent1", 3)

        assert find_latest_snapshot(tmpdir_path / "agent1").iteration == 3

    def test_hi_score_files_ignored(self, tmpdir_path):
        prefix = tmpdir_path / "agent0"
        touch_snapshot(hi_score_prefix(prefix, 7), 99)

        assert find_latest_snapshot(prefix) is None


class TestRemoveSnapshots:
    """Tests for cleanup."""

    def test_removes_only_older(self, tmpdir_path):
        prefix = tmpdir_path / "agent1"
        touch_snapshot(prefix, 1)
        touch_snapshot(prefix, 2)
        touch_snapshot(tmpdir_path / "agent10", 1)

        removed = remove_snapshots(prefix, 2)

        assert len(removed) == 5
        assert snapshot_iterations(prefix) == [2]
        assert snapshot_iterations(tmpdir_path / "agent10") == [1]


class TestHiScore:
    """Tests for best-score discovery."""

    def test_none_without_files(self, tmpdir_path):
        assert find_hi_score(tmpdir_path / "agent0") is None

    def test_max_score(self, tmpdir_path):
        prefix = tmpdir_path / "agent0"
        for score in (5, 12, -2):
            touch_snapshot(hi_score_prefix(prefix, score), 3)
        touch_snapshot(hi_score_prefix(tmpdir_path / "agent1", 40), 3)

        assert find_hi_score(prefix) == 12

    def test_negative_score(self, tmpdir_path):
        prefix = tmpdir_path / "agent0"
        touch_snapshot(hi_score_prefix(prefix, -4), 1)

        assert find_hi_score(prefix) == -4

    def test_prefix_format(self):
        assert hi_score_prefix("out/agent0", 15) == "out/agent0_HiScore15"
