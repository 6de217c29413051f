# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Tests for review worktree management.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ger.exceptions import (
    DirtyRepoError,
    GitError,
    InvalidInputError,
    NotGitRepoError,
    PatchsetFetchError,
    WorktreeCreationError,
)
from ger.git import Git
from ger.worktree import GitWorktreeService, WorktreeInfo, review_worktree


def _completed(returncode: int = 0, stdout: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(["git"], returncode, stdout=stdout, stderr="")


def _git_creating_dirs():
    """A Git mock whose ``worktree add`` creates the target directory."""
    git = MagicMock(spec=Git)
    git.run_result.return_value = _completed(stdout="0123abc\n")
    git.is_repo.return_value = True

    def run(args, cwd=None):
        if args[:2] == ["worktree", "add"]:
            Path(args[3]).mkdir(parents=True)
        return ""

    git.run.side_effect = run
    return git


@pytest.fixture
def git():
    return _git_creating_dirs()


@pytest.fixture
def service(git, tmp_path):
    return GitWorktreeService(git, root=tmp_path / "worktrees", clock_ms=lambda: 1700000000000)


class TestCreateWorktree:
    """Tests for create_worktree."""

    def test_detached_worktree_at_head(self, service, git, tmp_path):
        """The worktree is added detached at HEAD."""
        info = service.create_worktree("12345")

        assert info.change_id == "12345"
        assert info.path.parent == tmp_path / "worktrees"
        assert info.path.name == f"12345-{info.timestamp}-{os.getpid()}"
        git.run.assert_called_once_with(["worktree", "add", "--detach", str(info.path), "0123abc"])

    def test_base_falls_back_to_remote_main(self, service, git):
        """Without a resolvable HEAD the remote main branch is used."""
        git.run_result.side_effect = [_completed(128), _completed(stdout="abc111\n")]

        info = service.create_worktree("12345")

        assert git.run_result.call_args_list[1].args[0] == ["rev-parse", "origin/main"]
        git.run.assert_called_once_with(["worktree", "add", "--detach", str(info.path), "abc111"])

    def test_base_falls_back_to_remote_master(self, service, git):
        """The remote master branch follows main in the fallback order."""
        git.run_result.side_effect = [
            _completed(128),
            _completed(128),
            _completed(stdout="def222\n"),
        ]

        info = service.create_worktree("12345")

        assert git.run_result.call_args_list[2].args[0] == ["rev-parse", "origin/master"]
        git.run.assert_called_once_with(["worktree", "add", "--detach", str(info.path), "def222"])

    def test_base_defaults_to_literal_head(self, service, git):
        """When nothing resolves, git is handed the literal HEAD."""
        git.run_result.side_effect = [_completed(128), _completed(128), _completed(128)]

        info = service.create_worktree("12345")

        assert git.run_result.call_count == 3
        git.run.assert_called_once_with(["worktree", "add", "--detach", str(info.path), "HEAD"])

    def test_base_ignores_empty_output(self, service, git):
        """A zero exit with no output does not count as resolved."""
        git.run_result.side_effect = [_completed(stdout="\n"), _completed(stdout="abc111\n")]

        info = service.create_worktree("12345")

        git.run.assert_called_once_with(["worktree", "add", "--detach", str(info.path), "abc111"])

    def test_successive_paths_distinct(self, service):
        """Two worktrees for the same change never share a path."""
        first = service.create_worktree("12345")
        second = service.create_worktree("12345")

        assert first.path != second.path
        assert second.timestamp > first.timestamp

    def test_invalid_change(self, service):
        """Identifiers with path characters are rejected."""
        with pytest.raises(InvalidInputError):
            service.create_worktree("../etc")

    def test_add_failure(self, service, git):
        """git worktree add failures are wrapped."""
        git.run.side_effect = GitError("fatal: already exists")

        with pytest.raises(WorktreeCreationError, match="already exists"):
            service.create_worktree("12345")

    def test_invalid_remote(self, git):
        """Remote names are validated on construction."""
        with pytest.raises(InvalidInputError):
            GitWorktreeService(git, remote="bad remote")


class TestPreconditions:
    """Tests for validate_preconditions."""

    def test_not_a_repo(self, service, git):
        """Outside a repository NotGitRepoError is raised."""
        git.is_repo.return_value = False

        with pytest.raises(NotGitRepoError):
            service.validate_preconditions()

    def test_dirty(self, service, git):
        """A dirty tree fails only when cleanliness is required."""
        git.is_clean.return_value = False

        service.validate_preconditions()
        with pytest.raises(DirtyRepoError, match="uncommitted changes"):
            service.validate_preconditions(require_clean=True)


class TestPatchsets:
    """Tests for patchset lookup and checkout."""

    def test_latest_patchset(self, service, git):
        """The highest advertised patchset wins."""
        git.run.side_effect = None
        git.run.return_value = (
            "aaa\trefs/changes/45/12345/1\n"
            "bbb\trefs/changes/45/12345/3\n"
            "ccc\trefs/changes/45/12345/meta\n"
            "ddd\trefs/changes/45/12345/2\n"
        )

        assert service.latest_patchset("12345") == 3
        git.run.assert_called_once_with(["ls-remote", "origin", "refs/changes/45/12345/*"])

    def test_latest_patchset_default(self, service, git):
        """With nothing advertised patchset 1 is assumed."""
        git.run.side_effect = None
        git.run.return_value = ""

        assert service.latest_patchset("12345") == 1

    def test_ls_remote_failure(self, service, git):
        """ls-remote failures become PatchsetFetchError."""
        git.run.side_effect = GitError("could not read from remote")

        with pytest.raises(PatchsetFetchError, match="Failed to get patchset info"):
            service.latest_patchset("12345")

    def test_fetch_explicit_patchset(self, service, git, tmp_path):
        """An explicit patchset is fetched and checked out in the worktree."""
        info = WorktreeInfo(tmp_path, "12345", tmp_path, 1, 1)
        git.run.side_effect = None

        assert service.fetch_and_checkout_patchset(info, 2) == 2
        assert git.run.call_args_list[0].args == (["fetch", "origin", "refs/changes/45/12345/2"],)
        assert git.run.call_args_list[0].kwargs == {"cwd": tmp_path}
        assert git.run.call_args_list[1].args == (["checkout", "FETCH_HEAD"],)

    def test_fetch_requires_number(self, service, tmp_path):
        """A Change-Id cannot be fetched by ref."""
        info = WorktreeInfo(tmp_path, "I" + "a" * 40, tmp_path, 1, 1)

        with pytest.raises(PatchsetFetchError, match="numeric change number"):
            service.fetch_and_checkout_patchset(info, 1)


class TestReviewWorktree:
    """Tests for the review_worktree context manager."""

    def test_enters_and_cleans_up(self, service, git, tmp_path, monkeypatch):
        """The body runs inside the worktree and it is removed afterwards."""
        monkeypatch.chdir(tmp_path)

        with review_worktree(service, "12345", patchset=1) as info:
            assert Path.cwd() == info.path.resolve()

        assert Path.cwd() == tmp_path.resolve()
        assert git.run.call_args_list[-1].args == (["worktree", "remove", "--force", str(info.path)],)

    def test_cleanup_on_error(self, service, git, tmp_path, monkeypatch):
        """The worktree is removed when the body raises."""
        monkeypatch.chdir(tmp_path)

        with pytest.raises(RuntimeError):
            with review_worktree(service, "12345", patchset=1):
                raise RuntimeError("review failed")

        assert Path.cwd() == tmp_path.resolve()
        assert git.run.call_args_list[-1].args[0][:3] == ["worktree", "remove", "--force"]

    @patch("ger.worktree.log")
    def test_cleanup_failure_only_warns(self, mock_log, service, git, tmp_path, monkeypatch):
        """A failing removal is logged, not raised."""
        monkeypatch.chdir(tmp_path)
        info = WorktreeInfo(tmp_path / "gone", "12345", tmp_path, 1, 1)
        git.run.side_effect = GitError("not a working tree")

        service.cleanup(info)

        messages = [call.args[0] for call in mock_log.warning.call_args_list]
        assert "Manual cleanup may be required: %s" in messages
