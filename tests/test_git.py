# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Tests for the git command wrapper.

subprocess.run is patched so no git binary is needed.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from ger.exceptions import GitError, NoChangeIdError, NotGitRepoError
from ger.git import Git, extract_change_id_from_commit_message, remote_hostname

CHANGE_ID = "Iabc0123456789abcdef0123456789abcdef01234"


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(["git"], returncode, stdout=stdout, stderr=stderr)


class TestChangeIdExtraction:
    """Tests for Change-Id trailer parsing."""

    def test_trailer_found(self):
        """The trailer value is returned."""
        message = f"feat: x\n\nChange-Id: {CHANGE_ID}\n"
        assert extract_change_id_from_commit_message(message) == CHANGE_ID

    def test_trailer_missing(self):
        """Messages without a trailer yield None."""
        assert extract_change_id_from_commit_message("feat: x\n\nSigned-off-by: a") is None

    @patch("subprocess.run")
    def test_change_id_from_head(self, mock_run):
        """HEAD's message is read with git log."""
        mock_run.return_value = _completed(stdout=f"feat: x\n\nChange-Id: {CHANGE_ID}\n")

        assert Git().change_id_from_head() == CHANGE_ID
        assert mock_run.call_args[0][0] == ["git", "log", "-1", "--format=%B"]

    @patch("subprocess.run")
    def test_change_id_missing_from_head(self, mock_run):
        """A HEAD commit without trailer raises NoChangeIdError."""
        mock_run.return_value = _completed(stdout="feat: x\n")

        with pytest.raises(NoChangeIdError, match="No Change-ID found in HEAD commit"):
            Git().change_id_from_head()


class TestRemoteHostname:
    """Tests for remote_hostname."""

    @pytest.mark.parametrize(
        ("url", "host"),
        [
            ("https://gerrit.example.org/releng/tools", "gerrit.example.org"),
            ("ssh://jdoe@gerrit.example.org:29418/releng/tools", "gerrit.example.org"),
            ("git@gerrit.example.org:releng/tools.git", "gerrit.example.org"),
            ("/srv/git/tools.git", None),
        ],
    )
    def test_forms(self, url, host):
        """URL and scp-like forms are understood."""
        assert remote_hostname(url) == host


class TestGit:
    """Tests for the Git wrapper."""

    @patch("subprocess.run")
    def test_run_uses_argv_and_cwd(self, mock_run, tmp_path):
        """Commands run as argv lists in the configured directory."""
        mock_run.return_value = _completed(stdout="main\n")

        assert Git(tmp_path).run(["branch", "--show-current"]) == "main"
        args, kwargs = mock_run.call_args
        assert args[0] == ["git", "branch", "--show-current"]
        assert kwargs["cwd"] == str(tmp_path)
        assert "shell" not in kwargs

    @patch("subprocess.run")
    def test_run_failure(self, mock_run):
        """Failures raise GitError with stderr."""
        mock_run.return_value = _completed(1, stderr="fatal: bad revision")

        with pytest.raises(GitError, match="fatal: bad revision"):
            Git().run(["rev-parse", "nope"])

    @patch("subprocess.run")
    def test_missing_git_binary(self, mock_run):
        """A missing executable surfaces as GitError."""
        mock_run.side_effect = FileNotFoundError("git")

        with pytest.raises(GitError, match="Failed to execute git"):
            Git().run(["status"])

    @patch("subprocess.run")
    def test_ensure_repo(self, mock_run):
        """Outside a repository NotGitRepoError is raised."""
        mock_run.return_value = _completed(128, stderr="fatal: not a git repository")

        with pytest.raises(NotGitRepoError):
            Git().ensure_repo()

    @patch("subprocess.run")
    def test_git_dir_relative(self, mock_run, tmp_path):
        """Relative git dirs are resolved against the working directory."""
        mock_run.return_value = _completed(stdout=".git\n")

        assert Git(tmp_path).git_dir() == (tmp_path / ".git").resolve()

    @patch("subprocess.run")
    def test_git_dir_absolute(self, mock_run):
        """Absolute git dirs are returned unchanged."""
        mock_run.return_value = _completed(stdout="/repo/.git\n")

        assert Git().git_dir() == Path("/repo/.git")

    @patch("subprocess.run")
    def test_tracking_branch(self, mock_run):
        """The remote prefix is stripped from the upstream."""
        mock_run.return_value = _completed(stdout="origin/stable/2.0\n")

        assert Git().tracking_branch() == "stable/2.0"

    @patch("subprocess.run")
    def test_no_tracking_branch(self, mock_run):
        """Without upstream None is returned."""
        mock_run.return_value = _completed(128, stderr="fatal: no upstream")

        assert Git().tracking_branch() is None

    @patch("subprocess.run")
    def test_current_branch_detached(self, mock_run):
        """Detached HEAD has no current branch."""
        mock_run.return_value = _completed(128, stderr="fatal: ref HEAD is not a symbolic ref")

        assert Git().current_branch() is None

    @patch("subprocess.run")
    def test_find_matching_remote(self, mock_run):
        """The first remote on the Gerrit host is chosen."""
        mock_run.return_value = _completed(
            stdout=(
                "github\thttps://github.com/org/tools (fetch)\n"
                "github\thttps://github.com/org/tools (push)\n"
                "gerrit\tssh://jdoe@gerrit.example.org:29418/tools (fetch)\n"
                "gerrit\tssh://jdoe@gerrit.example.org:29418/tools (push)\n"
            )
        )

        git = Git()
        assert git.find_matching_remote("https://gerrit.example.org") == "gerrit"
        assert git.find_matching_remote("https://other.example.org") is None

    @patch("subprocess.run")
    def test_is_clean(self, mock_run):
        """Porcelain output means uncommitted changes."""
        mock_run.return_value = _completed(stdout=" M src/a.py\n")

        assert Git().is_clean() is False

    @patch("subprocess.run")
    def test_changed_files(self, mock_run):
        """Changed files are read relative to HEAD~1."""
        mock_run.return_value = _completed(stdout="a.py\nsrc/b.py\n\n")

        assert Git().changed_files() == ["a.py", "src/b.py"]
        assert mock_run.call_args[0][0] == ["git", "diff", "--name-only", "HEAD~1"]
