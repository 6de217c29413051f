# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Thin wrapper around the git command line.

Arguments are always passed as an argv list; no command is ever built
as a shell string. Callers validate server- or user-supplied values with
``ger.identifiers`` before passing them here.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from urllib.parse import urlparse

from ger.exceptions import GitError, NoChangeIdError, NotGitRepoError

log = logging.getLogger("ger.git")

CHANGE_ID_TRAILER = re.compile(r"^Change-Id:\s*(I[0-9a-f]{40})\s*$", re.IGNORECASE | re.MULTILINE)

_REMOTE_PUSH_LINE = re.compile(r"^(\S+)\s+(\S+)\s+\(push\)$")


def extract_change_id_from_commit_message(message: str) -> str | None:
    """
    Return the Change-Id trailer of a commit message, if any.

    >>> extract_change_id_from_commit_message(
    ...     "feat: x\\n\\nChange-Id: If5a3ae8cb5a107e187447802358417f311d0c4b1")
    'If5a3ae8cb5a107e187447802358417f311d0c4b1'
    """
    match = CHANGE_ID_TRAILER.search(message)
    return match.group(1) if match else None


def remote_hostname(url: str) -> str | None:
    """Hostname of a git remote URL in scp-like ssh or URL form."""
    if "://" in url:
        return urlparse(url).hostname
    if "@" in url and ":" in url:
        # git@host:project
        return url.split("@", 1)[1].split(":", 1)[0] or None
    return None


class Git:
    """
    Runs git commands in a fixed working directory.

    Args:
        cwd: Directory to run in; None means the process cwd at call time.
    """

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    def run_result(
        self, args: list[str], cwd: Path | None = None
    ) -> subprocess.CompletedProcess[str]:
        workdir = cwd or self.cwd
        log.debug("git %s (cwd=%s)", " ".join(args), workdir or ".")
        try:
            return subprocess.run(
                ["git", *args],
                cwd=str(workdir) if workdir else None,
                check=False,
                capture_output=True,
                text=True,
            )
        except OSError as exc:
            raise GitError(f"Failed to execute git: {exc}") from exc

    def run(self, args: list[str], cwd: Path | None = None) -> str:
        """
        Run git and return stripped stdout.

        Raises:
            GitError: With the command line and stderr when git fails.
        """
        result = self.run_result(args, cwd=cwd)
        if result.returncode != 0:
            stderr = result.stderr.strip() or result.stdout.strip()
            raise GitError(f"Git command failed: git {' '.join(args)}\nStderr: {stderr}")
        return result.stdout.strip()

    def succeeds(self, args: list[str], cwd: Path | None = None) -> bool:
        return self.run_result(args, cwd=cwd).returncode == 0

    def is_repo(self) -> bool:
        return self.succeeds(["rev-parse", "--git-dir"])

    def ensure_repo(self) -> None:
        if not self.is_repo():
            raise NotGitRepoError()

    def git_dir(self) -> Path:
        """
        Absolute path of the common git directory.

        Worktrees share hooks with the main repository, so this resolves
        ``--git-common-dir`` rather than ``--git-dir``.
        """
        result = self.run_result(["rev-parse", "--git-common-dir"])
        if result.returncode != 0:
            raise NotGitRepoError()
        path = Path(result.stdout.strip())
        if not path.is_absolute():
            path = ((self.cwd or Path.cwd()) / path).resolve()
        return path

    def head_commit_message(self) -> str:
        return self.run(["log", "-1", "--format=%B"])

    def change_id_from_head(self) -> str:
        """
        Read the Change-Id trailer of the HEAD commit.

        Raises:
            GitError: If git fails (for example outside a repository).
            NoChangeIdError: If HEAD has no Change-Id trailer.
        """
        change_id = extract_change_id_from_commit_message(self.head_commit_message())
        if change_id is None:
            raise NoChangeIdError()
        return change_id

    def is_clean(self) -> bool:
        return self.run(["status", "--porcelain"]) == ""

    def current_branch(self) -> str | None:
        result = self.run_result(["symbolic-ref", "--short", "HEAD"])
        branch = result.stdout.strip()
        return branch if result.returncode == 0 and branch else None

    def tracking_branch(self) -> str | None:
        """Upstream branch of HEAD without its remote prefix."""
        result = self.run_result(["rev-parse", "--abbrev-ref", "@{upstream}"])
        upstream = result.stdout.strip()
        if result.returncode != 0 or not upstream:
            return None
        _, sep, branch = upstream.partition("/")
        return branch if sep else upstream

    def remote_branch_exists(self, remote: str, branch: str) -> bool:
        return self.succeeds(["rev-parse", "--verify", "--quiet", f"{remote}/{branch}"])

    def local_branch_exists(self, branch: str) -> bool:
        return self.succeeds(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"])

    def push_remotes(self) -> dict[str, str]:
        """Map of remote name to push URL."""
        result = self.run_result(["remote", "-v"])
        if result.returncode != 0:
            return {}
        remotes: dict[str, str] = {}
        for line in result.stdout.splitlines():
            match = _REMOTE_PUSH_LINE.match(line.strip())
            if match:
                remotes[match.group(1)] = match.group(2)
        return remotes

    def find_matching_remote(self, gerrit_host: str) -> str | None:
        """Name of the first remote whose host matches the Gerrit host."""
        wanted = urlparse(gerrit_host).hostname
        if not wanted:
            return None
        for name, url in self.push_remotes().items():
            if remote_hostname(url) == wanted:
                return name
        return None

    def changed_files(self, cwd: Path | None = None) -> list[str]:
        output = self.run(["diff", "--name-only", "HEAD~1"], cwd=cwd)
        return [line for line in output.splitlines() if line.strip()]


__all__ = [
    "CHANGE_ID_TRAILER",
    "Git",
    "extract_change_id_from_commit_message",
    "remote_hostname",
]
