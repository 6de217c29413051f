# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Review worktrees: isolated detached checkouts of a Gerrit patchset.

A review runs in a fresh ``git worktree`` under
``~/.ger/worktrees/<change>-<epoch-ms>-<pid>`` so the developer's own
working tree and branches are never touched. The invocation that
creates a worktree owns it and removes it on cleanup, including on
error paths (see :func:`review_worktree`).
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ger.config import ger_home
from ger.exceptions import (
    DirtyRepoError,
    GitError,
    InvalidInputError,
    NotGitRepoError,
    PatchsetFetchError,
    WorktreeCreationError,
)
from ger.git import Git
from ger.identifiers import change_ref, is_change_number, is_valid_refspec, validate_remote_name

log = logging.getLogger("ger.worktree")

_PATCHSET_REF = re.compile(r"refs/changes/\d+/\d+/(\d+)$")


@dataclass(frozen=True)
class WorktreeInfo:
    """A review worktree owned by the current invocation."""

    path: Path
    change_id: str
    original_cwd: Path
    timestamp: int
    pid: int


def _epoch_ms() -> int:
    return time.time_ns() // 1_000_000


class GitWorktreeService:
    """
    Create, populate and remove review worktrees.

    Args:
        git: Git runner rooted in the developer's repository.
        root: Directory holding worktrees; defaults to ``~/.ger/worktrees``.
        remote: Remote to fetch patchsets from.
        clock_ms: Millisecond wall clock used in worktree names.
    """

    _stamp_lock = threading.Lock()
    _last_stamp = 0

    def __init__(
        self,
        git: Git | None = None,
        root: Path | None = None,
        remote: str = "origin",
        clock_ms: Callable[[], int] = _epoch_ms,
    ) -> None:
        if not validate_remote_name(remote):
            raise InvalidInputError(f"Invalid remote name: {remote}")
        self._git = git or Git()
        self._root = root or ger_home() / "worktrees"
        self._remote = remote
        self._clock_ms = clock_ms

    @property
    def root(self) -> Path:
        return self._root

    def validate_preconditions(self, require_clean: bool = False) -> None:
        """
        Check the working directory is a repository, optionally clean.

        Raises:
            NotGitRepoError: Outside a git repository.
            DirtyRepoError: With ``require_clean`` and uncommitted changes.
        """
        if not self._git.is_repo():
            raise NotGitRepoError()
        if require_clean:
            self.validate_clean_repo()

    def validate_clean_repo(self) -> None:
        try:
            clean = self._git.is_clean()
        except GitError as exc:
            raise DirtyRepoError("Failed to check repository status") from exc
        if not clean:
            raise DirtyRepoError()

    def _base_commit(self) -> str:
        for rev in ("HEAD", f"{self._remote}/main", f"{self._remote}/master"):
            result = self._git.run_result(["rev-parse", rev])
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip()
        return "HEAD"

    def _next_stamp(self) -> int:
        # Two worktrees created within the same millisecond still get distinct names
        with GitWorktreeService._stamp_lock:
            stamp = max(self._clock_ms(), GitWorktreeService._last_stamp + 1)
            GitWorktreeService._last_stamp = stamp
            return stamp

    def _ensure_root(self) -> None:
        try:
            self._root.mkdir(mode=0o700, parents=True, exist_ok=True)
            os.chmod(self._root.parent, 0o700)
        except OSError as exc:
            log.debug("Could not prepare %s: %s", self._root, exc)

    def create_worktree(self, change_id: str) -> WorktreeInfo:
        """
        Add a detached worktree for ``change_id`` at a stable base commit.

        Raises:
            WorktreeCreationError: If ``git worktree add`` fails.
        """
        if not re.match(r"^[A-Za-z0-9]+$", change_id):
            raise InvalidInputError(f"Invalid change identifier for worktree: {change_id}")

        base = self._base_commit()
        log.info("Creating worktree for change %s at %s", change_id, base[:7])
        self._ensure_root()

        stamp = self._next_stamp()
        pid = os.getpid()
        path = (self._root / f"{change_id}-{stamp}-{pid}").absolute()
        original_cwd = Path.cwd()

        try:
            self._git.run(["worktree", "add", "--detach", str(path), base])
        except GitError as exc:
            raise WorktreeCreationError(str(exc)) from exc

        log.info("Worktree created at %s", path)
        return WorktreeInfo(
            path=path,
            change_id=change_id,
            original_cwd=original_cwd,
            timestamp=stamp,
            pid=pid,
        )

    def latest_patchset(self, change_number: str) -> int:
        """
        Highest patchset number advertised by the remote; 1 if none.

        Raises:
            PatchsetFetchError: If ``git ls-remote`` fails.
        """
        shard = change_ref(change_number, 1).rsplit("/", 1)[0]
        try:
            output = self._git.run(["ls-remote", self._remote, f"{shard}/*"])
        except GitError as exc:
            raise PatchsetFetchError(f"Failed to get patchset info: {exc}") from exc

        patchsets = []
        for line in output.splitlines():
            match = _PATCHSET_REF.search(line.strip())
            if match and int(match.group(1)) > 0:
                patchsets.append(int(match.group(1)))
        return max(patchsets) if patchsets else 1

    def fetch_and_checkout_patchset(
        self, info: WorktreeInfo, patchset: int | None = None
    ) -> int:
        """
        Fetch a patchset of the change and check it out in the worktree.

        Args:
            info: Worktree created by :meth:`create_worktree`; its
                ``change_id`` must be a change number.
            patchset: Explicit patchset; defaults to the latest.

        Returns:
            The patchset number checked out.

        Raises:
            PatchsetFetchError: If the fetch or checkout fails.
        """
        if not is_change_number(info.change_id):
            raise PatchsetFetchError(
                f"A numeric change number is required to fetch a patchset: {info.change_id}"
            )
        number = patchset or self.latest_patchset(info.change_id)
        refspec = change_ref(info.change_id, number)
        if not is_valid_refspec(refspec):
            raise PatchsetFetchError(f"Invalid Gerrit ref format: {refspec}")

        log.info("Fetching %s into %s", refspec, info.path)
        try:
            self._git.run(["fetch", self._remote, refspec], cwd=info.path)
            self._git.run(["checkout", "FETCH_HEAD"], cwd=info.path)
        except GitError as exc:
            raise PatchsetFetchError(str(exc)) from exc
        return number

    def cleanup(self, info: WorktreeInfo) -> None:
        """Restore the original cwd and remove the worktree; only warns on failure."""
        try:
            os.chdir(info.original_cwd)
        except OSError as exc:
            log.warning("Could not restore original directory %s: %s", info.original_cwd, exc)

        try:
            self._git.run(["worktree", "remove", "--force", str(info.path)])
        except GitError as exc:
            log.warning("Could not remove worktree: %s", exc)
            log.warning("Manual cleanup may be required: %s", info.path)
            return
        log.info("Cleaned up worktree for %s", info.change_id)

    def changed_files(self, info: WorktreeInfo) -> list[str]:
        return self._git.changed_files(cwd=info.path)


@contextmanager
def review_worktree(
    service: GitWorktreeService,
    change_number: str,
    patchset: int | None = None,
    require_clean: bool = False,
) -> Iterator[WorktreeInfo]:
    """
    Context manager yielding a populated worktree with cwd inside it.

    The original cwd is restored and the worktree removed on exit,
    whether the body succeeds or raises.
    """
    service.validate_preconditions(require_clean=require_clean)
    info = service.create_worktree(change_number)
    try:
        service.fetch_and_checkout_patchset(info, patchset)
        os.chdir(info.path)
        yield info
    finally:
        service.cleanup(info)


__all__ = [
    "GitWorktreeService",
    "WorktreeInfo",
    "review_worktree",
]
