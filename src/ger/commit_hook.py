# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Installation of Gerrit's commit-msg hook.

Gerrit serves a ``commit-msg`` hook at ``<host>/tools/hooks/commit-msg``
that appends a ``Change-Id`` trailer to every commit. This module
downloads it, checks it looks like a shell script, and installs it
atomically into the repository's hooks directory.
"""

from __future__ import annotations

import logging
import os
import re
import stat
import tempfile
from pathlib import Path
from typing import Protocol

from ger.exceptions import GitError, HookInstallError, MissingChangeIdError
from ger.gerrit.client import GerritRestError
from ger.gerrit.urls import GerritUrlBuilder
from ger.git import Git

log = logging.getLogger("ger.commit_hook")

CHANGE_ID_LINE = re.compile(r"^Change-Id: I[0-9a-f]{40}$", re.MULTILINE)

HOOK_SHEBANGS: tuple[bytes, ...] = (b"#!/bin/sh", b"#!/bin/bash", b"#!/usr/bin/env sh")
_SHEBANG_WINDOW = 256
HOOK_MODE = 0o755


class HookFetcher(Protocol):
    def get_raw(self, url: str) -> bytes: ...


def is_valid_hook_script(content: bytes) -> bool:
    """True when the first 256 bytes carry a recognised shell shebang."""
    head = content[:_SHEBANG_WINDOW]
    return any(shebang in head for shebang in HOOK_SHEBANGS)


class CommitHookService:
    """
    Manage the commit-msg hook of the repository ``git`` runs in.

    Args:
        git: Git runner for the target repository.
        host: Normalized Gerrit base URL.
        fetcher: Object providing ``get_raw(url)``; normally the REST client.
    """

    def __init__(self, git: Git, host: str, fetcher: HookFetcher) -> None:
        self._git = git
        self._urls = GerritUrlBuilder(host)
        self._fetcher = fetcher

    def hook_path(self) -> Path:
        """Path of the hook; raises NotGitRepoError outside a repository."""
        return self._git.git_dir() / "hooks" / "commit-msg"

    def has_hook(self) -> bool:
        """True when the hook exists and is executable by its owner."""
        path = self.hook_path()
        try:
            mode = path.stat().st_mode
        except FileNotFoundError:
            return False
        return bool(mode & stat.S_IXUSR)

    def has_change_id(self, commit: str = "HEAD") -> bool:
        result = self._git.run_result(["log", "-1", "--format=%B", commit])
        if result.returncode != 0:
            return False
        return bool(CHANGE_ID_LINE.search(result.stdout))

    def install_hook(self) -> Path:
        """
        Download, validate and install the hook.

        An existing hook is replaced; callers that must not overwrite
        check :meth:`has_hook` first.

        Raises:
            NotGitRepoError: Outside a git repository.
            HookInstallError: If the download fails or the content is not
                a shell script.
        """
        hook_path = self.hook_path()
        url = self._urls.hook_url()
        log.info("Installing commit-msg hook from %s", url)

        try:
            content = self._fetcher.get_raw(url)
        except GerritRestError as exc:
            raise HookInstallError(
                f"Failed to download commit-msg hook from {url}: {exc}"
            ) from exc

        if not is_valid_hook_script(content):
            raise HookInstallError(
                "Downloaded hook is not a valid script (missing shell shebang)"
            )

        try:
            hook_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=hook_path.parent, prefix=".commit-msg-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(content)
                os.chmod(tmp_name, HOOK_MODE)
                os.replace(tmp_name, hook_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise HookInstallError(f"Failed to write commit-msg hook: {exc}") from exc

        log.info("commit-msg hook installed at %s", hook_path)
        return hook_path

    def amend_with_change_id(self) -> None:
        """
        Amend HEAD so the freshly installed hook adds a Change-Id.

        Raises:
            HookInstallError: If the amend fails or produces no Change-Id.
        """
        log.info("Amending commit to add Change-Id")
        try:
            self._git.run(["commit", "--amend", "--no-edit"])
        except GitError as exc:
            raise HookInstallError(f"Failed to amend commit: {exc}") from exc
        if not self.has_change_id():
            raise HookInstallError(
                "Failed to add Change-Id to commit. Hook may not be working correctly."
            )

    def ensure_change_id(self) -> bool:
        """
        Make sure HEAD carries a Change-Id before pushing.

        Returns:
            True if the commit was amended, False if it already had one.

        Raises:
            MissingChangeIdError: The hook is installed yet HEAD has no
                Change-Id.
        """
        if self.has_change_id():
            return False
        if self.has_hook():
            raise MissingChangeIdError(
                "Commit is missing Change-Id. The commit-msg hook is installed "
                "but did not run.\nPlease amend your commit: git commit --amend"
            )
        self.install_hook()
        self.amend_with_change_id()
        return True


__all__ = [
    "CHANGE_ID_LINE",
    "CommitHookService",
    "HOOK_MODE",
    "is_valid_hook_script",
]
