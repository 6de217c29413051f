# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Domain errors raised by ger outside the REST layer.

Each error carries the process exit code the CLI uses when the error
reaches the command boundary. REST failures live in
``ger.gerrit.client`` and exit with code 3.
"""

from __future__ import annotations

EXIT_GENERIC = 1
EXIT_INVALID_INPUT = 2
EXIT_API_ERROR = 3


class GerError(Exception):
    """Base class for ger errors."""

    exit_code: int = EXIT_GENERIC


class InvalidInputError(GerError, ValueError):
    """Raised when user-supplied input fails validation."""

    exit_code = EXIT_INVALID_INPUT


class ConfigError(GerError):
    """Raised when credentials cannot be loaded."""


class ConfigNotFoundError(ConfigError):
    """Raised when neither the environment nor the config file is usable."""


class ConfigInvalidError(ConfigError):
    """Raised when a configuration source exists but is malformed."""


class GitError(GerError):
    """Raised when a git command fails."""


class NotGitRepoError(GitError):
    """Raised when the working directory is not inside a git repository."""

    def __init__(self, message: str = "Current directory is not a git repository") -> None:
        super().__init__(message)


class DirtyRepoError(GitError):
    """Raised when the working tree has uncommitted changes."""

    def __init__(
        self,
        message: str = (
            "Working directory has uncommitted changes. "
            "Please commit or stash changes before review."
        ),
    ) -> None:
        super().__init__(message)


class WorktreeCreationError(GitError):
    """Raised when ``git worktree add`` fails."""


class PatchsetFetchError(GitError):
    """Raised when a patchset cannot be fetched or checked out."""


class NoChangeIdError(GitError):
    """Raised when the HEAD commit carries no Change-Id trailer."""

    def __init__(
        self,
        message: str = (
            "No Change-ID found in HEAD commit. "
            "Please provide a change number or Change-ID explicitly."
        ),
    ) -> None:
        super().__init__(message)


class HookInstallError(GerError):
    """Raised when the commit-msg hook cannot be downloaded or installed."""


class MissingChangeIdError(GerError):
    """Raised when a commit lacks a Change-Id although the hook is installed."""


__all__ = [
    "EXIT_API_ERROR",
    "EXIT_GENERIC",
    "EXIT_INVALID_INPUT",
    "ConfigError",
    "ConfigInvalidError",
    "ConfigNotFoundError",
    "DirtyRepoError",
    "GerError",
    "GitError",
    "HookInstallError",
    "InvalidInputError",
    "MissingChangeIdError",
    "NoChangeIdError",
    "NotGitRepoError",
    "PatchsetFetchError",
    "WorktreeCreationError",
]
