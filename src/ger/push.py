# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit magic-ref push support.

Pushing ``HEAD`` to ``refs/for/<branch>`` makes Gerrit create or update a
change. Push options ride on the ref after a ``%``:

    refs/for/main%topic=auth-refactor,wip,r=alice@example.org

Token order is fixed: topic, wip, ready, private, reviewers, ccs,
hashtags.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from urllib.parse import quote

from ger.exceptions import GerError, InvalidInputError
from ger.git import Git
from ger.identifiers import validate_remote_name

log = logging.getLogger("ger.push")

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CHANGE_URL_PATTERN = re.compile(r"remote:\s+(https?://\S+/c/\S+/\+/\d+)")

# Characters left unescaped by JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"


class PushError(GerError):
    """Raised when ``git push`` to Gerrit fails."""


@dataclass(frozen=True)
class PushOptions:
    """Gerrit push options; ``draft`` is an alias for ``wip``."""

    topic: str | None = None
    wip: bool = False
    draft: bool = False
    ready: bool = False
    private: bool = False
    reviewer: Sequence[str] = field(default_factory=tuple)
    cc: Sequence[str] = field(default_factory=tuple)
    hashtag: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class PushResult:
    remote: str
    branch: str
    refspec: str
    dry_run: bool
    pushed: bool
    change_url: str | None
    remote_lines: list[str]
    output: str


def validate_emails(emails: Sequence[str], field_name: str) -> None:
    """
    Check reviewer or cc addresses.

    Raises:
        InvalidInputError: For the first address that does not look like
            ``user@domain.tld`` or that would split a push option.
    """
    for email in emails:
        if not EMAIL_PATTERN.match(email) or "," in email or "%" in email:
            raise InvalidInputError(
                f'Invalid email address for {field_name}: "{email}"\n'
                "Expected format: user@domain.com"
            )


def _validate_branch(branch: str) -> None:
    if not branch or any(c.isspace() for c in branch) or "%" in branch:
        raise InvalidInputError(f'Invalid target branch: "{branch}"')


def build_push_refspec(branch: str, options: PushOptions) -> str:
    """
    Build the ``refs/for`` push target for ``branch``.

    Raises:
        InvalidInputError: For a malformed branch or email.
    """
    _validate_branch(branch)
    validate_emails(options.reviewer, "reviewer")
    validate_emails(options.cc, "cc")

    params: list[str] = []
    if options.topic:
        params.append(f"topic={quote(options.topic, safe=_URI_COMPONENT_SAFE)}")
    if options.wip or options.draft:
        params.append("wip")
    if options.ready:
        params.append("ready")
    if options.private:
        params.append("private")
    params.extend(f"r={reviewer}" for reviewer in options.reviewer)
    params.extend(f"cc={cc}" for cc in options.cc)
    params.extend(
        f"hashtag={quote(tag, safe=_URI_COMPONENT_SAFE)}" for tag in options.hashtag
    )

    refspec = f"refs/for/{branch}"
    if params:
        refspec += "%" + ",".join(params)
    return refspec


def detect_target_branch(git: Git, remote: str) -> str:
    """
    Pick the branch to push for review.

    Order: the tracking branch of HEAD, then ``<remote>/main``, then
    ``<remote>/master``, falling back to ``master``.
    """
    tracking = git.tracking_branch()
    if tracking:
        return tracking
    for candidate in ("main", "master"):
        if git.remote_branch_exists(remote, candidate):
            return candidate
    return "master"


def extract_change_url(output: str) -> str | None:
    """Change URL from Gerrit's ``remote:`` push output."""
    match = CHANGE_URL_PATTERN.search(output)
    return match.group(1) if match else None


def _remote_lines(output: str) -> list[str]:
    lines = []
    for line in output.splitlines():
        if line.startswith("remote:"):
            text = line[len("remote:"):].strip()
            if text:
                lines.append(text)
    return lines


def push_for_review(
    git: Git,
    remote: str,
    branch: str,
    options: PushOptions,
    dry_run: bool = False,
) -> PushResult:
    """
    Run ``git push <remote> HEAD:<refspec>``.

    "no new changes" is reported as a successful no-op.

    Raises:
        PushError: For authentication failures, Gerrit rejections and
            any other failed push.
    """
    if not validate_remote_name(remote):
        raise InvalidInputError(f"Invalid remote name: {remote}")
    refspec = build_push_refspec(branch, options)

    args = ["push"]
    if dry_run:
        args.append("--dry-run")
    args.extend([remote, f"HEAD:{refspec}"])

    result = git.run_result(args)
    # git push reports progress and Gerrit's replies on stderr
    output = (result.stdout or "") + (result.stderr or "")

    if result.returncode != 0:
        if "no new changes" in output:
            log.info("No new changes to push")
            return PushResult(remote, branch, refspec, dry_run, False, None, _remote_lines(output), output)
        if "Permission denied" in output or "authentication failed" in output:
            raise PushError(
                "Authentication failed. Please check your credentials with: ger status\n"
                "You may need to regenerate your HTTP password in Gerrit settings."
            )
        if "prohibited by Gerrit" in output:
            raise PushError(
                "Push rejected by Gerrit. Common causes:\n"
                "  - Missing permissions for the target branch\n"
                "  - Branch may be read-only\n"
                "  - Change-Id may be in use by another change"
            )
        raise PushError(f"Push failed:\n{output}")

    return PushResult(
        remote=remote,
        branch=branch,
        refspec=refspec,
        dry_run=dry_run,
        pushed=True,
        change_url=extract_change_url(output),
        remote_lines=_remote_lines(output),
        output=output,
    )


__all__ = [
    "EMAIL_PATTERN",
    "PushError",
    "PushOptions",
    "PushResult",
    "build_push_refspec",
    "detect_target_branch",
    "extract_change_url",
    "push_for_review",
    "validate_emails",
]
