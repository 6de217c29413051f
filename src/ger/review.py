# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
AI-assisted review of a Gerrit change.

A review shells out to an AI command-line tool (claude, gemini, opencode
or codex) running inside a review worktree. The tool gets a prompt
describing the change and answers inside ``<response>...</response>``.
Two passes are made: one asking for a JSON array of inline comments and
one asking for an overall review message.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from ger.exceptions import GerError
from ger.gerrit.models import MessageInfo, flatten_comments
from ger.gerrit.service import GerritService

log = logging.getLogger("ger.review")

RESPONSE_PATTERN = re.compile(r"<response>([\s\S]*?)</response>", re.IGNORECASE)

DEFAULT_REVIEW_PROMPT = "default-review.md"
INLINE_SYSTEM_PROMPT = "system-inline-review.md"
OVERALL_SYSTEM_PROMPT = "system-overall-review.md"

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


class ReviewStrategyError(GerError):
    """Raised when no AI tool is usable or a tool run fails."""


def extract_response(stdout: str) -> str:
    """Text inside the first ``<response>`` block, else the whole output."""
    match = RESPONSE_PATTERN.search(stdout)
    return match.group(1).strip() if match else stdout.strip()


@dataclass(frozen=True)
class ReviewStrategy:
    """
    How to run one AI command-line tool.

    ``command`` is the argv prefix. With ``prompt_on_stdin`` the prompt
    is written to the tool's stdin, otherwise it is appended as the last
    argument.
    """

    name: str
    command: tuple[str, ...]
    prompt_on_stdin: bool = True

    @property
    def executable(self) -> str:
        return self.command[0]

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def execute(self, prompt: str, cwd: Path | None = None, runner: Runner = subprocess.run) -> str:
        """
        Run the tool and return its extracted response.

        Raises:
            ReviewStrategyError: If the tool cannot start or exits non-zero.
        """
        argv = list(self.command)
        if not self.prompt_on_stdin:
            argv.append(prompt)
        log.debug("Running %s in %s", " ".join(self.command), cwd or ".")
        try:
            result = runner(
                argv,
                input=prompt if self.prompt_on_stdin else None,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise ReviewStrategyError(f"{self.name} failed: {exc}") from exc
        if result.returncode != 0:
            raise ReviewStrategyError(
                f"{self.name} exited with code {result.returncode}: {result.stderr.strip()}"
            )
        return extract_response(result.stdout)


STRATEGIES: tuple[ReviewStrategy, ...] = (
    ReviewStrategy("claude", ("claude", "-p")),
    ReviewStrategy("gemini", ("gemini", "-p")),
    ReviewStrategy("opencode", ("opencode", "-p")),
    ReviewStrategy("codex", ("codex", "exec"), prompt_on_stdin=False),
)


def available_strategies(
    strategies: Sequence[ReviewStrategy] = STRATEGIES,
) -> list[ReviewStrategy]:
    return [s for s in strategies if s.is_available()]


def select_strategy(
    preferred: str | None = None,
    strategies: Sequence[ReviewStrategy] = STRATEGIES,
) -> ReviewStrategy:
    """
    Pick the tool to run.

    The first available tool whose name contains ``preferred``
    (case-insensitive) wins; otherwise the first available tool.

    Raises:
        ReviewStrategyError: If no tool is installed.
    """
    available = available_strategies(strategies)
    if not available:
        raise ReviewStrategyError(
            "No AI tools available. Please install claude, gemini, opencode or codex CLI."
        )
    if preferred:
        wanted = preferred.lower()
        for strategy in available:
            if wanted in strategy.name.lower():
                return strategy
        log.warning("AI tool %s is not available, using %s", preferred, available[0].name)
    return available[0]


# Prompts


def load_bundled_prompt(name: str) -> str:
    return resources.files("ger").joinpath("prompts", name).read_text(encoding="utf-8")


def read_prompt_file(path: str) -> str | None:
    """Read a user prompt file, expanding ``~``; None when unreadable."""
    expanded = Path(path).expanduser()
    try:
        return expanded.read_text(encoding="utf-8")
    except OSError as exc:
        log.debug("Could not read prompt file %s: %s", expanded, exc)
        return None


def _is_activity_message(message: MessageInfo) -> bool:
    text = message.message.strip()
    return len(text) >= 10 and "Build" not in text and "Patch" not in text


def build_review_prompt(
    service: GerritService,
    change: str,
    user_prompt: str,
    system_prompt: str,
    changed_files: Sequence[str],
) -> str:
    """Assemble the prompt sent to the AI tool for one review pass."""
    info = service.get_change(change)
    comments = flatten_comments(service.get_comments(change))
    messages = service.get_messages(change)

    lines: list[str] = []
    if user_prompt.strip():
        lines += [user_prompt.strip(), ""]
    lines += [system_prompt.strip(), ""]

    lines += [
        "CHANGE INFORMATION",
        "==================",
        f"Change ID: {info.change_id}",
        f"Number: {info.number}",
        f"Subject: {info.subject}",
        f"Project: {info.project}",
        f"Branch: {info.branch}",
        f"Status: {info.status}",
    ]
    if info.owner.name:
        lines.append(f"Author: {info.owner.name}")
    lines.append("")

    if comments:
        lines += ["EXISTING COMMENTS", "================="]
        for comment in comments:
            author = comment.author.name if comment.author and comment.author.name else "Unknown"
            location = comment.path or "General"
            if comment.path and comment.line:
                location += f":{comment.line}"
            lines.append(f"[{author}] on {location} ({comment.updated or 'Unknown date'}):")
            lines.append(f"  {comment.message or ''}")
            if comment.unresolved:
                lines.append("  UNRESOLVED")
            lines.append("")

    activity = [m for m in messages if _is_activity_message(m)]
    if activity:
        lines += ["REVIEW ACTIVITY", "==============="]
        for message in activity:
            author = message.author.name if message.author and message.author.name else "Unknown"
            lines += [f"[{author}] {message.date}:", f"  {message.message.strip()}", ""]

    lines += ["CHANGED FILES", "============="]
    lines += [f"- {path}" for path in changed_files]
    lines.append("")

    lines += [
        "GIT CAPABILITIES",
        "================",
        "You are running in a git repository with full access to:",
        "- git diff, git show, git log for understanding changes",
        "- git blame for code ownership context",
        "- All project files for architectural understanding",
        "",
        "Focus your review on the changed files listed above, but feel free to",
        "examine related files, tests, and project structure as needed.",
    ]
    return "\n".join(lines)


# Inline comments


class CommentRange(BaseModel):
    start_line: int
    end_line: int
    start_character: int | None = None
    end_character: int | None = None


class InlineComment(BaseModel):
    """One inline comment proposed by the AI tool."""

    model_config = ConfigDict(extra="ignore")

    file: str
    message: str
    side: str | None = None
    line: int | None = None
    range: CommentRange | None = None


def parse_inline_comments(response: str) -> list[Any]:
    """
    Decode the JSON array answered by the inline pass.

    Raises:
        ReviewStrategyError: If the response is not a JSON array.
    """
    try:
        data = json.loads(response)
    except json.JSONDecodeError as exc:
        raise ReviewStrategyError(f"Failed to parse inline comments JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ReviewStrategyError("AI response is not an array of comments")
    return data


def _match_changed_file(path: str, changed_files: Sequence[str]) -> str | None:
    if path in changed_files:
        return path
    wanted = path.replace("\\", "/")
    candidates = [
        f for f in changed_files
        if f.replace("\\", "/") == wanted or f.replace("\\", "/").endswith(f"/{wanted}")
    ]
    if len(candidates) == 1:
        return candidates[0]
    if candidates:
        log.warning("Multiple file matches for %s. Skipping comment.", path)
    else:
        log.warning("File not found in change: %s. Skipping comment.", path)
    return None


def validate_inline_comments(
    raw_comments: Sequence[Any], changed_files: Sequence[str]
) -> list[InlineComment]:
    """
    Keep well-formed comments that point at a changed file.

    Comments without a line or range are dropped. A path given relative
    to a subdirectory is resolved to the unique changed file it ends.
    """
    valid: list[InlineComment] = []
    for raw in raw_comments:
        try:
            comment = InlineComment.model_validate(raw)
        except ValidationError:
            log.warning("Skipping comment with invalid structure")
            continue
        if not comment.line and not comment.range:
            log.warning("Skipping comment with invalid line format")
            continue
        path = _match_changed_file(comment.file, changed_files)
        if path is None:
            continue
        if path != comment.file:
            log.info("Fixed file path: %s -> %s", comment.file, path)
            comment = comment.model_copy(update={"file": path})
        valid.append(comment)
    return valid


def comments_payload(comments: Sequence[InlineComment]) -> dict[str, list[dict[str, Any]]]:
    """Group inline comments by file in the shape of Gerrit's ReviewInput."""
    payload: dict[str, list[dict[str, Any]]] = {}
    for comment in comments:
        entry = comment.model_dump(exclude={"file"}, exclude_none=True)
        payload.setdefault(comment.file, []).append(entry)
    return payload


__all__ = [
    "STRATEGIES",
    "InlineComment",
    "ReviewStrategy",
    "ReviewStrategyError",
    "available_strategies",
    "build_review_prompt",
    "comments_payload",
    "extract_response",
    "load_bundled_prompt",
    "parse_inline_comments",
    "read_prompt_file",
    "select_strategy",
    "validate_inline_comments",
]
