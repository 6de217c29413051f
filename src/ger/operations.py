# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Command orchestration for ger.

Each function here implements one user-visible operation on top of an
injected :class:`~ger.gerrit.service.GerritService` and local git
helpers. Functions validate input, call the REST or git layer and
return plain data for the output layer; they never print. The CLI in
``ger.cli`` is a thin shell around them.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ger.build_status import BuildState, derive_build_state, filter_meaningful_messages
from ger.commit_hook import CommitHookService, HookFetcher
from ger.exceptions import GerError, GitError, InvalidInputError
from ger.gerrit.client import GerritNotFoundError, GerritRestError
from ger.gerrit.models import ChangeInfo, CommentInfo, MessageInfo, flatten_comments
from ger.gerrit.service import NOTIFY_LEVELS, GerritService, parse_conflict_files
from ger.git import Git
from ger.identifiers import (
    extract_change_number,
    is_change_number,
    is_valid_refspec,
    normalize_change_identifier,
    parse_change_input,
    validate_git_safe,
)
from ger.push import PushError, PushOptions, PushResult, detect_target_branch, push_for_review
from ger.review import (
    DEFAULT_REVIEW_PROMPT,
    INLINE_SYSTEM_PROMPT,
    OVERALL_SYSTEM_PROMPT,
    InlineComment,
    ReviewStrategy,
    build_review_prompt,
    comments_payload,
    load_bundled_prompt,
    parse_inline_comments,
    read_prompt_file,
    validate_inline_comments,
)
from ger.worktree import GitWorktreeService, WorktreeInfo, review_worktree

log = logging.getLogger("ger.operations")

URL_PATTERN = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+")

_DANGEROUS_REGEXES = (
    re.compile(r"\([^)]*[+*][^)]*\)[+*]"),
    re.compile(r"\([^)]*[+*][^)]*\)[+*?]"),
    re.compile(r"\[[^\]]*\][+*]{2,}"),
)
MAX_PATTERN_LENGTH = 500


REVIEW_BRANCH_PREFIX = "review/"


# Identifiers


def resolve_change(value: str | None, git: Git | None = None) -> str:
    """
    Turn user input into a validated change identifier.

    A change URL is reduced to its number. Without input, the Change-Id
    trailer of the HEAD commit is used.

    Raises:
        InvalidInputError: If the input is not a change identifier.
        NoChangeIdError: If HEAD has no Change-Id trailer.
        GitError: If git fails, for example outside a repository.
    """
    if value is None or not value.strip():
        change_id = (git or Git()).change_id_from_head()
        log.debug("Using Change-Id %s from HEAD", change_id)
        return change_id
    return normalize_change_identifier(extract_change_number(value)).value


def change_number_of(service: GerritService, change: str) -> str:
    """Numeric change number for ``change``, asking the server for Change-Ids."""
    if is_change_number(change):
        return change
    return str(service.get_change(change).number)


def change_summary(change: ChangeInfo) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "number": change.number,
        "change_id": change.change_id,
        "subject": change.subject,
        "status": change.status,
        "project": change.project,
        "branch": change.branch,
        "owner": change.owner.display_name,
    }
    if change.topic:
        summary["topic"] = change.topic
    if change.updated:
        summary["updated"] = change.updated
    return summary


# Queries


def search_changes(service: GerritService, query: str | None, limit: int | None = None) -> dict[str, Any]:
    """Run a change query; results are grouped by project, projects sorted."""
    final_query = (query or "").strip() or "is:open"
    changes = service.list_changes(final_query, limit=limit)
    return {
        "status": "success",
        "query": final_query,
        "count": len(changes),
        "changes": [change_summary(c) for c in changes],
    }


def group_by_project(changes: Sequence[dict[str, Any]]) -> list[tuple[str, list[dict[str, Any]]]]:
    grouped: dict[str, list[dict[str, Any]]] = {}
    for change in changes:
        grouped.setdefault(change["project"], []).append(change)
    return sorted(grouped.items(), key=lambda item: item[0].casefold())


def _comment_dict(comment: CommentInfo) -> dict[str, Any]:
    data: dict[str, Any] = {
        "path": comment.path,
        "line": comment.line,
        "author": comment.author.display_name if comment.author else "Unknown",
        "updated": comment.updated,
        "message": comment.message or "",
    }
    if comment.unresolved:
        data["unresolved"] = True
    return {k: v for k, v in data.items() if v is not None}


def _message_dict(message: MessageInfo) -> dict[str, Any]:
    return {
        "id": message.id,
        "author": message.author.display_name if message.author else "Unknown",
        "date": message.date,
        "message": message.message,
        "revision": message.revision_number,
    }


def list_comments(service: GerritService, change: str) -> list[dict[str, Any]]:
    """Inline comments of the current revision, oldest first."""
    return [_comment_dict(c) for c in flatten_comments(service.get_comments(change))]


def show_change(service: GerritService, change: str) -> dict[str, Any]:
    """Change details, unified diff, inline comments and user-facing messages."""
    info = service.get_change(change)
    diff = service.get_diff(change)
    messages = sorted(filter_meaningful_messages(service.get_messages(change)), key=lambda m: m.date)
    return {
        "status": "success",
        "change": change_summary(info),
        "url": service.url_builder.change_url(info.project, info.number),
        "diff": diff,
        "comments": list_comments(service, change),
        "messages": [_message_dict(m) for m in messages],
    }


def build_status(service: GerritService, change: str) -> BuildState:
    """Build state of a change; a missing change yields ``not_found``."""
    try:
        messages = service.get_messages(change)
    except GerritNotFoundError:
        return derive_build_state([], not_found=True)
    return derive_build_state(messages)


# URL extraction


def compile_safe_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile a user regex, refusing nested quantifiers.

    Raises:
        InvalidInputError: For dangerous or invalid expressions.
    """
    for dangerous in _DANGEROUS_REGEXES:
        if dangerous.search(pattern):
            raise InvalidInputError(
                "Pattern contains potentially dangerous nested quantifiers "
                "that could cause performance issues"
            )
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise InvalidInputError(f"Invalid regular expression: {exc}") from exc


def extract_urls_from_text(text: str, pattern: str, use_regex: bool = False) -> list[str]:
    urls = URL_PATTERN.findall(text)
    if use_regex:
        regex = compile_safe_regex(pattern)
        return [u for u in urls if regex.search(u)]
    wanted = pattern.lower()
    return [u for u in urls if wanted in u.lower()]


def extract_urls(
    service: GerritService,
    change: str,
    pattern: str,
    *,
    include_comments: bool = False,
    use_regex: bool = False,
) -> list[str]:
    """
    URLs found in change messages (and optionally inline comments).

    Messages come first, oldest first, then comments. Duplicates are
    kept in order of appearance.
    """
    if not pattern:
        raise InvalidInputError("Pattern cannot be empty")
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise InvalidInputError(f"Pattern is too long (max {MAX_PATTERN_LENGTH} characters)")
    if use_regex:
        compile_safe_regex(pattern)

    messages = sorted(service.get_messages(change), key=lambda m: m.date)
    urls: list[str] = []
    for message in messages:
        urls.extend(extract_urls_from_text(message.message, pattern, use_regex))
    if include_comments:
        for comment in flatten_comments(service.get_comments(change)):
            if comment.message:
                urls.extend(extract_urls_from_text(comment.message, pattern, use_regex))
    return urls


# Change actions


def normalize_notify(value: str | None) -> str | None:
    """
    Upper-case a notify level, accepting any case.

    Raises:
        InvalidInputError: For values outside none, owner,
            owner_reviewers and all.
    """
    if value is None:
        return None
    upper = value.strip().upper()
    if upper not in NOTIFY_LEVELS:
        raise InvalidInputError(
            f"Invalid notify level: {value}. Valid values: none, owner, owner_reviewers, all"
        )
    return upper


def parse_vote_labels(
    code_review: int | None = None,
    verified: int | None = None,
    label_args: Sequence[str] = (),
) -> dict[str, int]:
    """
    Collect vote labels from options.

    ``label_args`` is the flat list of ``--label NAME VALUE`` arguments.

    Raises:
        InvalidInputError: For an odd number of label arguments, a
            non-integer value, or no label at all.
    """
    labels: dict[str, int] = {}
    if code_review is not None:
        labels["Code-Review"] = code_review
    if verified is not None:
        labels["Verified"] = verified

    if len(label_args) % 2:
        raise InvalidInputError(
            "Invalid label format: labels must be provided as name-value pairs"
        )
    for name, raw in zip(label_args[::2], label_args[1::2]):
        try:
            labels[name] = int(raw)
        except ValueError as exc:
            raise InvalidInputError(
                f"Invalid label value for {name}: {raw}. Label values must be integers"
            ) from exc

    if not labels:
        raise InvalidInputError("At least one label is required")
    return labels


def cast_vote(
    service: GerritService,
    change: str,
    labels: dict[str, int],
    message: str | None = None,
) -> dict[str, Any]:
    service.post_review(change, labels=labels, message=message)
    result: dict[str, Any] = {"status": "success", "change_id": change, "labels": labels}
    if message:
        result["message"] = message
    return result


def post_comment(service: GerritService, change: str, message: str) -> dict[str, Any]:
    if not message or not message.strip():
        raise InvalidInputError("Message is required")
    service.post_review(change, message=message)
    return {"status": "success", "change_id": change, "message": message}


def _overall_status(results: Sequence[dict[str, Any]]) -> str:
    return "success" if all(r["success"] for r in results) else "partial_failure"


def add_reviewers(
    service: GerritService,
    change: str,
    reviewers: Sequence[str],
    *,
    cc: bool = False,
    group: bool = False,
    notify: str | None = None,
) -> dict[str, Any]:
    """
    Add reviewers (or CCs) one by one; each failure is reported, not raised.

    Raises:
        InvalidInputError: For no reviewers, email-like input with
            ``group``, or a bad notify level.
    """
    if not reviewers:
        raise InvalidInputError(f"At least one {'group' if group else 'reviewer'} is required.")
    if group:
        emails = [r for r in reviewers if "@" in r]
        if emails:
            raise InvalidInputError(
                "The --group flag expects group identifiers, but received email-like "
                f"input: {', '.join(emails)}. Did you mean to omit --group?"
            )
    level = normalize_notify(notify)
    state = "CC" if cc else "REVIEWER"

    results: list[dict[str, Any]] = []
    for reviewer in reviewers:
        try:
            outcome = service.add_reviewer(change, reviewer, state=state, notify=level)
        except GerritRestError as exc:
            results.append({"input": reviewer, "success": False, "error": str(exc)})
            continue
        if outcome.error:
            results.append({"input": reviewer, "success": False, "error": outcome.error})
            continue
        added = (outcome.reviewers or []) + (outcome.ccs or [])
        name = added[0].display_name if added else reviewer
        results.append({"input": reviewer, "success": True, "name": name})

    return {
        "status": _overall_status(results),
        "change_id": change,
        "state": state.lower(),
        "reviewers": results,
    }


def remove_reviewers(
    service: GerritService,
    change: str,
    reviewers: Sequence[str],
    notify: str | None = None,
) -> dict[str, Any]:
    """
    Remove reviewers sequentially; one failure does not stop the rest.

    Raises:
        InvalidInputError: For no reviewers or a bad notify level.
    """
    if not reviewers:
        raise InvalidInputError("At least one reviewer is required.")
    level = normalize_notify(notify)

    results: list[dict[str, Any]] = []
    for reviewer in reviewers:
        try:
            service.remove_reviewer(change, reviewer, notify=level)
        except GerritRestError as exc:
            log.debug("Removing %s failed: %s", reviewer, exc)
            results.append({"input": reviewer, "success": False, "error": str(exc)})
        else:
            results.append({"input": reviewer, "success": True})

    return {"status": _overall_status(results), "change_id": change, "reviewers": results}


def submit_blockers(change: ChangeInfo) -> list[str]:
    """Human readable reasons a change is not submittable."""
    reasons = []
    if change.status != "NEW":
        reasons.append(f"Change status is {change.status} (must be NEW)")
    if change.work_in_progress:
        reasons.append("Change is marked as work-in-progress")
    code_review = change.labels.get("Code-Review")
    if code_review is not None and not code_review.approved:
        reasons.append("Missing Code-Review+2 approval")
    verified = change.labels.get("Verified")
    if verified is not None and not verified.approved:
        reasons.append("Missing Verified+1 approval")
    return reasons or ["Change does not meet submit requirements"]


def submit_change(service: GerritService, change: str) -> dict[str, Any]:
    """Submit a change after checking it is submittable."""
    info = service.get_change(change)
    if info.submittable is False:
        return {
            "status": "error",
            "change_number": info.number,
            "subject": info.subject,
            "submittable": False,
            "reasons": submit_blockers(info),
        }
    result = service.submit_change(change)
    return {
        "status": "success",
        "change_number": info.number,
        "subject": info.subject,
        "submit_status": result.status,
    }


def rebase_change(service: GerritService, change: str, base: str | None = None) -> dict[str, Any]:
    """
    Rebase a change.

    Raises:
        GerritRestError: On conflicts (409) with the conflicting files
            listed in the message.
    """
    try:
        info = service.rebase_change(change, base)
    except GerritRestError as exc:
        if exc.status_code != 409:
            raise
        files = parse_conflict_files(exc.response_body or str(exc))
        message = "Rebase failed due to merge conflicts"
        if files:
            message += ": " + ", ".join(files)
        raise GerritRestError(message, exc.status_code, exc.response_body) from exc
    result: dict[str, Any] = {"status": "success", "change_id": change, "change_number": info.number}
    if base:
        result["base"] = base
    return result


def abandon_change(service: GerritService, change: str, message: str | None = None) -> dict[str, Any]:
    service.abandon_change(change, message)
    return {"status": "success", "change_id": change, "action": "abandoned"}


def restore_change(service: GerritService, change: str, message: str | None = None) -> dict[str, Any]:
    info = service.restore_change(change, message)
    return {
        "status": "success",
        "change_id": change,
        "action": "restored",
        "change_number": info.number,
        "subject": info.subject,
    }


def manage_topic(
    service: GerritService,
    change: str,
    new_topic: str | None = None,
    delete: bool = False,
) -> dict[str, Any]:
    """Get, set or delete the topic of a change."""
    if delete:
        service.delete_topic(change)
        return {"status": "success", "action": "deleted", "change_id": change}
    if new_topic is not None and new_topic.strip():
        topic = service.set_topic(change, new_topic.strip())
        return {"status": "success", "action": "set", "change_id": change, "topic": topic}
    try:
        topic = service.get_topic(change)
    except GerritNotFoundError:
        # Gerrit answers 404 when no topic is set
        topic = ""
    return {"status": "success", "action": "get", "change_id": change, "topic": topic or None}


# Local git workflows


def checkout_change(
    service: GerritService,
    git: Git,
    value: str,
    *,
    detach: bool = False,
    remote: str | None = None,
) -> dict[str, Any]:
    """
    Fetch a patchset and check it out locally.

    ``value`` may be a number, Change-Id, ``NUM/PS`` or change URL. The
    patchset lands on branch ``review/<number>`` (created or reset), or
    on a detached HEAD.

    Raises:
        InvalidInputError: For bad identifiers, refs or names.
        GitError: When a git step fails.
    """
    git.ensure_repo()
    parsed = parse_change_input(value)
    change = normalize_change_identifier(parsed.change).value
    info = service.get_change(change)

    if parsed.patchset:
        revision = service.get_revision(change, str(parsed.patchset))
    else:
        revision = info.current_revision_info or service.get_revision(change, "current")

    ref = revision.ref
    if not is_valid_refspec(ref):
        raise InvalidInputError(f"Invalid Gerrit ref format: {ref}")

    remote_name = remote or git.find_matching_remote(service.host) or "origin"
    validate_git_safe(remote_name, "Remote name")
    branch = validate_git_safe(f"{REVIEW_BRANCH_PREFIX}{info.number}", "Branch name")

    log.info("Fetching %s from %s", ref, remote_name)
    git.run(["fetch", remote_name, ref])

    if detach:
        git.run(["checkout", "FETCH_HEAD"])
    elif git.local_branch_exists(branch):
        if git.current_branch() != branch:
            git.run(["checkout", branch])
        git.run(["reset", "--hard", "FETCH_HEAD"])
    else:
        git.run(["checkout", "-b", branch, "FETCH_HEAD"])

    upstream: str | None = None
    if not detach:
        target = validate_git_safe(info.branch, "Target branch")
        try:
            git.run(["branch", f"--set-upstream-to={remote_name}/{target}"])
            upstream = f"{remote_name}/{target}"
        except GitError as exc:
            log.debug("Could not set upstream: %s", exc)

    return {
        "status": "success",
        "change_number": info.number,
        "subject": info.subject,
        "patchset": revision.number,
        "ref": ref,
        "remote": remote_name,
        "branch": None if detach else branch,
        "detached": detach,
        "upstream": upstream,
        "url": service.url_builder.change_url(info.project, info.number),
    }


@dataclass
class PushOutcome:
    result: PushResult
    amended: bool


def push_change(
    git: Git,
    host: str,
    fetcher: HookFetcher,
    options: PushOptions,
    *,
    branch: str | None = None,
    dry_run: bool = False,
) -> PushOutcome:
    """
    Push HEAD for review to the remote that points at the Gerrit host.

    A missing Change-Id is added by installing the commit-msg hook and
    amending HEAD.

    Raises:
        NotGitRepoError: Outside a repository.
        PushError: When no remote matches the host or the push fails.
        MissingChangeIdError: When the hook is present but HEAD lacks a
            Change-Id.
    """
    git.ensure_repo()
    remote = git.find_matching_remote(host)
    if remote is None:
        raise PushError(
            f"No git remote found matching Gerrit host: {host}\n"
            "Please ensure your git remote points to the Gerrit server."
        )

    amended = CommitHookService(git, host, fetcher).ensure_change_id()
    target = branch or detect_target_branch(git, remote)
    log.info("Pushing to %s for review on %s", remote, target)
    return PushOutcome(push_for_review(git, remote, target, options, dry_run=dry_run), amended)


def install_commit_hook(hooks: CommitHookService, force: bool = False) -> dict[str, Any]:
    """Install the commit-msg hook unless present and ``force`` is off."""
    path = hooks.hook_path()
    if hooks.has_hook() and not force:
        return {
            "status": "skipped",
            "path": str(path),
            "message": "commit-msg hook already installed. Use --force to overwrite",
        }
    hooks.install_hook()
    return {"status": "success", "path": str(path), "message": "commit-msg hook installed"}


def create_workspace(
    service: GerritService,
    worktrees: GitWorktreeService,
    value: str,
) -> tuple[WorktreeInfo, int]:
    """
    Create a review worktree the user keeps.

    ``value`` is a change identifier optionally followed by
    ``:<patchset>``. Returns the worktree and the patchset checked out.
    """
    target, sep, patchset_text = value.rpartition(":")
    if not sep or "/" in patchset_text:
        target, patchset_text = value, ""
    patchset: int | None = None
    if patchset_text:
        if not patchset_text.isdigit() or int(patchset_text) < 1:
            raise InvalidInputError(f"Invalid patchset number: {patchset_text}")
        patchset = int(patchset_text)

    number = change_number_of(service, resolve_change(target))
    worktrees.validate_preconditions()
    info = worktrees.create_worktree(number)
    try:
        checked_out = worktrees.fetch_and_checkout_patchset(info, patchset)
    except GerError:
        worktrees.cleanup(info)
        raise
    return info, checked_out


# AI review


@dataclass
class ReviewOutcome:
    strategy: str
    change_number: str
    patchset: int | None
    changed_files: list[str] = field(default_factory=list)
    inline_comments: list[InlineComment] = field(default_factory=list)
    overall: str = ""


def run_review(
    service: GerritService,
    worktrees: GitWorktreeService,
    strategy: ReviewStrategy,
    change: str,
    *,
    user_prompt: str,
    patchset: int | None = None,
    progress: Callable[[str], None] | None = None,
) -> ReviewOutcome:
    """
    Review a change with an AI tool inside a temporary worktree.

    Runs an inline pass that must answer a JSON array of comments and an
    overall pass answering free text. The worktree is removed and the
    original directory restored whatever happens.
    """
    report = progress or log.info
    number = change_number_of(service, change)
    outcome = ReviewOutcome(strategy=strategy.name, change_number=number, patchset=patchset)

    with review_worktree(worktrees, number, patchset) as info:
        outcome.changed_files = worktrees.changed_files(info)
        report(f"Found {len(outcome.changed_files)} changed files")

        report(f"Generating inline comments for change {number}...")
        inline_prompt = build_review_prompt(
            service, number, user_prompt, load_bundled_prompt(INLINE_SYSTEM_PROMPT), outcome.changed_files
        )
        raw = parse_inline_comments(strategy.execute(inline_prompt, cwd=info.path))
        outcome.inline_comments = validate_inline_comments(raw, outcome.changed_files)
        dropped = len(raw) - len(outcome.inline_comments)
        if dropped:
            report(f"Filtered {dropped} invalid comments, {len(outcome.inline_comments)} remain")

        report(f"Generating overall review comment for change {number}...")
        overall_prompt = build_review_prompt(
            service, number, user_prompt, load_bundled_prompt(OVERALL_SYSTEM_PROMPT), outcome.changed_files
        )
        outcome.overall = strategy.execute(overall_prompt, cwd=info.path)

    return outcome


def post_inline_comments(
    service: GerritService, change: str, comments: Sequence[InlineComment]
) -> None:
    service.post_review(change, comments=comments_payload(comments))


def post_overall_review(service: GerritService, change: str, message: str) -> None:
    post_comment(service, change, message)


# Account and server


def connection_status(service: GerritService) -> dict[str, Any]:
    connected = service.test_connection()
    return {"status": "success" if connected else "error", "connected": connected, "host": service.host}


def project_rows(service: GerritService, pattern: str | None = None) -> list[dict[str, Any]]:
    return [
        {"name": p.name, "description": p.description, "state": p.state}
        for p in service.list_projects(pattern)
    ]


def read_prompt(path: str | None) -> tuple[str, bool]:
    """
    User review prompt: the file at ``path`` when readable, else the
    bundled default. The flag tells whether the custom file was used.
    """
    if path:
        custom = read_prompt_file(path)
        if custom is not None:
            return custom, True
    return load_bundled_prompt(DEFAULT_REVIEW_PROMPT), False


__all__ = [
    "PushOutcome",
    "ReviewOutcome",
    "abandon_change",
    "add_reviewers",
    "build_status",
    "cast_vote",
    "change_number_of",
    "change_summary",
    "checkout_change",
    "compile_safe_regex",
    "connection_status",
    "create_workspace",
    "extract_urls",
    "extract_urls_from_text",
    "group_by_project",
    "install_commit_hook",
    "list_comments",
    "manage_topic",
    "normalize_notify",
    "parse_vote_labels",
    "post_comment",
    "post_inline_comments",
    "post_overall_review",
    "project_rows",
    "push_change",
    "read_prompt",
    "rebase_change",
    "remove_reviewers",
    "resolve_change",
    "restore_change",
    "run_review",
    "search_changes",
    "show_change",
    "submit_blockers",
    "submit_change",
]
