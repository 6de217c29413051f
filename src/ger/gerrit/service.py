# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit service layer for ger.

This module provides a high-level service class over the REST client. It
validates change identifiers before any request, builds endpoint paths,
decodes responses into models, and covers:

- Change reads and queries
- Change actions (review, abandon, restore, rebase, submit)
- Revisions, files, diffs, patches and inline comments
- Change messages, reviewers and topics
- Projects and groups
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from ger.config import GerConfig
from ger.gerrit.client import (
    MSG_INVALID_FORMAT,
    GerritRestClient,
    GerritRestError,
    build_client,
)
from ger.gerrit.models import (
    AccountInfo,
    ChangeInfo,
    CommentInfo,
    FileDiffInfo,
    FileInfo,
    GroupDetailInfo,
    GroupInfo,
    MessageInfo,
    ProjectInfo,
    ReviewerResult,
    ReviewResult,
    RevisionInfo,
    SubmitInfo,
    casefold_sort_key,
)
from ger.gerrit.urls import CHANGE_OPTIONS, GerritUrlBuilder, encode_segment
from ger.identifiers import normalize_change_identifier

log = logging.getLogger("ger.gerrit.service")

DiffFormat = Literal["unified", "json", "files"]

NOTIFY_LEVELS: tuple[str, ...] = ("NONE", "OWNER", "OWNER_REVIEWERS", "ALL")

_SPECIAL_FILES = frozenset({"/COMMIT_MSG", "/MERGE_LIST", "/PATCHSET_LEVEL"})


def to_unified_diff(diff: FileDiffInfo, file_path: str) -> str:
    """
    Render a Gerrit JSON file diff as unified-diff text.

    Uses the server's ``diff_header`` when present. Common lines are
    prefixed with a space, removed lines with ``-`` and added lines
    with ``+``.
    """
    lines: list[str] = []
    if diff.diff_header:
        lines.extend(diff.diff_header)
    else:
        lines.append(f"--- a/{file_path}")
        lines.append(f"+++ b/{file_path}")

    for section in diff.content:
        lines.extend(f" {line}" for line in section.ab or [])
        lines.extend(f"-{line}" for line in section.a or [])
        lines.extend(f"+{line}" for line in section.b or [])
    return "\n".join(lines)


def parse_conflict_files(response_body: str) -> list[str]:
    """
    Parse conflicting file names from Gerrit's 409 rebase response.

    The response format is typically:
    "The change could not be rebased due to a conflict during merge.

    merge conflict(s):
    path/to/file1.txt
    path/to/file2.txt"
    """
    files: list[str] = []
    in_conflict_section = False
    for line in response_body.strip().splitlines():
        line = line.strip()
        if not line:
            if in_conflict_section:
                break
            continue
        if "merge conflict" in line.lower():
            in_conflict_section = True
            continue
        if in_conflict_section:
            files.append(line)
    return files


def _as_mapping(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise GerritRestError(f"{MSG_INVALID_FORMAT}: {what}")
    return data


class GerritService:
    """
    High-level service for Gerrit operations.

    Every method taking a ``change`` validates it as a change number or
    Change-Id before touching the network.
    """

    def __init__(self, client: GerritRestClient) -> None:
        self._client = client
        self._urls = GerritUrlBuilder(client.base_url)

    @property
    def host(self) -> str:
        return self._client.base_url

    @property
    def client(self) -> GerritRestClient:
        return self._client

    @property
    def url_builder(self) -> GerritUrlBuilder:
        """Get the URL builder for constructing URLs."""
        return self._urls

    def _change(self, change: str) -> str:
        return normalize_change_identifier(change).value

    # Changes

    def get_change(self, change: str) -> ChangeInfo:
        """Fetch a change with its current revision and commit."""
        endpoint = self._urls.change_endpoint(self._change(change), options=CHANGE_OPTIONS)
        log.debug("Fetching change info: %s", endpoint)
        return ChangeInfo.parse(self._client.get(endpoint))

    def list_changes(self, query: str = "is:open", limit: int | None = None) -> list[ChangeInfo]:
        """Query changes; the default query is ``is:open``."""
        endpoint = self._urls.changes_query_endpoint(query or "is:open", limit=limit)
        log.debug("Querying changes: %s", endpoint)
        return ChangeInfo.parse_list(self._client.get(endpoint))

    def post_review(
        self,
        change: str,
        *,
        message: str | None = None,
        labels: dict[str, int] | None = None,
        comments: dict[str, list[dict[str, Any]]] | None = None,
        revision: str = "current",
    ) -> ReviewResult:
        """Post a review message and/or votes on a revision."""
        body: dict[str, Any] = {}
        if message:
            body["message"] = message
        if labels:
            body["labels"] = labels
        if comments:
            body["comments"] = comments
        endpoint = self._urls.revision_endpoint(self._change(change), revision, "review")
        return ReviewResult.parse(self._client.post(endpoint, data=body))

    def abandon_change(self, change: str, message: str | None = None) -> None:
        endpoint = self._urls.change_endpoint(self._change(change), "abandon")
        self._client.post(endpoint, data={"message": message} if message else {})

    def restore_change(self, change: str, message: str | None = None) -> ChangeInfo:
        endpoint = self._urls.change_endpoint(self._change(change), "restore")
        data = self._client.post(endpoint, data={"message": message} if message else {})
        return ChangeInfo.parse(data)

    def rebase_change(self, change: str, base: str | None = None) -> ChangeInfo:
        """
        Rebase a change onto its target branch or ``base``.

        Raises:
            GerritRestError: HTTP 409 when the rebase has conflicts; the
                response body lists the conflicting files.
        """
        endpoint = self._urls.change_endpoint(self._change(change), "rebase")
        data = self._client.post(endpoint, data={"base": base} if base else {})
        log.info("Rebased change %s", change)
        return ChangeInfo.parse(data)

    def submit_change(self, change: str) -> SubmitInfo:
        endpoint = self._urls.change_endpoint(self._change(change), "submit")
        return SubmitInfo.parse(self._client.post(endpoint, data={}))

    def test_connection(self) -> bool:
        """Return True when ``/accounts/self`` answers; never raises."""
        try:
            self._client.get("/accounts/self")
            return True
        except Exception as exc:
            log.debug("Connection test failed: %s", exc)
            return False

    def get_account_self(self) -> AccountInfo:
        return AccountInfo.parse(self._client.get("/accounts/self"))

    # Revisions, files and diffs

    def get_revision(self, change: str, revision: str = "current") -> RevisionInfo:
        endpoint = self._urls.revision_endpoint(self._change(change), revision)
        return RevisionInfo.parse(self._client.get(endpoint))

    def get_files(self, change: str, revision: str = "current") -> dict[str, FileInfo]:
        endpoint = self._urls.revision_endpoint(self._change(change), revision, "files")
        data = _as_mapping(self._client.get(endpoint), "files")
        return {path: FileInfo.parse(info) for path, info in data.items()}

    def get_file_diff(
        self,
        change: str,
        file_path: str,
        revision: str = "current",
        base: str | None = None,
    ) -> FileDiffInfo:
        endpoint = self._urls.file_endpoint(self._change(change), revision, file_path, "diff")
        if base:
            endpoint += f"?base={encode_segment(base)}"
        return FileDiffInfo.parse(self._client.get(endpoint))

    def get_file_content(self, change: str, file_path: str, revision: str = "current") -> str:
        """Return the decoded content of a file at a revision."""
        endpoint = self._urls.file_endpoint(self._change(change), revision, file_path, "content")
        return self._client.get_text(endpoint)

    def get_patch(self, change: str, revision: str = "current") -> str:
        """Return the decoded ``git format-patch`` text of a revision."""
        endpoint = self._urls.revision_endpoint(self._change(change), revision, "patch")
        return self._client.get_text(endpoint)

    def get_diff(
        self,
        change: str,
        *,
        format: DiffFormat = "unified",
        file: str | None = None,
        patchset: int | None = None,
        base: str | None = None,
        full_files: bool = False,
    ) -> str | list[str] | dict[str, Any]:
        """
        Fetch a diff in one of three shapes.

        - ``files``: the list of changed paths
        - ``json``: the raw file map, or the JSON diff of ``file``
        - ``unified``: patch text, or the rendered diff of ``file``

        ``full_files`` returns whole post-image file contents instead.
        """
        revision = str(patchset) if patchset else "current"

        if format == "files":
            return list(self.get_files(change, revision))

        if file:
            diff = self.get_file_diff(change, file, revision, base)
            if format == "json":
                return diff.to_dict()
            return to_unified_diff(diff, file)

        if full_files:
            contents: dict[str, str] = {}
            for path in self.get_files(change, revision):
                if path in _SPECIAL_FILES:
                    continue
                try:
                    contents[path] = self.get_file_content(change, path, revision)
                except GerritRestError as exc:
                    log.debug("Could not read %s: %s", path, exc)
                    contents[path] = "Binary file or permission denied"
            if format == "json":
                return contents
            return "\n".join(f"=== {path} ===\n{text}\n" for path, text in contents.items())

        if format == "json":
            return {p: f.to_dict() for p, f in self.get_files(change, revision).items()}
        return self.get_patch(change, revision)

    def get_comments(self, change: str, revision: str = "current") -> dict[str, list[CommentInfo]]:
        """Inline comments of a revision keyed by file path."""
        endpoint = self._urls.revision_endpoint(self._change(change), revision, "comments")
        data = _as_mapping(self._client.get(endpoint), "comments")
        return {path: CommentInfo.parse_list(items) for path, items in data.items()}

    # Messages, reviewers and topics

    def get_messages(self, change: str) -> list[MessageInfo]:
        """
        Return the full message timeline, autogenerated entries included.

        Callers presenting messages to a user apply
        ``ger.build_status.filter_meaningful_messages`` themselves.
        """
        endpoint = self._urls.change_endpoint(self._change(change), options=("MESSAGES",))
        data = _as_mapping(self._client.get(endpoint), "messages")
        return MessageInfo.parse_list(data.get("messages") or [])

    def add_reviewer(
        self,
        change: str,
        reviewer: str,
        *,
        state: Literal["REVIEWER", "CC"] | None = None,
        notify: str | None = None,
    ) -> ReviewerResult:
        body: dict[str, Any] = {"reviewer": reviewer}
        if state:
            body["state"] = state
        if notify:
            body["notify"] = notify
        endpoint = self._urls.change_endpoint(self._change(change), "reviewers")
        return ReviewerResult.parse(self._client.post(endpoint, data=body))

    def remove_reviewer(self, change: str, reviewer: str, notify: str | None = None) -> None:
        endpoint = self._urls.change_endpoint(
            self._change(change), "reviewers", encode_segment(reviewer), "delete"
        )
        self._client.post(endpoint, data={"notify": notify} if notify else {})

    def get_topic(self, change: str) -> str:
        """Return the topic, or an empty string when none is set."""
        endpoint = self._urls.change_endpoint(self._change(change), "topic")
        data = self._client.get(endpoint)
        return data if isinstance(data, str) else ""

    def set_topic(self, change: str, topic: str) -> str:
        endpoint = self._urls.change_endpoint(self._change(change), "topic")
        data = self._client.put(endpoint, data={"topic": topic})
        return data if isinstance(data, str) else topic

    def delete_topic(self, change: str) -> None:
        self._client.delete(self._urls.change_endpoint(self._change(change), "topic"))

    # Projects and groups

    def list_projects(self, pattern: str | None = None) -> list[ProjectInfo]:
        """List projects sorted case-insensitively by name."""
        data = _as_mapping(self._client.get(self._urls.projects_endpoint(pattern)), "projects")
        projects = [
            ProjectInfo.parse({**(info or {}), "name": name}) for name, info in data.items()
        ]
        return sorted(projects, key=lambda p: casefold_sort_key(p.name))

    def list_groups(
        self,
        *,
        owned: bool = False,
        project: str | None = None,
        user: str | None = None,
        pattern: str | None = None,
        limit: int | None = None,
        skip: int | None = None,
    ) -> list[GroupInfo]:
        """List groups sorted case-insensitively by name, falling back to id."""
        endpoint = self._urls.groups_endpoint(
            owned=owned, project=project, user=user, pattern=pattern, limit=limit, skip=skip
        )
        data = _as_mapping(self._client.get(endpoint), "groups")
        groups = []
        for name, info in data.items():
            info = dict(info or {})
            info.setdefault("name", name)
            groups.append(GroupInfo.parse(info))
        return sorted(groups, key=lambda g: casefold_sort_key(g.sort_key))

    def get_group(self, group: str) -> GroupInfo:
        return GroupInfo.parse(self._client.get(self._urls.group_endpoint(group)))

    def get_group_detail(self, group: str) -> GroupDetailInfo:
        return GroupDetailInfo.parse(self._client.get(self._urls.group_endpoint(group, "detail")))

    def get_group_members(self, group: str) -> list[AccountInfo]:
        return AccountInfo.parse_list(self._client.get(self._urls.group_endpoint(group, "members/")))

    def __repr__(self) -> str:
        return f"GerritService(host={self.host!r})"


def create_gerrit_service(config: GerConfig, max_attempts: int = 3) -> GerritService:
    """
    Factory function to create a GerritService from resolved config.

    Returns:
        Configured GerritService instance.
    """
    client = build_client(
        config.host,
        config.username,
        config.password,
        timeout=config.timeout,
        max_attempts=max_attempts,
    )
    return GerritService(client)


__all__ = [
    "NOTIFY_LEVELS",
    "GerritService",
    "create_gerrit_service",
    "parse_conflict_files",
    "to_unified_diff",
]
