# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit URL construction utilities.

This module provides a centralized way to construct Gerrit REST endpoint
paths and web UI URLs. REST paths are returned relative to the server
(``/changes/...``); the REST client adds the ``/a/`` prefix. Every path
segment that carries user input is percent-encoded.

Usage:
    from ger.gerrit.urls import GerritUrlBuilder

    builder = GerritUrlBuilder("https://gerrit.example.org")
    endpoint = builder.change_endpoint("12345", "topic")
    change_url = builder.change_url("releng/project", 12345)
"""

from __future__ import annotations

import logging
from urllib.parse import quote

log = logging.getLogger("ger.gerrit.urls")

# Options for a single change fetch
CHANGE_OPTIONS: tuple[str, ...] = ("CURRENT_REVISION", "CURRENT_COMMIT")

# Options for change queries
LIST_OPTIONS: tuple[str, ...] = (
    "LABELS",
    "DETAILED_LABELS",
    "DETAILED_ACCOUNTS",
    "SUBMITTABLE",
)


def encode_segment(value: str | int) -> str:
    """Percent-encode one path segment, including any slashes."""
    return quote(str(value), safe="")


def _with_params(endpoint: str, params: list[str]) -> str:
    if params:
        return endpoint + "?" + "&".join(params)
    return endpoint


class GerritUrlBuilder:
    """
    Builder for Gerrit REST paths and web URLs.

    Args:
        host: Normalized Gerrit base URL (scheme, no trailing slash).
    """

    def __init__(self, host: str) -> None:
        self.host = host.rstrip("/")
        log.debug("GerritUrlBuilder: host=%s", self.host)

    def web_url(self, path: str = "") -> str:
        """
        Build a Gerrit web UI URL.

        Args:
            path: Web path (e.g., "c/project/+/123", "dashboard").
        """
        if path:
            return f"{self.host}/{path.lstrip('/')}"
        return self.host

    def change_url(self, project: str, change_number: int) -> str:
        """Build the web URL of a change: ``/c/<project>/+/<number>``."""
        return self.web_url(f"c/{project}/+/{change_number}")

    def hook_url(self) -> str:
        """URL of the server's commit-msg hook script."""
        return self.web_url("tools/hooks/commit-msg")

    def change_endpoint(
        self,
        change: str,
        *segments: str,
        options: tuple[str, ...] | list[str] | None = None,
    ) -> str:
        """
        Build a REST path under ``/changes/<change>``.

        Segments are appended verbatim, so callers encode any user-supplied
        segment with :func:`encode_segment`.
        """
        endpoint = f"/changes/{encode_segment(change)}"
        if segments:
            endpoint += "/" + "/".join(segments)
        return _with_params(endpoint, [f"o={opt}" for opt in options or ()])

    def revision_endpoint(self, change: str, revision: str, *segments: str) -> str:
        return self.change_endpoint(
            change, "revisions", encode_segment(revision), *segments
        )

    def file_endpoint(
        self, change: str, revision: str, path: str, *segments: str
    ) -> str:
        return self.revision_endpoint(
            change, revision, "files", encode_segment(path), *segments
        )

    def changes_query_endpoint(
        self,
        query: str,
        options: tuple[str, ...] | list[str] | None = LIST_OPTIONS,
        limit: int | None = None,
        start: int | None = None,
    ) -> str:
        """
        Build a path for querying changes.

        Args:
            query: Gerrit query string (e.g., "status:open project:foo").
            options: Query options (e.g., ["LABELS"]).
            limit: Maximum number of results.
            start: Starting offset for pagination.
        """
        params = [f"q={quote(query, safe='')}"]
        params.extend(f"o={opt}" for opt in options or ())
        if limit is not None:
            params.append(f"n={limit}")
        if start is not None:
            params.append(f"S={start}")
        return _with_params("/changes/", params)

    def projects_endpoint(self, pattern: str | None = None) -> str:
        params = [f"p={quote(pattern, safe='')}"] if pattern else []
        return _with_params("/projects/", params)

    def groups_endpoint(
        self,
        *,
        owned: bool = False,
        project: str | None = None,
        user: str | None = None,
        pattern: str | None = None,
        limit: int | None = None,
        skip: int | None = None,
    ) -> str:
        params: list[str] = []
        if owned:
            params.append("owned")
        if project:
            params.append(f"p={quote(project, safe='')}")
        if user:
            params.append(f"user={quote(user, safe='')}")
        if pattern:
            params.append(f"r={quote(pattern, safe='')}")
        if limit:
            params.append(f"n={limit}")
        if skip:
            params.append(f"S={skip}")
        return _with_params("/groups/", params)

    def group_endpoint(self, group: str, suffix: str = "") -> str:
        endpoint = f"/groups/{encode_segment(group)}"
        if suffix:
            endpoint += f"/{suffix}"
        return endpoint

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"GerritUrlBuilder(host={self.host!r})"


__all__ = [
    "CHANGE_OPTIONS",
    "LIST_OPTIONS",
    "GerritUrlBuilder",
    "encode_segment",
]
