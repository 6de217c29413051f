# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Change identifier, host and git-argument validation.

Every command funnels its change argument through this module before any
REST call or git invocation is made. Supported identifier formats:

    392385                                       numeric change number
    If5a3ae8cb5a107e187447802358417f311d0c4b1    Change-Id
    https://gerrit.example.org/c/project/+/392385

The git helpers (``is_valid_refspec``, ``validate_remote_name``,
``validate_git_safe``) guard every server- or user-supplied value that is
passed on a git command line.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

from ger.exceptions import InvalidInputError

CHANGE_NUMBER_PATTERN = re.compile(r"^\d+$")
CHANGE_ID_PATTERN = re.compile(r"^I[0-9a-f]{40}$")
FETCH_REFSPEC_PATTERN = re.compile(r"^refs/changes/\d+/\d+/\d+$")
REMOTE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")
GIT_SAFE_PATTERN = re.compile(r"^[a-zA-Z0-9_\-/.]+$")

# Gerrit web UI change paths, with and without the project segment,
# and the legacy hash-routed variants.
_CHANGE_URL_PATTERNS = (
    re.compile(r"/c/.+?/\+/(\d+)"),
    re.compile(r"#/c/.+?/\+/(\d+)"),
    re.compile(r"/c/\+/(\d+)"),
    re.compile(r"#/c/\+/(\d+)"),
)


class ChangeIdentifierKind(str, Enum):
    """The two accepted shapes of a change identifier."""

    NUMBER = "change-number"
    CHANGE_ID = "change-id"


@dataclass(frozen=True)
class ChangeIdentifier:
    """A validated change identifier."""

    value: str
    kind: ChangeIdentifierKind

    @property
    def is_number(self) -> bool:
        return self.kind is ChangeIdentifierKind.NUMBER

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ParsedChangeInput:
    """A change reference with an optional explicit patchset."""

    change: str
    patchset: int | None = None


def normalize_change_identifier(value: str) -> ChangeIdentifier:
    """
    Validate a change identifier.

    Args:
        value: Raw user input; surrounding whitespace is ignored.

    Returns:
        The validated identifier tagged with its kind.

    Raises:
        InvalidInputError: If the input is neither a change number nor a
            Change-Id.
    """
    trimmed = value.strip()
    if CHANGE_NUMBER_PATTERN.match(trimmed):
        return ChangeIdentifier(trimmed, ChangeIdentifierKind.NUMBER)
    if CHANGE_ID_PATTERN.match(trimmed):
        return ChangeIdentifier(trimmed, ChangeIdentifierKind.CHANGE_ID)
    raise InvalidInputError(
        f'Invalid change identifier: "{value}". Expected either a numeric '
        'change number (e.g., "392385") or a Change-ID starting with "I" '
        '(e.g., "If5a3ae8cb5a107e187447802358417f311d0c4b1")'
    )


def is_change_number(value: str) -> bool:
    return bool(CHANGE_NUMBER_PATTERN.match(value))


def is_change_id(value: str) -> bool:
    return bool(CHANGE_ID_PATTERN.match(value))


def normalize_gerrit_host(host: str) -> str:
    """
    Normalize a Gerrit host into an absolute URL without a trailing slash.

    ``gerrit.example.org`` becomes ``https://gerrit.example.org`` and
    ``http://gerrit.example.org/`` becomes ``http://gerrit.example.org``.

    Raises:
        InvalidInputError: If the result is not an absolute http(s) URL.
    """
    normalized = host.strip()
    if "://" in normalized and not normalized.startswith(("http://", "https://")):
        raise InvalidInputError(
            f'Invalid Gerrit host: "{host}". Only http and https URLs are supported'
        )
    if not normalized.startswith(("http://", "https://")):
        normalized = f"https://{normalized}"
    normalized = normalized.rstrip("/")

    parsed = urlparse(normalized)
    if not parsed.netloc or any(c.isspace() for c in normalized):
        raise InvalidInputError(f'Invalid Gerrit host: "{host}"')
    return normalized


def extract_change_number(value: str) -> str:
    """
    Reduce a Gerrit change URL to its change number.

    Non-URL input, and URLs that match no known change path, are
    returned trimmed but otherwise unchanged.
    """
    trimmed = value.strip()
    if not trimmed.startswith(("http://", "https://")):
        return trimmed

    parsed = urlparse(trimmed)
    full_path = parsed.path + (f"#{parsed.fragment}" if parsed.fragment else "")
    for pattern in _CHANGE_URL_PATTERNS:
        match = pattern.search(full_path)
        if match:
            return match.group(1)
    return trimmed


def parse_change_input(value: str) -> ParsedChangeInput:
    """
    Split checkout-style input into a change reference and patchset.

    Accepts ``12345``, ``12345/3``, a Change-Id, or a change URL that may
    end in ``/<patchset>``.
    """
    trimmed = value.strip()

    if trimmed.startswith(("http://", "https://")):
        change = extract_change_number(trimmed)
        match = re.search(r"/(\d+)/(\d+)(?:/|$)", urlparse(trimmed).path)
        if match:
            return ParsedChangeInput(match.group(1), int(match.group(2)))
        return ParsedChangeInput(change)

    parts = trimmed.split("/")
    if len(parts) == 2:
        change, patchset = parts
        if patchset.isdigit() and int(patchset) > 0:
            return ParsedChangeInput(change, int(patchset))
        return ParsedChangeInput(change)

    return ParsedChangeInput(trimmed)


def is_valid_refspec(value: str) -> bool:
    """Return True for fetch refs of the form ``refs/changes/NN/NUM/PS``."""
    return bool(FETCH_REFSPEC_PATTERN.match(value))


def validate_remote_name(value: str) -> bool:
    """Return True when ``value`` is safe to pass to git as a remote name."""
    return bool(REMOTE_NAME_PATTERN.match(value))


def validate_git_safe(value: str, field: str) -> str:
    """
    Ensure a branch or remote name contains only git-safe characters.

    Raises:
        InvalidInputError: Naming the field and a truncated value.
    """
    if GIT_SAFE_PATTERN.match(value):
        return value
    shown = f"{value[:20]}..." if len(value) > 20 else value
    raise InvalidInputError(f"{field} contains invalid characters: {shown}")


def change_ref(change_number: int | str, patchset: int) -> str:
    """
    Build the sharded fetch ref for a patchset.

    Gerrit shards change refs by the last two digits of the change
    number, left-padded to two characters.
    """
    number = str(change_number)
    if not CHANGE_NUMBER_PATTERN.match(number):
        raise InvalidInputError(f"Change number must be numeric: {number}")
    shard = number[-2:].rjust(2, "0")
    return f"refs/changes/{shard}/{number}/{patchset}"


__all__ = [
    "CHANGE_ID_PATTERN",
    "CHANGE_NUMBER_PATTERN",
    "ChangeIdentifier",
    "ChangeIdentifierKind",
    "ParsedChangeInput",
    "change_ref",
    "extract_change_number",
    "is_change_id",
    "is_change_number",
    "is_valid_refspec",
    "normalize_change_identifier",
    "normalize_gerrit_host",
    "parse_change_input",
    "validate_git_safe",
    "validate_remote_name",
]
