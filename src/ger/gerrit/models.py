# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit data models for ger.

Pydantic models for the Gerrit REST entities ger reads. The models:
- Map Gerrit's underscore-prefixed keys (``_number``, ``_account_id``,
  ``_revision_number``) to plain attribute names
- Accept unknown fields so newer Gerrit releases keep decoding
- Reject shape mismatches on the fields ger depends on, surfacing them
  as ``GerritRestError("Invalid response format from server")``
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ger.gerrit.client import MSG_INVALID_FORMAT, GerritRestError

ModelT = TypeVar("ModelT", bound="GerritModel")


class GerritChangeStatus(str, Enum):
    """Gerrit change status values."""

    NEW = "NEW"
    MERGED = "MERGED"
    ABANDONED = "ABANDONED"
    DRAFT = "DRAFT"


class GerritModel(BaseModel):
    """Base for all Gerrit response models."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @classmethod
    def parse(cls: type[ModelT], data: Any) -> ModelT:
        """Validate a decoded response, mapping errors to GerritRestError."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise GerritRestError(f"{MSG_INVALID_FORMAT}: {cls.__name__}") from exc

    @classmethod
    def parse_list(cls: type[ModelT], data: Any) -> list[ModelT]:
        if not isinstance(data, list):
            if data == {}:
                return []
            raise GerritRestError(f"{MSG_INVALID_FORMAT}: expected a list")
        return [cls.parse(item) for item in data]

    def to_dict(self) -> dict[str, Any]:
        """Dump using Gerrit's wire names, dropping unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class AccountInfo(GerritModel):
    """A Gerrit account as embedded in changes, messages and groups."""

    account_id: int | None = Field(None, alias="_account_id")
    name: str | None = None
    email: str | None = None
    username: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.username or (
            str(self.account_id) if self.account_id is not None else "Unknown"
        )


class ApprovalInfo(AccountInfo):
    """A single vote on a label."""

    value: int | None = None
    date: str | None = None


class LabelInfo(GerritModel):
    """Label state; ``all`` is present only with DETAILED_LABELS."""

    approved: AccountInfo | None = None
    rejected: AccountInfo | None = None
    recommended: AccountInfo | None = None
    disliked: AccountInfo | None = None
    value: int | None = None
    optional: bool | None = None
    blocking: bool | None = None
    all: list[ApprovalInfo] | None = None
    values: dict[str, str] | None = None

    def max_vote(self) -> int | None:
        votes = [a.value for a in self.all or [] if a.value is not None]
        if votes:
            return max(votes)
        return self.value


class GitPersonInfo(GerritModel):
    name: str
    email: str
    date: str | None = None


class CommitInfo(GerritModel):
    commit: str | None = None
    parents: list[dict[str, Any]] = Field(default_factory=list)
    author: GitPersonInfo | None = None
    committer: GitPersonInfo | None = None
    subject: str = ""
    message: str = ""


class FetchInfo(GerritModel):
    url: str
    ref: str


class RevisionInfo(GerritModel):
    """A patchset of a change."""

    kind: str | None = None
    number: int = Field(..., alias="_number")
    created: str | None = None
    uploader: AccountInfo | None = None
    ref: str = ""
    fetch: dict[str, FetchInfo] | None = None
    commit: CommitInfo | None = None


class ChangeInfo(GerritModel):
    """
    Represents a Gerrit change.

    Snapshots returned by the server are never mutated; commands derive
    new values from them instead.
    """

    id: str = ""
    number: int = Field(..., alias="_number")
    change_id: str
    project: str
    branch: str
    subject: str
    status: Literal["NEW", "MERGED", "ABANDONED", "DRAFT"]
    topic: str | None = None
    hashtags: list[str] = Field(default_factory=list)
    created: str | None = None
    updated: str | None = None
    submitted: str | None = None
    insertions: int | None = None
    deletions: int | None = None
    owner: AccountInfo = Field(default_factory=AccountInfo)
    labels: dict[str, LabelInfo] = Field(default_factory=dict)
    reviewers: dict[str, list[AccountInfo]] = Field(default_factory=dict)
    work_in_progress: bool = False
    submittable: bool | None = None
    current_revision: str | None = None
    revisions: dict[str, RevisionInfo] | None = None
    more_changes: bool | None = Field(None, alias="_more_changes")

    @property
    def is_open(self) -> bool:
        """Check if the change is open (NEW status)."""
        return self.status == GerritChangeStatus.NEW.value

    @property
    def current_revision_info(self) -> RevisionInfo | None:
        if self.current_revision and self.revisions:
            return self.revisions.get(self.current_revision)
        return None

    def label_max(self, label: str) -> int | None:
        info = self.labels.get(label)
        return info.max_vote() if info else None


class MessageInfo(GerritModel):
    """A change message; ``tag`` marks autogenerated entries."""

    id: str
    author: AccountInfo | None = None
    date: str
    message: str
    tag: str | None = None
    revision_number: int | None = Field(None, alias="_revision_number")


class FileInfo(GerritModel):
    status: str | None = None
    binary: bool | None = None
    old_path: str | None = None
    lines_inserted: int | None = None
    lines_deleted: int | None = None
    size_delta: int | None = None
    size: int | None = None


class DiffContent(GerritModel):
    """One hunk region of a file diff: common (ab), removed (a), added (b)."""

    a: list[str] | None = None
    b: list[str] | None = None
    ab: list[str] | None = None
    skip: int | None = None


class DiffFileMeta(GerritModel):
    name: str
    content_type: str | None = None
    lines: int | None = None


class FileDiffInfo(GerritModel):
    meta_a: DiffFileMeta | None = None
    meta_b: DiffFileMeta | None = None
    change_type: str | None = None
    diff_header: list[str] | None = None
    content: list[DiffContent] = Field(default_factory=list)
    binary: bool | None = None


class CommentInfo(GerritModel):
    id: str | None = None
    path: str | None = None
    line: int | None = None
    message: str | None = None
    updated: str | None = None
    author: AccountInfo | None = None
    unresolved: bool | None = None
    patch_set: int | None = None
    in_reply_to: str | None = None


COMMIT_MSG_PATH = "/COMMIT_MSG"
COMMIT_MSG_LABEL = "Commit Message"


def flatten_comments(comments: dict[str, list[CommentInfo]]) -> list[CommentInfo]:
    """
    Flatten the per-file comment map into one list, oldest first.

    Each comment's ``path`` is set from its map key; the commit message
    pseudo-file is shown as ``Commit Message``.
    """
    flat: list[CommentInfo] = []
    for path, items in comments.items():
        shown = COMMIT_MSG_LABEL if path == COMMIT_MSG_PATH else path
        flat.extend(c.model_copy(update={"path": shown}) for c in items)
    return sorted(flat, key=lambda c: c.updated or "")


class ProjectInfo(GerritModel):
    id: str | None = None
    name: str = ""
    parent: str | None = None
    description: str | None = None
    state: str | None = None


class GroupInfo(GerritModel):
    id: str
    name: str = ""
    url: str | None = None
    description: str | None = None
    group_id: int | None = None
    owner: str | None = None
    owner_id: str | None = None
    created_on: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    @property
    def visible_to_all(self) -> bool:
        return bool(self.options.get("visible_to_all"))

    @property
    def sort_key(self) -> str:
        return self.name or self.id


class GroupDetailInfo(GroupInfo):
    """A group together with its direct members and subgroups."""

    members: list[AccountInfo] = Field(default_factory=list)
    includes: list[GroupInfo] = Field(default_factory=list)


class ReviewerResult(GerritModel):
    """Response of the add-reviewer endpoint."""

    input: str | None = None
    reviewers: list[AccountInfo] | None = None
    ccs: list[AccountInfo] | None = None
    error: str | None = None
    confirm: bool | None = None


class SubmitInfo(GerritModel):
    """Response of the submit endpoint; Gerrit returns the merged change."""

    status: str
    number: int | None = Field(None, alias="_number")
    change_id: str | None = None


class ReviewResult(GerritModel):
    labels: dict[str, int] | None = None
    ready: bool | None = None


def casefold_sort_key(name: str) -> tuple[str, str]:
    """Case-insensitive ordering with the raw string as a tiebreak."""
    return (name.casefold(), name)


__all__ = [
    "COMMIT_MSG_LABEL",
    "COMMIT_MSG_PATH",
    "AccountInfo",
    "ApprovalInfo",
    "ChangeInfo",
    "CommentInfo",
    "CommitInfo",
    "DiffContent",
    "FetchInfo",
    "FileDiffInfo",
    "FileInfo",
    "GerritChangeStatus",
    "GerritModel",
    "GitPersonInfo",
    "GroupDetailInfo",
    "GroupInfo",
    "LabelInfo",
    "MessageInfo",
    "ProjectInfo",
    "ReviewResult",
    "ReviewerResult",
    "RevisionInfo",
    "SubmitInfo",
    "casefold_sort_key",
    "flatten_comments",
]
