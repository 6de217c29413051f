# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Gerrit REST integration for ger.

Modules:
    client: REST client with XSSI framing, retries and timeouts
    urls: Endpoint and web URL construction
    models: Pydantic models for Gerrit entities
    service: High-level service layer for Gerrit operations

Usage:
    from ger.gerrit import build_client, GerritService

    service = GerritService(build_client("https://gerrit.example.org", "jdoe", "secret"))
    change = service.get_change("12345")
"""

from ger.gerrit.client import (
    GerritAuthError,
    GerritNotFoundError,
    GerritRestClient,
    GerritRestError,
    build_client,
)
from ger.gerrit.models import (
    AccountInfo,
    ChangeInfo,
    CommentInfo,
    GerritChangeStatus,
    GroupDetailInfo,
    GroupInfo,
    MessageInfo,
    ProjectInfo,
    RevisionInfo,
)
from ger.gerrit.service import GerritService, create_gerrit_service
from ger.gerrit.urls import GerritUrlBuilder

__all__ = [
    "AccountInfo",
    "ChangeInfo",
    "CommentInfo",
    "GerritAuthError",
    "GerritChangeStatus",
    "GerritNotFoundError",
    "GerritRestClient",
    "GerritRestError",
    "GerritService",
    "GerritUrlBuilder",
    "GroupDetailInfo",
    "GroupInfo",
    "MessageInfo",
    "ProjectInfo",
    "RevisionInfo",
    "build_client",
    "create_gerrit_service",
]
