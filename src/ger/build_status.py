# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Build state derivation from a change's message timeline.

CI systems attached to Gerrit announce a build with a message starting
``Build Started`` and report the result as a ``Verified`` vote. The
state of the current build is derived purely from the message list:

    pending    no build has started
    running    the latest build has no verification yet
    success    the latest build was verified positively
    failure    the latest build was verified negatively
    not_found  the change does not exist

Verifications that belong to an older patchset, or that predate the
latest build start, are ignored.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum

from ger.exceptions import InvalidInputError
from ger.gerrit.models import MessageInfo

log = logging.getLogger("ger.build_status")

BUILD_STARTED = re.compile(r"^Build\s+Started\b")
VERIFIED = re.compile(r"Patch Set \d+:\s*Verified\s*([+-]?)(\d+)")

AUTOGENERATED_PREFIX = "autogenerated:"
AUTOGENERATED_USER_TAG = "autogenerated:user"

DEFAULT_INTERVAL = 10.0
DEFAULT_TIMEOUT = 1800.0
MIN_INTERVAL = 1.0


class BuildState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    NOT_FOUND = "not_found"

    @property
    def is_terminal(self) -> bool:
        return self in (BuildState.SUCCESS, BuildState.FAILURE, BuildState.NOT_FOUND)


class BuildWatchTimeout(Exception):
    """Raised when watch mode exceeds its timeout without a terminal state."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Build status check timed out after {timeout:g}s")
        self.timeout = timeout


def filter_meaningful_messages(messages: Sequence[MessageInfo]) -> list[MessageInfo]:
    """Drop autogenerated messages except those tagged ``autogenerated:user``."""
    return [
        m
        for m in messages
        if not (
            m.tag
            and m.tag.startswith(AUTOGENERATED_PREFIX)
            and m.tag != AUTOGENERATED_USER_TAG
        )
    ]


def derive_build_state(
    messages: Sequence[MessageInfo], not_found: bool = False
) -> BuildState:
    """
    Derive the build state from the unfiltered message timeline.

    Args:
        messages: Change messages in server order.
        not_found: True when the server reported the change missing.
    """
    if not_found:
        return BuildState.NOT_FOUND

    starts = sorted(
        (
            (msg.date, index, msg)
            for index, msg in enumerate(messages)
            if BUILD_STARTED.search(msg.message)
        ),
        key=lambda item: (item[0], item[1]),
    )
    if not starts:
        return BuildState.PENDING

    latest_date, _, latest = starts[-1]
    revision = latest.revision_number

    for msg in messages:
        # Equal timestamps do not count as after the build start
        if msg.date <= latest_date:
            continue
        if revision is not None and msg.revision_number != revision:
            continue
        match = VERIFIED.search(msg.message)
        if not match:
            continue
        sign, value = match.groups()
        # A zero vote clears the label and carries no verdict
        if int(value) == 0:
            continue
        return BuildState.FAILURE if sign == "-" else BuildState.SUCCESS
    return BuildState.RUNNING


@dataclass(frozen=True)
class WatchOptions:
    """Polling parameters for watch mode."""

    interval: float = DEFAULT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if self.interval < MIN_INTERVAL:
            object.__setattr__(self, "interval", MIN_INTERVAL)
        if self.timeout <= 0:
            raise InvalidInputError(f"Timeout must be positive: {self.timeout:g}")


def watch_build_state(
    fetch_state: Callable[[], BuildState],
    options: WatchOptions,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    progress: Callable[[str], None] | None = None,
) -> Iterator[BuildState]:
    """
    Poll ``fetch_state`` until a terminal state or the timeout.

    Yields every observed state, the terminal one included.

    Raises:
        BuildWatchTimeout: If the timeout elapses first.
    """
    report = progress or (lambda _msg: None)
    started = clock()
    report(
        f"Watching build status (polling every {options.interval:g}s, "
        f"timeout: {options.timeout:g}s)..."
    )

    while True:
        if clock() - started > options.timeout:
            report(f"Timeout: Build status check exceeded {options.timeout:g}s")
            raise BuildWatchTimeout(options.timeout)

        state = fetch_state()
        elapsed = clock() - started
        if elapsed > options.timeout:
            report(f"Timeout: Build status check exceeded {options.timeout:g}s")
            raise BuildWatchTimeout(options.timeout)

        yield state
        if state.is_terminal:
            report(f"Build completed with status: {state.value}")
            return

        report(f"[{int(elapsed)}s elapsed] Build status: {state.value}")
        log.debug("Build state %s, sleeping %.1fs", state.value, options.interval)
        sleep(options.interval)


__all__ = [
    "BUILD_STARTED",
    "VERIFIED",
    "BuildState",
    "BuildWatchTimeout",
    "WatchOptions",
    "derive_build_state",
    "filter_meaningful_messages",
    "watch_build_state",
]
