# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
HTTP transport for the Gerrit REST API.

Every call goes to ``<host>/a/<path>`` with HTTP Basic credentials. JSON
bodies lose their ``)]}'`` prefix before parsing; the file content and
patch endpoints answer with base64 text and are decoded separately.
Throttling, server errors and flaky networks are retried a bounded number
of times with jittered exponential backoff. Authentication failures and
missing resources fail immediately.

Usage:
    from ger.gerrit.client import build_client

    client = build_client("https://gerrit.example.org", "jdoe", "secret")
    change = client.get("/changes/12345?o=CURRENT_REVISION")
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import random
import re
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Final
from urllib.parse import urljoin, urlparse

from ger.exceptions import EXIT_API_ERROR

log = logging.getLogger("ger.gerrit.client")


_TRANSIENT_MARKERS: Final[tuple[str, ...]] = (
    "timed out",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection aborted",
    "connection refused",
    "broken pipe",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
)

_RETRY_STATUSES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})

_XSSI_PREFIX: Final[re.Pattern[str]] = re.compile(r"^\)\]\}'(?:\r?\n)?")

MSG_REQUEST_FAILED: Final[str] = "Request failed - network or authentication error"
MSG_INVALID_JSON: Final[str] = "Failed to parse response - invalid JSON format"
MSG_INVALID_FORMAT: Final[str] = "Invalid response format from server"


class GerritRestError(RuntimeError):
    """A failed Gerrit call; ``status_code`` is None for network errors."""

    exit_code: int = EXIT_API_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class GerritAuthError(GerritRestError):
    """HTTP 401 or 403."""


class GerritNotFoundError(GerritRestError):
    """HTTP 404."""


@dataclass(frozen=True)
class _Credentials:
    user: str
    password: str

    def header(self) -> str:
        pair = f"{self.user}:{self.password}".encode()
        return "Basic " + base64.b64encode(pair).decode("ascii")


def _mask_secret(s: str) -> str:
    """Keep the first and last two characters of ``s``."""
    if len(s) <= 4:
        return "****" if s else s
    return f"{s[:2]}{'*' * (len(s) - 4)}{s[-2:]}"


def _is_transient_error(exc: Exception) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def _calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = 0.5,
) -> float:
    """Seconds to wait before retry number ``attempt + 1``."""
    ceiling = min(max_delay, base_delay * 2.0**attempt)
    return ceiling * (1.0 + jitter * random.random())


def _strip_xssi_guard(text: str) -> str:
    """Remove Gerrit's ``)]}'`` prefix and the line break after it."""
    return _XSSI_PREFIX.sub("", text, count=1)


def decode_json_body(raw: bytes) -> Any:
    """
    Decode a Gerrit JSON response body.

    Blank bodies (for example from DELETE or a 204) become ``{}``.

    Raises:
        GerritRestError: If the remaining text is not JSON.
    """
    text = _strip_xssi_guard(raw.decode("utf-8", errors="replace"))
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise GerritRestError(f"{MSG_INVALID_JSON}: {exc}") from exc


def decode_base64_body(raw: bytes) -> str:
    try:
        decoded = base64.b64decode(raw.strip(), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise GerritRestError(f"{MSG_INVALID_FORMAT}: body is not base64") from exc
    return decoded.decode("utf-8", errors="replace")


def _http_failure(exc: urllib.error.HTTPError, path: str) -> GerritRestError:
    """Translate an HTTPError into the matching GerritRestError subclass."""
    status = exc.code
    try:
        body = exc.read().decode("utf-8", errors="replace")
    except OSError as read_exc:
        log.debug("Could not read error body for %s: %s", path, read_exc)
        body = ""
    text = body.strip()

    if status == 401:
        hint = "Authentication failed. Check your username and HTTP password (run: ger setup)"
        return GerritAuthError(f"{hint}: {text}" if text else hint, status, body)
    if status == 403:
        return GerritAuthError(text or f"Access forbidden for {path}", status, body)
    if status == 404:
        return GerritNotFoundError(text or f"Resource not found: {path}", status, body)
    return GerritRestError(text or f"HTTP {status}", status, body)


def _should_retry(exc: GerritRestError) -> bool:
    if isinstance(exc, (GerritAuthError, GerritNotFoundError)):
        return False
    if exc.status_code is None:
        return _is_transient_error(exc)
    return exc.status_code in _RETRY_STATUSES


def _check_scheme(url: str) -> None:
    scheme = urlparse(url).scheme
    if scheme not in ("http", "https"):
        raise GerritRestError(f"Unsupported URL scheme: {scheme}")


class GerritRestClient:
    """
    Authenticated JSON client for one Gerrit server.

    Args:
        base_url: Server root, e.g. ``https://gerrit.example.org``.
        auth: ``(username, http_password)``.
        timeout: Per-request socket timeout in seconds.
        max_attempts: Upper bound on tries for retryable failures.
    """

    def __init__(
        self,
        *,
        base_url: str,
        auth: tuple[str, str],
        timeout: float = 30.0,
        max_attempts: int = 3,
    ) -> None:
        self._root = base_url.rstrip("/") + "/"
        self._timeout = float(timeout)
        self._max_attempts = max(1, int(max_attempts))
        self._credentials = _Credentials(*auth)
        log.debug(
            "Gerrit client for %s as %s (timeout %.1fs, %d attempts)",
            self.base_url,
            self._credentials.user,
            self._timeout,
            self._max_attempts,
        )

    @property
    def base_url(self) -> str:
        return self._root.rstrip("/")

    @property
    def timeout(self) -> float:
        return self._timeout

    def get(self, path: str) -> Any:
        """
        GET ``path`` and return the decoded JSON.

        Raises:
            GerritAuthError: For 401/403.
            GerritNotFoundError: For 404.
            GerritRestError: For any other failure once retries are spent.
        """
        return decode_json_body(self._call("GET", path))

    def get_text(self, path: str) -> str:
        """GET a base64 endpoint (file content, patch) and return the text."""
        return decode_base64_body(self._call("GET", path, accept="text/plain"))

    def post(self, path: str, data: Any | None = None) -> Any:
        return decode_json_body(self._call("POST", path, data))

    def put(self, path: str, data: Any | None = None) -> Any:
        return decode_json_body(self._call("PUT", path, data))

    def delete(self, path: str) -> Any:
        return decode_json_body(self._call("DELETE", path))

    def get_raw(self, url: str) -> bytes:
        """
        Download an absolute URL anonymously, returning the bytes untouched.

        The commit-msg hook is served this way, outside the REST API.
        """
        _check_scheme(url)
        log.debug("Downloading %s", url)
        try:
            with urllib.request.urlopen(urllib.request.Request(url), timeout=self._timeout) as resp:
                return bytes(resp.read())
        except urllib.error.HTTPError as exc:
            raise GerritRestError(f"HTTP {exc.code}", status_code=exc.code) from exc
        except urllib.error.URLError as exc:
            raise GerritRestError(f"{MSG_REQUEST_FAILED}: {exc.reason}") from exc

    def _call(
        self,
        method: str,
        path: str,
        data: Any | None = None,
        accept: str = "application/json",
    ) -> bytes:
        attempt = 1
        while True:
            try:
                return self._send(method, path, data, accept)
            except GerritRestError as exc:
                if attempt >= self._max_attempts or not _should_retry(exc):
                    raise
                delay = _calculate_backoff(attempt - 1)
                log.warning(
                    "%s %s: %s; retry %d/%d in %.1fs",
                    method,
                    path,
                    f"HTTP {exc.status_code}" if exc.status_code else exc,
                    attempt,
                    self._max_attempts - 1,
                    delay,
                )
                time.sleep(delay)
                attempt += 1

    def _url(self, path: str) -> str:
        if not path:
            raise ValueError("path is required")
        relative = path.lstrip("/")
        if not relative.startswith("a/"):
            relative = "a/" + relative
        return urljoin(self._root, relative)

    def _send(self, method: str, path: str, data: Any | None, accept: str) -> bytes:
        url = self._url(path)
        _check_scheme(url)

        headers = {"Accept": accept, "Authorization": self._credentials.header()}
        payload = None
        if data is not None:
            headers["Content-Type"] = "application/json"
            payload = json.dumps(data).encode("utf-8")

        log.debug("%s %s", method, url)
        request = urllib.request.Request(url, data=payload, method=method, headers=headers)
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as resp:
                return bytes(resp.read())
        except urllib.error.HTTPError as exc:
            raise _http_failure(exc, path) from exc
        except urllib.error.URLError as exc:
            raise GerritRestError(f"{MSG_REQUEST_FAILED}: {exc.reason}") from exc
        except (TimeoutError, ConnectionError) as exc:
            raise GerritRestError(f"{MSG_REQUEST_FAILED}: {exc}") from exc

    def __repr__(self) -> str:
        secret = _mask_secret(self._credentials.password)
        return f"GerritRestClient(base_url='{self._credentials.user}:{secret}@{self._root}')"


def build_client(
    host: str,
    username: str,
    password: str,
    *,
    timeout: float = 30.0,
    max_attempts: int = 3,
) -> GerritRestClient:
    return GerritRestClient(
        base_url=host,
        auth=(username, password),
        timeout=timeout,
        max_attempts=max_attempts,
    )


__all__ = [
    "MSG_INVALID_FORMAT",
    "MSG_INVALID_JSON",
    "MSG_REQUEST_FAILED",
    "GerritAuthError",
    "GerritNotFoundError",
    "GerritRestClient",
    "GerritRestError",
    "build_client",
    "decode_base64_body",
    "decode_json_body",
]
