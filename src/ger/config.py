# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation
"""
Credential and preference loading for ger.

Configuration is resolved once per invocation from, in order:

1. The environment: GERRIT_HOST, GERRIT_USERNAME and GERRIT_PASSWORD.
   All three must be present and non-empty or the environment is
   ignored as a source.
2. The JSON file ``~/.ger/config.json`` written by ``ger setup``.

GERRIT_TIMEOUT optionally overrides the REST timeout from either source.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ger.exceptions import ConfigInvalidError, ConfigNotFoundError

log = logging.getLogger("ger.config")

DEFAULT_TIMEOUT: float = 30.0

CONFIG_NOT_FOUND_MESSAGE = (
    'Configuration not found. Run "ger setup" to set up your credentials '
    "or set GERRIT_HOST, GERRIT_USERNAME, and GERRIT_PASSWORD environment "
    "variables."
)

_ENV_KEYS = ("GERRIT_HOST", "GERRIT_USERNAME", "GERRIT_PASSWORD")


def ger_home() -> Path:
    """Directory holding ger's config file and review worktrees."""
    return Path.home() / ".ger"


def default_config_path() -> Path:
    return ger_home() / "config.json"


class GerConfig(BaseModel):
    """Resolved credentials and preferences."""

    model_config = ConfigDict(populate_by_name=True)

    host: str = Field(..., description="Gerrit base URL, no trailing slash")
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    ai_auto_detect: bool = Field(True, alias="aiAutoDetect")
    ai_tool: str | None = Field(None, alias="aiTool")
    timeout: float = Field(DEFAULT_TIMEOUT, gt=0)

    @field_validator("host")
    @classmethod
    def _validate_host(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")) or len(value.split("://", 1)[1]) == 0:
            raise ValueError("host must be an absolute http(s) URL")
        return value.rstrip("/")

    def to_file_dict(self) -> dict[str, object]:
        """Serialize using the on-disk key names."""
        data = self.model_dump(by_alias=True, exclude={"timeout"}, exclude_none=True)
        if self.timeout != DEFAULT_TIMEOUT:
            data["timeout"] = self.timeout
        return data

    def __repr__(self) -> str:
        return f"GerConfig(host={self.host!r}, username={self.username!r})"


def _env_timeout(env: Mapping[str, str]) -> float | None:
    raw = env.get("GERRIT_TIMEOUT", "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigInvalidError(f"Invalid GERRIT_TIMEOUT value: {raw}") from exc
    if value <= 0:
        raise ConfigInvalidError(f"Invalid GERRIT_TIMEOUT value: {raw}")
    return value


def _load_from_env(env: Mapping[str, str]) -> GerConfig | None:
    values = [env.get(key, "") for key in _ENV_KEYS]
    if not all(v.strip() for v in values):
        return None
    host, username, password = values
    try:
        return GerConfig(host=host, username=username, password=password)
    except ValidationError as exc:
        raise ConfigInvalidError("Invalid environment configuration format") from exc


def _load_from_file(path: Path) -> GerConfig | None:
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GerConfig.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        raise ConfigInvalidError(
            f"Invalid configuration file format: {path}"
        ) from exc


def load_config(
    env: Mapping[str, str] | None = None,
    path: Path | None = None,
) -> GerConfig:
    """
    Resolve configuration from the environment or the config file.

    Args:
        env: Environment mapping; defaults to ``os.environ``.
        path: Config file location; defaults to ``~/.ger/config.json``.

    Raises:
        ConfigNotFoundError: If neither source is usable.
        ConfigInvalidError: If a source is present but malformed.
    """
    env = os.environ if env is None else env
    path = default_config_path() if path is None else path

    config = _load_from_env(env)
    source = "environment"
    if config is None:
        config = _load_from_file(path)
        source = str(path)
    if config is None:
        raise ConfigNotFoundError(CONFIG_NOT_FOUND_MESSAGE)

    timeout = _env_timeout(env)
    if timeout is not None:
        config = config.model_copy(update={"timeout": timeout})

    log.debug("Loaded configuration from %s: %r", source, config)
    return config


def save_config(config: GerConfig, path: Path | None = None) -> Path:
    """
    Write the config file with owner-only permissions.

    The parent directory is created with mode 0700 and the file is
    replaced atomically with mode 0600.
    """
    path = default_config_path() if path is None else path
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    try:
        os.chmod(path.parent, 0o700)
    except OSError as exc:
        log.warning("Could not restrict permissions on %s: %s", path.parent, exc)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".config-", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(config.to_file_dict(), fh, indent=2)
            fh.write("\n")
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    log.debug("Saved configuration to %s", path)
    return path


__all__ = [
    "CONFIG_NOT_FOUND_MESSAGE",
    "DEFAULT_TIMEOUT",
    "GerConfig",
    "default_config_path",
    "ger_home",
    "load_config",
    "save_config",
]
