"""
Resolved configuration models.

Everything downstream (listing, streaming, URIs) consumes these frozen
dataclasses; raw mappings are converted once via ``from_dict``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sftp_ingest.exceptions import ConfigurationError

_MISSING = object()


class ProxyType(str, Enum):
    """Proxy tunnel kinds supported in front of the SSH transport."""

    HTTP = "http"
    SOCKS = "socks"
    STREAM = "stream"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_string(cls, value: str) -> ProxyType:
        for member in cls:
            if member.value == str(value).lower():
                return member
        names = ", ".join(m.value for m in cls)
        raise ConfigurationError(f"Unknown proxy type '{value}'. Supported values: {names}")


class CursorUnmatched(str, Enum):
    """What to emit when a stored cursor is never seen among listed files."""

    SKIP = "skip"
    INCLUDE = "include"


@dataclass(frozen=True)
class ProxyConfig:
    type: ProxyType
    host: str | None = None
    port: int = 8080
    user: str | None = None
    password: str | None = None
    command: str | None = None

    def __post_init__(self) -> None:
        if self.type is ProxyType.SOCKS:
            # SOCKS5 user/password fields carry a one-byte length
            for field, value in (("user", self.user), ("password", self.password)):
                if value is not None and len(value.encode()) > 255:
                    raise ConfigurationError(f"'proxy.{field}' must be at most 255 bytes for proxy type 'socks'")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProxyConfig:
        if not isinstance(data, dict):
            raise ConfigurationError(f"'proxy' must be a mapping, got {type(data).__name__}")
        return cls(
            type=ProxyType.from_string(_required(data, "type", "proxy.type")),
            host=data.get("host"),
            port=_int(data, "port", 8080, "proxy.port"),
            user=data.get("user"),
            password=data.get("password"),
            command=data.get("command"),
        )


@dataclass(frozen=True)
class ConnectionConfig:
    host: str
    user: str
    port: int = 22
    password: str | None = None
    secret_key_file: str | None = None
    secret_key_passphrase: str = ""
    user_directory_is_root: bool = True
    # Seconds; applied to socket connect, banner and auth phases
    timeout: int = 600
    max_connection_retry: int = 5
    proxy: ProxyConfig | None = None

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError("'timeout' must be > 0")
        if self.max_connection_retry < 0:
            raise ConfigurationError("'max_connection_retry' must be >= 0")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"'port' must be between 1 and 65535, got {self.port}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConnectionConfig:
        proxy = data.get("proxy")
        return cls(
            host=_required(data, "host"),
            user=_required(data, "user"),
            port=_int(data, "port", 22),
            password=data.get("password"),
            secret_key_file=data.get("secret_key_file"),
            secret_key_passphrase=data.get("secret_key_passphrase") or "",
            user_directory_is_root=_bool(data, "user_directory_is_root", True),
            timeout=_int(data, "timeout", 600),
            max_connection_retry=_int(data, "max_connection_retry", 5),
            proxy=ProxyConfig.from_dict(proxy) if proxy is not None else None,
        )


@dataclass(frozen=True)
class SftpInputConfig:
    """Connection plus listing options for one ingest run."""

    connection: ConnectionConfig
    path_prefix: str
    incremental: bool = True
    last_path: str | None = None
    stop_when_file_not_found: bool = False
    path_match_pattern: str = ".*"
    total_file_count_limit: int | None = None
    # Bytes; 0 means one file per task
    min_task_size: int = 0
    on_cursor_unmatched: CursorUnmatched = CursorUnmatched.SKIP

    def __post_init__(self) -> None:
        try:
            re.compile(self.path_match_pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid 'path_match_pattern' {self.path_match_pattern!r}: {e}") from e
        if self.total_file_count_limit is not None and self.total_file_count_limit < 0:
            raise ConfigurationError("'total_file_count_limit' must be >= 0")
        if self.min_task_size < 0:
            raise ConfigurationError("'min_task_size' must be >= 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SftpInputConfig:
        """Build from a flat mapping holding both connection and listing keys."""
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")
        limit = data.get("total_file_count_limit")
        unmatched = data.get("on_cursor_unmatched", CursorUnmatched.SKIP.value)
        try:
            on_cursor_unmatched = CursorUnmatched(str(unmatched).lower())
        except ValueError:
            raise ConfigurationError(
                f"'on_cursor_unmatched' must be 'skip' or 'include', got {unmatched!r}"
            ) from None
        return cls(
            connection=ConnectionConfig.from_dict(data),
            path_prefix=_required(data, "path_prefix"),
            incremental=_bool(data, "incremental", True),
            last_path=data.get("last_path"),
            stop_when_file_not_found=_bool(data, "stop_when_file_not_found", False),
            path_match_pattern=data.get("path_match_pattern") or ".*",
            total_file_count_limit=_int(data, "total_file_count_limit", 0) if limit is not None else None,
            min_task_size=_int(data, "min_task_size", 0),
            on_cursor_unmatched=on_cursor_unmatched,
        )


def _required(data: dict[str, Any], key: str, label: str | None = None) -> Any:
    value = data.get(key, _MISSING)
    if value is _MISSING or value is None:
        raise ConfigurationError(f"Field '{label or key}' is required but not set.")
    return value


def _int(data: dict[str, Any], key: str, default: int, label: str | None = None) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigurationError(f"'{label or key}' must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"'{label or key}' must be an integer, got {value!r}") from None


def _bool(data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ConfigurationError(f"'{key}' must be a boolean, got {value!r}")
