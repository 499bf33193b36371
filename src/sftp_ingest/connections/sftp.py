"""
SFTP connection used by listing and streaming.

One short-lived connection per listing attempt or per worker; never shared.
"""

from __future__ import annotations

import posixpath
import re
import socket
import stat
from dataclasses import dataclass
from typing import Any

import paramiko

from sftp_ingest.config.models import ConnectionConfig
from sftp_ingest.connections.proxy import open_proxy_socket
from sftp_ingest.exceptions import ConfigurationError, RemoteConnectionError
from sftp_ingest.utils.logging import get_logger
from sftp_ingest.utils.uri import display_uri, file_uri

logger = get_logger("sftp_ingest.connections.sftp")

_WHITESPACE = re.compile(r"\s")

_KEY_CLASSES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


@dataclass(frozen=True)
class RemoteFile:
    """Stat result for one remote path, addressed by its logical path."""

    path: str
    filename: str
    size: int
    mtime: int | None
    is_dir: bool
    is_file: bool


def validate_host(config: ConnectionConfig) -> None:
    """
    Reject hosts that can never be connected to.

    Raises:
        ConfigurationError: If the host or proxy host contains whitespace,
            or no URI can be built for the host
    """
    if _WHITESPACE.search(config.host):
        raise ConfigurationError("'host' can't contain spaces")
    file_uri(config, "/")

    if config.proxy is not None and config.proxy.host is not None:
        if _WHITESPACE.search(config.proxy.host):
            raise ConfigurationError("'proxy.host' can't contain spaces")


def _to_remote_file(path: str, attr: paramiko.SFTPAttributes) -> RemoteFile:
    mode = attr.st_mode or 0
    return RemoteFile(
        path=path,
        filename=posixpath.basename(path) or path,
        size=int(attr.st_size) if attr.st_size is not None else -1,
        mtime=int(attr.st_mtime) if attr.st_mtime is not None else None,
        is_dir=stat.S_ISDIR(mode),
        is_file=stat.S_ISREG(mode),
    )


class SFTPConnection:
    """
    Lazily connected SFTP session scoped by a ``ConnectionConfig``.

    Paths passed to ``stat``/``listdir``/``open`` are logical paths: with
    ``user_directory_is_root`` they are resolved under the login directory.
    Host keys are not verified.
    """

    def __init__(self, config: ConnectionConfig, name: str = "sftp"):
        validate_host(config)
        self.name = name
        self.config = config
        self._transport: paramiko.Transport | None = None
        self._client: paramiko.SFTPClient | None = None
        self._root: str | None = None

    def _load_private_key(self) -> paramiko.PKey | None:
        cfg = self.config
        if not cfg.secret_key_file:
            return None
        passphrase = cfg.secret_key_passphrase or None
        errors = []
        for key_class in _KEY_CLASSES:
            try:
                key = key_class.from_private_key_file(cfg.secret_key_file, password=passphrase)
            except FileNotFoundError as e:
                raise ConfigurationError(f"secret_key_file not found: {cfg.secret_key_file}") from e
            except paramiko.SSHException as e:
                errors.append(f"{key_class.__name__}: {e}")
                continue
            logger.info(f"set identity: {cfg.secret_key_file}")
            return key
        raise ConfigurationError(f"Could not load secret_key_file {cfg.secret_key_file}: {'; '.join(errors)}")

    def connect(self) -> paramiko.SFTPClient:
        """Connect (lazy) and return a live `paramiko.SFTPClient`."""
        if self._client is not None:
            return self._client

        cfg = self.config
        pkey = self._load_private_key()
        logger.info(f"Connecting to {display_uri(cfg)}")

        transport = None
        try:
            if cfg.proxy is not None:
                sock: Any = open_proxy_socket(cfg.proxy, cfg.host, cfg.port, cfg.timeout)
            else:
                sock = socket.create_connection((cfg.host, cfg.port), timeout=cfg.timeout)

            transport = paramiko.Transport(sock)
            transport.banner_timeout = cfg.timeout
            transport.auth_timeout = cfg.timeout
            transport.connect(hostkey=None, username=cfg.user, password=cfg.password, pkey=pkey)

            client = paramiko.SFTPClient.from_transport(transport)
            if client is None:
                raise paramiko.SSHException("SFTP subsystem unavailable")
            client.get_channel().settimeout(cfg.timeout)
            self._root = client.normalize(".") if cfg.user_directory_is_root else "/"
        except (OSError, EOFError, paramiko.SSHException) as e:
            if transport is not None:
                transport.close()
            raise RemoteConnectionError(
                f"Could not connect to SFTP server at {display_uri(cfg)}", host=cfg.host, port=cfg.port
            ) from e

        self._transport = transport
        self._client = client
        return self._client

    def remote_path(self, path: str) -> str:
        """Translate a logical path into the server-side path."""
        self.connect()
        root = self._root or "/"
        joined = posixpath.join(root, path.lstrip("/")) if path else root
        return posixpath.normpath(joined) if joined != "/" else "/"

    def stat(self, path: str) -> RemoteFile | None:
        """Stat ``path`` following symlinks; None if it does not exist."""
        client = self.connect()
        try:
            attr = client.stat(self.remote_path(path))
        except FileNotFoundError:
            return None
        return _to_remote_file(path, attr)

    def listdir(self, path: str) -> list[RemoteFile]:
        """Immediate children of the directory at ``path``, in server order."""
        client = self.connect()
        remote_dir = self.remote_path(path)
        base = path.rstrip("/")
        children = []
        for attr in client.listdir_attr(remote_dir):
            if attr.filename in (".", ".."):
                continue
            child = f"{base}/{attr.filename}"
            if stat.S_ISLNK(attr.st_mode or 0):
                try:
                    attr = client.stat(posixpath.join(remote_dir, attr.filename))
                except FileNotFoundError:
                    # dangling link
                    continue
            children.append(_to_remote_file(child, attr))
        return children

    def open(self, path: str) -> paramiko.SFTPFile:
        """Open ``path`` for binary reading with read-ahead enabled."""
        client = self.connect()
        handle = client.open(self.remote_path(path), "rb")
        handle.prefetch()
        return handle

    def close(self) -> None:
        """Close SFTP client + underlying transport."""
        try:
            if self._client is not None:
                self._client.close()
        finally:
            self._client = None
        try:
            if self._transport is not None:
                self._transport.close()
        finally:
            self._transport = None
            self._root = None

    def __enter__(self) -> SFTPConnection:
        self.connect()
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', host='{self.config.host}')"
