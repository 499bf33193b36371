"""
Shared fixtures: an in-memory SFTP server and connection configs.
"""

import errno
import io
import logging
import posixpath

import pytest

from sftp_ingest.config.models import ConnectionConfig, SftpInputConfig
from sftp_ingest.connections.sftp import RemoteFile
from sftp_ingest.core.retry import RetryPolicy


def _norm(path: str) -> str:
    return posixpath.normpath("/" + path.lstrip("/"))


class FakeServer:
    """
    In-memory remote filesystem.

    ``failures`` are raised, in order, by the first call on each new
    connection; ``denied`` paths raise PermissionError on open.
    """

    def __init__(self, files=None):
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {"/"}
        self.failures: list[BaseException] = []
        self.denied: set[str] = set()
        self.connections: list["FakeConnection"] = []
        for path, data in (files or {}).items():
            self.add_file(path, data)

    def add_file(self, path: str, data: bytes = b"") -> None:
        path = _norm(path)
        self.files[path] = data
        parent = posixpath.dirname(path)
        while parent not in self.dirs:
            self.dirs.add(parent)
            parent = posixpath.dirname(parent)

    def factory(self, config: ConnectionConfig) -> "FakeConnection":
        connection = FakeConnection(self, config)
        self.connections.append(connection)
        return connection


class FakeConnection:
    """Stands in for ``SFTPConnection`` against a ``FakeServer``."""

    def __init__(self, server: FakeServer, config: ConnectionConfig):
        self.server = server
        self.config = config
        self.connected = False
        self.close_count = 0

    def connect(self):
        if not self.connected:
            if self.server.failures:
                raise self.server.failures.pop(0)
            self.connected = True

    def stat(self, path: str):
        self.connect()
        path = _norm(path)
        if path in self.server.files:
            return RemoteFile(path, posixpath.basename(path), len(self.server.files[path]), 1700000000, False, True)
        if path in self.server.dirs:
            return RemoteFile(path, posixpath.basename(path), 4096, 1700000000, True, False)
        return None

    def listdir(self, path: str):
        self.connect()
        directory = _norm(path)
        base = path.rstrip("/")
        names = {
            posixpath.basename(p)
            for p in (*self.server.files, *self.server.dirs)
            if p != directory and posixpath.dirname(p) == directory
        }
        # Reverse order so callers must sort
        return [self.stat(f"{base}/{name}") for name in sorted(names, reverse=True)]

    def open(self, path: str):
        self.connect()
        path = _norm(path)
        if path in self.server.denied:
            raise PermissionError(errno.EACCES, "Permission denied", path)
        return io.BytesIO(self.server.files[path])

    def close(self):
        self.close_count += 1


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by setup_logging so they don't outlive captured streams."""
    yield
    logger = logging.getLogger("sftp_ingest")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def server():
    return FakeServer(
        {
            "/dir/a.csv": b"a1\na2\n",
            "/dir/b.csv": b"b1\n",
            "/dir/c.csv": b"c1\nc2\nc3\n",
        }
    )


@pytest.fixture
def connection_config():
    return ConnectionConfig(host="127.0.0.1", user="user", port=22, password="password", max_connection_retry=2)


@pytest.fixture
def no_wait_policy():
    """Two attempts with zero backoff."""
    return RetryPolicy(retry_limit=2, initial_wait=0.0, max_wait=0.0)


@pytest.fixture
def make_config(connection_config):
    def _make(path_prefix="/dir", **kwargs):
        return SftpInputConfig(connection=connection_config, path_prefix=path_prefix, **kwargs)

    return _make


@pytest.fixture
def make_server():
    return FakeServer
