"""
Proxy tunnels for the SSH transport.

Each function returns a connected socket-like object that ``paramiko.Transport``
can run over: an HTTP CONNECT tunnel, a SOCKS5 tunnel, or a ``ProxyCommand``
subprocess for ``stream`` proxies.
"""

from __future__ import annotations

import base64
import ipaddress
import socket
import struct
from typing import Any

import paramiko

from sftp_ingest.config.models import ProxyConfig, ProxyType
from sftp_ingest.exceptions import ConfigurationError, RemoteConnectionError
from sftp_ingest.utils.logging import get_logger

logger = get_logger("sftp_ingest.connections.proxy")

_SOCKS_VERSION = 5
_SOCKS_NO_AUTH = 0x00
_SOCKS_USER_PASS = 0x02
_SOCKS_CONNECT = 0x01
_SOCKS_ERRORS = {
    1: "general SOCKS server failure",
    2: "connection not allowed by ruleset",
    3: "network unreachable",
    4: "host unreachable",
    5: "connection refused",
    6: "TTL expired",
    7: "command not supported",
    8: "address type not supported",
}


def open_proxy_socket(proxy: ProxyConfig, host: str, port: int, timeout: float) -> Any:
    """Open a tunnel to ``host:port`` through ``proxy``."""
    if proxy.type is ProxyType.STREAM:
        if not proxy.command:
            raise ConfigurationError("'proxy.command' is required for proxy type 'stream'")
        command = proxy.command.replace("%h", host).replace("%p", str(port))
        logger.info(f"Using proxy command for {host}:{port}")
        return paramiko.ProxyCommand(command)

    if not proxy.host:
        raise ConfigurationError(f"'proxy.host' is required for proxy type '{proxy.type}'")

    logger.info(f"Using proxy {proxy.host}:{proxy.port} proxy_type:{proxy.type}")
    try:
        sock = socket.create_connection((proxy.host, proxy.port), timeout=timeout)
    except OSError as e:
        raise RemoteConnectionError(
            f"Could not connect to {proxy.type} proxy at {proxy.host}:{proxy.port}", host=proxy.host, port=proxy.port
        ) from e

    try:
        if proxy.type is ProxyType.HTTP:
            _http_connect(sock, proxy, host, port)
        else:
            _socks5_connect(sock, proxy, host, port)
    except Exception:
        sock.close()
        raise
    return sock


def _http_connect(sock: socket.socket, proxy: ProxyConfig, host: str, port: int) -> None:
    target = f"{host}:{port}"
    lines = [f"CONNECT {target} HTTP/1.1", f"Host: {target}"]
    if proxy.user:
        token = base64.b64encode(f"{proxy.user}:{proxy.password or ''}".encode()).decode("ascii")
        lines.append(f"Proxy-Authorization: Basic {token}")
    sock.sendall(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1"))

    response = b""
    while b"\r\n\r\n" not in response:
        chunk = sock.recv(4096)
        if not chunk:
            raise RemoteConnectionError(f"HTTP proxy closed the connection during CONNECT to {target}")
        response += chunk
        if len(response) > 65536:
            raise RemoteConnectionError("HTTP proxy response header too large")

    status_line = response.split(b"\r\n", 1)[0].decode("latin-1")
    parts = status_line.split(" ", 2)
    if len(parts) >= 2 and parts[1] == "407":
        raise ConfigurationError(f"HTTP proxy rejected the configured proxy user/password: {status_line}")
    if len(parts) < 2 or parts[1] != "200":
        raise RemoteConnectionError(f"HTTP proxy CONNECT to {target} failed: {status_line}")


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise RemoteConnectionError("SOCKS proxy closed the connection")
        data += chunk
    return data


def _socks5_connect(sock: socket.socket, proxy: ProxyConfig, host: str, port: int) -> None:
    methods = [_SOCKS_NO_AUTH, _SOCKS_USER_PASS] if proxy.user else [_SOCKS_NO_AUTH]
    sock.sendall(bytes([_SOCKS_VERSION, len(methods), *methods]))
    version, method = _recv_exact(sock, 2)
    if version != _SOCKS_VERSION:
        raise RemoteConnectionError(f"Unexpected SOCKS version {version} from proxy")

    if method == _SOCKS_USER_PASS:
        user = (proxy.user or "").encode()
        password = (proxy.password or "").encode()
        sock.sendall(bytes([1, len(user)]) + user + bytes([len(password)]) + password)
        _, status = _recv_exact(sock, 2)
        if status != 0:
            raise ConfigurationError("SOCKS proxy rejected the configured proxy user/password")
    elif method != _SOCKS_NO_AUTH:
        raise RemoteConnectionError("SOCKS proxy offered no acceptable authentication method")

    try:
        address = ipaddress.ip_address(host)
        atyp = 0x01 if address.version == 4 else 0x04
        addr = address.packed
    except ValueError:
        encoded = host.encode("idna")
        atyp = 0x03
        addr = bytes([len(encoded)]) + encoded
    sock.sendall(bytes([_SOCKS_VERSION, _SOCKS_CONNECT, 0x00, atyp]) + addr + struct.pack(">H", port))

    _, reply, _, bound_type = _recv_exact(sock, 4)
    if reply != 0:
        reason = _SOCKS_ERRORS.get(reply, f"error code {reply}")
        raise RemoteConnectionError(f"SOCKS proxy CONNECT to {host}:{port} failed: {reason}")
    # Drain the bound address and port
    if bound_type == 0x01:
        _recv_exact(sock, 4 + 2)
    elif bound_type == 0x04:
        _recv_exact(sock, 16 + 2)
    else:
        length = _recv_exact(sock, 1)[0]
        _recv_exact(sock, length + 2)
