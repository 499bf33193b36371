"""
Remote filesystem connections.
"""

from sftp_ingest.connections.proxy import open_proxy_socket
from sftp_ingest.connections.sftp import RemoteFile, SFTPConnection, validate_host

__all__ = [
    "RemoteFile",
    "SFTPConnection",
    "open_proxy_socket",
    "validate_host",
]
