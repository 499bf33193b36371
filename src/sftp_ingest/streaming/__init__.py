"""
Streaming remote file contents to workers.
"""

from sftp_ingest.streaming.provider import FileStreamProvider, RemoteFileStream, StreamState, open_task

__all__ = [
    "FileStreamProvider",
    "RemoteFileStream",
    "StreamState",
    "open_task",
]
