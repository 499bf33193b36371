"""
File discovery and task partitioning.
"""

from sftp_ingest.listing.file_list import FileEntry, FileList, FileListBuilder, next_cursor
from sftp_ingest.listing.lister import FileLister, list_files_by_prefix, skip_through_cursor

__all__ = [
    "FileEntry",
    "FileList",
    "FileListBuilder",
    "FileLister",
    "list_files_by_prefix",
    "next_cursor",
    "skip_through_cursor",
]
