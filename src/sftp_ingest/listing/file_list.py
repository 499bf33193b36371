"""
Discovered file set and its partitioning into tasks.

A ``FileListBuilder`` accumulates entries in discovery order; ``build()``
freezes them into a ``FileList`` split into contiguous task buckets. The
built list is what crosses the worker boundary, so it serializes to JSON.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from sftp_ingest.config.models import SftpInputConfig
from sftp_ingest.utils.logging import get_logger
from sftp_ingest.utils.uri import relative_path

logger = get_logger("sftp_ingest.listing.file_list")


@dataclass(frozen=True)
class FileEntry:
    """One remote file: full ``sftp://`` key and size in bytes (-1 if unknown)."""

    key: str
    size: int = -1


class FileList:
    """
    Immutable, ordered file set divided into task buckets.

    Bucket ``i`` holds ``entries[offsets[i]:offsets[i + 1]]``, so walking the
    buckets in order reproduces discovery order.
    """

    def __init__(self, entries: Sequence[FileEntry], task_offsets: Sequence[int]):
        offsets = tuple(task_offsets)
        if not offsets or offsets[0] != 0 or offsets[-1] != len(entries):
            raise ValueError(f"Task offsets {offsets} do not cover {len(entries)} entries")
        if any(b <= a for a, b in zip(offsets, offsets[1:])):
            raise ValueError(f"Task offsets must be strictly increasing, got {offsets}")
        self._entries = tuple(entries)
        self._offsets = offsets

    @property
    def task_count(self) -> int:
        return len(self._offsets) - 1

    @property
    def entries(self) -> tuple[FileEntry, ...]:
        return self._entries

    @property
    def keys(self) -> list[str]:
        return [e.key for e in self._entries]

    @property
    def total_size(self) -> int:
        return sum(max(e.size, 0) for e in self._entries)

    def bucket_entries(self, index: int) -> list[FileEntry]:
        if not 0 <= index < self.task_count:
            raise IndexError(f"Task index {index} out of range for {self.task_count} task(s)")
        return list(self._entries[self._offsets[index] : self._offsets[index + 1]])

    def bucket(self, index: int) -> list[str]:
        """Keys assigned to task ``index``, in discovery order."""
        return [e.key for e in self.bucket_entries(index)]

    def last_key(self, fallback: str | None = None) -> str | None:
        """The lexicographically greatest key, or ``fallback`` for an empty list."""
        if not self._entries:
            return fallback
        return max(e.key for e in self._entries)

    def last_path(self, fallback: str | None = None) -> str | None:
        """``last_key`` as a root-relative path, suitable for persisting as a cursor."""
        if not self._entries:
            return fallback
        return relative_path(self.last_key())

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [[e.key, e.size] for e in self._entries],
            "task_offsets": list(self._offsets),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileList:
        entries = [FileEntry(key=str(key), size=int(size)) for key, size in data.get("files", [])]
        return cls(entries, data.get("task_offsets", [0]))

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, payload: str) -> FileList:
        return cls.from_dict(json.loads(payload))

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FileEntry]:
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileList):
            return NotImplemented
        return self._entries == other._entries and self._offsets == other._offsets

    def __repr__(self) -> str:
        return f"FileList(files={len(self._entries)}, tasks={self.task_count})"


class FileListBuilder:
    """Accumulates discovered files, preserving ``add`` order."""

    def __init__(
        self,
        path_match_pattern: str = ".*",
        total_file_count_limit: int | None = None,
        min_task_size: int = 0,
    ):
        self._pattern = re.compile(path_match_pattern)
        self._limit = total_file_count_limit
        self._min_task_size = min_task_size
        self._entries: list[FileEntry] = []

    @classmethod
    def from_config(cls, config: SftpInputConfig) -> FileListBuilder:
        return cls(
            path_match_pattern=config.path_match_pattern,
            total_file_count_limit=config.total_file_count_limit,
            min_task_size=config.min_task_size,
        )

    def needs_more(self) -> bool:
        return self._limit is None or len(self._entries) < self._limit

    def add(self, key: str, size: int) -> bool:
        """
        Append one file if its key matches ``path_match_pattern``.

        Returns:
            False once the total file count limit is reached, True otherwise
        """
        if not self.needs_more():
            return False
        if not self._pattern.search(key):
            logger.debug(f"Skipping {relative_path(key)}: does not match path_match_pattern")
            return True
        self._entries.append(FileEntry(key=key, size=size))
        return self.needs_more()

    def __len__(self) -> int:
        return len(self._entries)

    def build(self, task_count: int | None = None) -> FileList:
        """
        Freeze the entries into task buckets.

        Args:
            task_count: Number of contiguous, evenly sized buckets. When omitted,
                entries are grouped by ``min_task_size`` (one file per task when 0).
        """
        n = len(self._entries)
        if task_count is not None:
            if task_count < 1:
                raise ValueError(f"task_count must be >= 1, got {task_count}")
            offsets = _even_offsets(n, min(task_count, n))
        elif self._min_task_size > 0:
            offsets = _size_offsets(self._entries, self._min_task_size)
        else:
            offsets = list(range(n + 1))
        return FileList(self._entries, offsets)


def _even_offsets(n: int, task_count: int) -> list[int]:
    offsets = [0]
    if task_count == 0:
        return offsets
    base, extra = divmod(n, task_count)
    for i in range(task_count):
        offsets.append(offsets[-1] + base + (1 if i < extra else 0))
    return offsets


def _size_offsets(entries: Sequence[FileEntry], min_task_size: int) -> list[int]:
    offsets = [0]
    accumulated = 0
    for i, entry in enumerate(entries, start=1):
        accumulated += max(entry.size, 0)
        if accumulated >= min_task_size:
            offsets.append(i)
            accumulated = 0
    if offsets[-1] != len(entries):
        offsets.append(len(entries))
    return offsets


def next_cursor(config: SftpInputConfig, file_list: FileList) -> str | None:
    """
    The ``last_path`` to persist after processing ``file_list``.

    None when incremental mode is off; the previous cursor when nothing new
    was listed.
    """
    if not config.incremental:
        return None
    return file_list.last_path(config.last_path)
