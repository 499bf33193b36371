"""
Orchestrator-facing entry points.

``transaction`` lists and partitions, ``open_task`` hands one bucket to a
worker, and ``next_config_diff`` produces the cursor to persist for the
next run. ``run_tasks`` is a thread-pool driver for callers without an
orchestrator of their own.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from sftp_ingest.config.models import SftpInputConfig
from sftp_ingest.connections.sftp import validate_host
from sftp_ingest.listing.file_list import FileList, next_cursor
from sftp_ingest.listing.lister import FileLister
from sftp_ingest.streaming.provider import RemoteFileStream, open_task
from sftp_ingest.utils.logging import get_logger

logger = get_logger("sftp_ingest.ingest")

StreamHandler = Callable[[int, RemoteFileStream], Any]


@dataclass
class TaskReport:
    task_index: int
    files: list[str] = field(default_factory=list)
    results: list[Any] = field(default_factory=list)


def transaction(config: SftpInputConfig, *, task_count: int | None = None, **lister_kwargs: Any) -> FileList:
    """
    Validate the connection config, then list and partition remote files.

    Args:
        config: Resolved input configuration
        task_count: Override the number of task buckets
        **lister_kwargs: Passed to ``FileLister`` (connection_factory, policy, cancel_event)
    """
    validate_host(config.connection)
    return FileLister(config, task_count=task_count, **lister_kwargs).list_files()


def next_config_diff(config: SftpInputConfig, file_list: FileList) -> dict[str, str]:
    """Config values to carry into the next run: ``{"last_path": ...}`` or ``{}``."""
    cursor = next_cursor(config, file_list)
    if cursor is None:
        return {}
    return {"last_path": cursor}


def run_task(
    config: SftpInputConfig,
    file_list: FileList,
    task_index: int,
    handler: StreamHandler,
    **provider_kwargs: Any,
) -> TaskReport:
    """Stream every file in one bucket through ``handler``, closing each stream after."""
    report = TaskReport(task_index=task_index)
    for provider in open_task(config, file_list, task_index, **provider_kwargs):
        with provider:
            stream = provider.open_once()
            if stream is None:
                continue
            report.results.append(handler(task_index, stream))
            report.files.append(stream.uri)
    return report


def run_tasks(
    config: SftpInputConfig,
    file_list: FileList,
    handler: StreamHandler,
    *,
    max_workers: int = 1,
    cancel_event: threading.Event | None = None,
    **provider_kwargs: Any,
) -> list[TaskReport]:
    """
    Run every bucket on a thread pool; each worker owns its connections.

    The first task failure is re-raised after setting ``cancel_event`` so
    other workers stop retrying.
    """
    cancel_event = cancel_event or threading.Event()
    logger.info(f"Running {file_list.task_count} task(s) with {max_workers} worker(s)")
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [
            pool.submit(run_task, config, file_list, i, handler, cancel_event=cancel_event, **provider_kwargs)
            for i in range(file_list.task_count)
        ]
        reports = []
        try:
            for future in futures:
                reports.append(future.result())
        except Exception:
            cancel_event.set()
            for future in futures:
                future.cancel()
            raise
    return reports
