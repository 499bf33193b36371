"""
sftp-ingest fetch - Download listed files into a local directory.

Each file is written to a ``.part`` file and moved into place once the
stream is fully read, so an interrupted run never leaves truncated output.
"""

import os
import shutil
from pathlib import Path

import typer
from rich.console import Console

from sftp_ingest.cli.common import load_cli_config
from sftp_ingest.exceptions import SftpIngestError
from sftp_ingest.ingest import next_config_diff, run_task, run_tasks, transaction
from sftp_ingest.streaming.provider import RemoteFileStream
from sftp_ingest.utils.logging import get_logger
from sftp_ingest.utils.uri import relative_path

logger = get_logger("sftp_ingest.cli.fetch")

app = typer.Typer(name="fetch", help="Download remote files", invoke_without_command=True)

console = Console()


def local_target(output_dir: Path, uri: str) -> Path:
    """Map a file URI onto ``output_dir``, keeping the remote directory layout."""
    path = relative_path(uri) or ""
    return output_dir / path.lstrip("/")


def download_to(output_dir: Path):
    """Build a stream handler that copies each stream below ``output_dir``."""

    def handler(task_index: int, stream: RemoteFileStream) -> Path:
        target = local_target(output_dir, stream.uri)
        target.parent.mkdir(parents=True, exist_ok=True)
        part = target.with_name(target.name + ".part")
        try:
            with open(part, "wb") as f:
                shutil.copyfileobj(stream, f)
            os.replace(part, target)
        except BaseException:
            part.unlink(missing_ok=True)
            raise
        logger.debug(f"Task {task_index}: wrote {target}")
        return target

    return handler


@app.callback()
def fetch(
    ctx: typer.Context,
    config_path: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Config file"),
    output_dir: Path = typer.Option(Path("."), "--output-dir", "-o", help="Directory to write files into"),
    task: int | None = typer.Option(None, "--task", help="Only fetch this task bucket"),
    task_count: int | None = typer.Option(None, "--task-count", "-t", min=1, help="Number of task buckets"),
    workers: int = typer.Option(1, "--workers", "-w", min=1, help="Parallel download workers"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    List files, download them, and print the next last_path.
    """
    if ctx.invoked_subcommand is not None:
        return

    try:
        config = load_cli_config(config_path, verbose=verbose)
        file_list = transaction(config, task_count=task_count)
        handler = download_to(output_dir)
        if task is not None:
            if not 0 <= task < file_list.task_count:
                console.print(f"[red]Error: task {task} out of range (0..{file_list.task_count - 1})[/red]")
                raise typer.Exit(1)
            reports = [run_task(config, file_list, task, handler)]
        else:
            reports = run_tasks(config, file_list, handler, max_workers=workers)
    except SftpIngestError as e:
        logger.error(f"Fetch failed: {e}")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    written = sum(len(r.results) for r in reports)
    console.print(f"[green]Fetched {written} file(s) into {output_dir}[/green]")

    diff = next_config_diff(config, file_list)
    if "last_path" in diff:
        console.print(f"Next last_path: [bold]{diff['last_path']}[/bold]")
