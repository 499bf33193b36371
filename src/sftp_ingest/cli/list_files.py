"""
sftp-ingest list - Discover remote files and show task partitioning.
"""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from sftp_ingest.cli.common import load_cli_config
from sftp_ingest.exceptions import SftpIngestError
from sftp_ingest.ingest import next_config_diff, transaction
from sftp_ingest.utils.logging import get_logger
from sftp_ingest.utils.uri import relative_path

logger = get_logger("sftp_ingest.cli.list")

app = typer.Typer(name="list", help="List remote files and their task buckets", invoke_without_command=True)

console = Console()


@app.callback()
def list_files(
    ctx: typer.Context,
    config_path: Path = typer.Option(Path("config.yaml"), "--config", "-c", help="Config file"),
    last_path: str | None = typer.Option(None, "--last-path", help="Override the stored cursor"),
    task_count: int | None = typer.Option(None, "--task-count", "-t", min=1, help="Number of task buckets"),
    as_json: bool = typer.Option(False, "--json", help="Print machine-readable JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """
    List files under path_prefix, filtered by the cursor, and print the next cursor.
    """
    if ctx.invoked_subcommand is not None:
        return

    try:
        config = load_cli_config(config_path, last_path=last_path, verbose=verbose)
        file_list = transaction(config, task_count=task_count)
    except SftpIngestError as e:
        logger.error(f"Listing failed: {e}")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    diff = next_config_diff(config, file_list)

    if as_json:
        payload = {
            "task_count": file_list.task_count,
            "tasks": [
                [{"path": relative_path(e.key), "size": e.size} for e in file_list.bucket_entries(i)]
                for i in range(file_list.task_count)
            ],
            "config_diff": diff,
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    table = Table(title=f"{len(file_list)} file(s) in {file_list.task_count} task(s)", show_header=True)
    table.add_column("Task", style="cyan", justify="right")
    table.add_column("Path", style="green")
    table.add_column("Size", style="dim", justify="right")
    for i in range(file_list.task_count):
        for entry in file_list.bucket_entries(i):
            table.add_row(str(i), relative_path(entry.key), str(entry.size))
    console.print(table)

    if "last_path" in diff:
        console.print(f"Next last_path: [bold]{diff['last_path']}[/bold]")
    else:
        console.print("[dim]Incremental mode is off; no cursor to persist[/dim]")
