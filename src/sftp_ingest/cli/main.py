"""
Main CLI entry point.
"""

import typer

from sftp_ingest import __version__
from sftp_ingest.cli import fetch, list_files


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"sftp-ingest version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="sftp-ingest",
    help="sftp-ingest - Incremental, parallel file ingestion from SFTP servers",
    add_completion=True,
)

# Register subcommands
app.add_typer(list_files.app, name="list")
app.add_typer(fetch.app, name="fetch")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """
    sftp-ingest - Incremental, parallel file ingestion from SFTP servers.

    Run 'sftp-ingest <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        if not version:
            typer.echo(ctx.get_help())
            raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
