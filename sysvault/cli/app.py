"""Main Typer application: registers the backup and restore commands.

Entry point: ``sysvault`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import typer

from sysvault import __version__
from sysvault.cli.commands.backup import backup_cmd
from sysvault.cli.commands.restore import restore_cmd

# Unknown flags are collected into ctx.args and reported, not rejected.
_LENIENT = {"allow_extra_args": True, "ignore_unknown_options": True}

app = typer.Typer(
    name="sysvault",
    help="Sysvault: lock-guarded, task-driven system backup and restore.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(
    name="backup",
    help="Run collection tasks and write a new archive.",
    context_settings=_LENIENT,
)(backup_cmd)
app.command(
    name="restore",
    help="Extract (or list, with --dry-run) an existing archive.",
    context_settings=_LENIENT,
)(restore_cmd)


@app.command(name="version", help="Print the sysvault version.")
def version_cmd() -> None:
    typer.echo(__version__)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
