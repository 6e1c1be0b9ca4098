"""``sysvault restore``: extract or list an archive produced by ``backup``."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel

from sysvault.cli.common import console, start_logging, warn_unknown
from sysvault.config import resolve_settings
from sysvault.core.errors import LockHeldError, RestoreError
from sysvault.core.log_sink import configure_logging
from sysvault.core.orchestrator import BackupOrchestrator


def _echo(line: str) -> None:
    console.print(line, markup=False, highlight=False)


def _confirm(prompt: str) -> bool:
    return typer.confirm(prompt, default=False)


def _ask_target(default: Path) -> Path:
    return Path(typer.prompt("Restore target directory", default=str(default)))


def restore_cmd(
    ctx: typer.Context,
    archive: Path = typer.Argument(..., help="Archive to restore (.tar[.zst|.xz|.gz][.gpg])."),
    target: Optional[Path] = typer.Option(None, "--target", "-t", help="Extraction root (default: /)."),
    dry_run: bool = typer.Option(False, "--dry-run", help="List contents only."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace existing files instead of keeping them."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Non-interactive; do not prompt."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file (default: config.env)."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="INFO or DEBUG."),
) -> None:
    """Restore an archive into a target directory.

    The decode chain is read from the archive's suffixes. Existing files
    are kept unless --overwrite is given.
    """
    start_logging(log_level)
    warn_unknown(ctx.args)

    settings = resolve_settings(
        config,
        non_interactive=yes or None,
        log_level=log_level,
        overwrite=overwrite or None,
        target_dir=target,
        dry_run=dry_run or None,
    )
    configure_logging(settings.log_level)

    orchestrator = BackupOrchestrator(settings, console=console)
    try:
        outcome = orchestrator.run_restore(
            archive, target, confirm=_confirm, echo=_echo, ask_target=_ask_target
        )
    except LockHeldError as exc:
        console.print(f"[bold yellow]{exc}[/bold yellow] Exiting.")
        raise typer.Exit(code=0)
    except RestoreError as exc:
        console.print(f"[bold red]Restore failed:[/bold red] {exc}")
        raise typer.Exit(code=0)

    if outcome.cancelled:
        console.print("[yellow]Restore cancelled.[/yellow]")
        return
    if outcome.dry_run:
        return
    if not outcome.ok:
        detail = outcome.stage.describe() if outcome.stage else "no result"
        console.print(f"[bold red]Restore did not complete cleanly:[/bold red] {detail}")
        return

    console.print(
        Panel(
            "\n".join([
                "[bold green]Restore completed.[/bold green]",
                "",
                f"[bold]Archive:[/bold]  {outcome.archive}",
                f"[bold]Target:[/bold]   {outcome.target}",
                f"[bold]Policy:[/bold]   {outcome.policy.value} existing files",
                f"[bold]Extras:[/bold]   {outcome.extras_dir}",
            ]),
            title="[bold]Sysvault[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
    if orchestrator.log_file:
        console.print(f"[dim]Log: {orchestrator.log_file}[/dim]")
