"""``sysvault backup``: run the tasks, build the archive, print the summary.

Exits 0 for completed, degraded, skipped and lock-contended runs alike;
the outcome is visible in the summary and the run log.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from sysvault.cli.common import console, start_logging, warn_unknown
from sysvault.config import resolve_settings
from sysvault.core.errors import LockHeldError
from sysvault.core.log_sink import configure_logging
from sysvault.core.orchestrator import BackupOrchestrator


def backup_cmd(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Non-interactive; answer yes to prompts."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file (default: config.env)."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="INFO or DEBUG."),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing archive of the same name."),
    compress: Optional[str] = typer.Option(None, "--compress", help="zstd, xz, gz or none."),
    encrypt: Optional[str] = typer.Option(None, "--encrypt", help="gpg or none."),
    recipient: Optional[str] = typer.Option(None, "--recipient", help="GPG recipient key id or email."),
    verify: Optional[bool] = typer.Option(None, "--verify/--no-verify", help="Test the archive after writing it."),
    hash_algo: Optional[str] = typer.Option(None, "--hash", help="sha256, sha512 or none."),
    retention: Optional[int] = typer.Option(None, "--retention", help="Keep the N newest archives (0 = keep all)."),
    one_fs: bool = typer.Option(False, "--one-fs", help="Stay on one filesystem per include path."),
    no_caches: bool = typer.Option(False, "--no-caches", help="Do not exclude cache directories and backup files."),
    no_sparse: bool = typer.Option(False, "--no-sparse", help="Disable sparse file handling."),
    tag: Optional[str] = typer.Option(None, "--tag", help="Label appended to the archive name."),
    no_task_logs: bool = typer.Option(False, "--no-task-logs", help="Do not stream task output to the console."),
    tmpdir: Optional[Path] = typer.Option(None, "--tmpdir", help="Parent directory for scratch files."),
) -> None:
    """Create a new backup archive.

    Runs every task in the tasks directory, archives the include list plus
    the task extras, then compresses, encrypts, checksums, optionally
    verifies, and prunes old archives.
    """
    start_logging(log_level)
    warn_unknown(ctx.args)

    settings = resolve_settings(
        config,
        non_interactive=yes or None,
        log_level=log_level,
        overwrite=overwrite or None,
        compress=compress,
        encryption=encrypt,
        gpg_recipient=recipient,
        verify=verify,
        hash_algo=hash_algo,
        retention=retention,
        one_fs=one_fs or None,
        exclude_caches=False if no_caches else None,
        sparse=False if no_sparse else None,
        tag=tag,
        stream_task_logs=False if no_task_logs else None,
        tmpdir_parent=tmpdir,
    )
    configure_logging(settings.log_level)

    orchestrator = BackupOrchestrator(settings, console=console)
    try:
        orchestrator.run_backup()
    except LockHeldError as exc:
        console.print(f"[bold yellow]{exc}[/bold yellow] Exiting.")
        raise typer.Exit(code=0)
