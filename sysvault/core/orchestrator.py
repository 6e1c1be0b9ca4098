"""Backup and restore drivers.

The orchestrator wires the components together in a fixed order:

    backup:  lock → path lists → tasks → manifest → archive pipeline → retention
    restore: lock → restore pipeline

It owns the run log for the duration of a run and produces the
fixed-format :class:`BackupSummary`. Failures below it are already
recorded as data; the only exceptions that leave a run are
:class:`LockHeldError` (another run is active) and :class:`RestoreError`.
A missing ``tar`` aborts the backup early but still yields a summary.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from sysvault.config import VaultSettings
from sysvault.core.errors import MissingDependencyError, RestoreError
from sysvault.core.lock import RunLock, RunWorkspace, terminate_on_signals
from sysvault.core.log_sink import LogSink, attach_sink, detach_sink
from sysvault.core.manifest import build_manifest, write_manifest
from sysvault.core.pathlist import PathListCompiler
from sysvault.core.pipeline import ArchivePipeline
from sysvault.core.restore import RestorePipeline
from sysvault.core.retention import RetentionManager
from sysvault.models.archive import TIMESTAMP_FORMAT, build_base_name
from sysvault.models.run import BackupSummary, RestoreOutcome, RunStatus
from sysvault.models.tasks import TaskRunReport
from sysvault.tasks.registry import TaskRegistry
from sysvault.tasks.runner import TaskRunner

logger = logging.getLogger(__name__)


class BackupOrchestrator:
    """Runs one backup or restore under the single-instance lock.

    Parameters
    ----------
    settings:
        Resolved, frozen run configuration.
    console:
        Where streamed task output and the summary panel go.
    clock:
        Source of the run timestamp (used for the archive name).
    """

    def __init__(
        self,
        settings: VaultSettings,
        *,
        console: Console | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.console = console or Console(stderr=True)
        self._clock = clock or datetime.now
        self.log_file: Path | None = None

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def run_backup(self) -> BackupSummary:
        """Run a full backup. Raises ``LockHeldError`` if another run is active."""
        with terminate_on_signals(), RunLock(self.settings.lock_file):
            started = self._clock()
            sink = LogSink.for_run(self.settings.log_dir, "backup", started)
            self.log_file = sink.path
            handler = attach_sink(sink)
            t0 = time.monotonic()
            try:
                logger.debug("Logging to %s", sink.path)
                try:
                    summary = self._backup(sink, started, t0)
                except MissingDependencyError as exc:
                    logger.error("%s", exc)
                    summary = BackupSummary(
                        status=RunStatus.ABORTED,
                        started_at=started,
                        elapsed_seconds=time.monotonic() - t0,
                        log_file=sink.path,
                        note=str(exc),
                    )
                self.report(summary, sink)
                return summary
            finally:
                detach_sink(handler)

    def _backup(self, sink: LogSink, started: datetime, t0: float) -> BackupSummary:
        settings = self.settings
        if shutil.which("tar") is None:
            raise MissingDependencyError("tar required")

        base_name = build_base_name(settings.archive_prefix, started, settings.tag)
        pipeline = ArchivePipeline(settings, sink)
        plan = pipeline.plan(base_name)

        if pipeline.blocked_by_existing(plan.final_path):
            return BackupSummary(
                status=RunStatus.SKIPPED,
                started_at=started,
                output=plan.final_path,
                compression=plan.fmt.compression.value,
                encryption=plan.fmt.encryption.value,
                verify="off",
                checksum=settings.hash_algo.value,
                elapsed_seconds=time.monotonic() - t0,
                log_file=sink.path,
                note="archive exists; use --overwrite to replace it",
            )

        with RunWorkspace(settings.work_parent, started.strftime(TIMESTAMP_FORMAT)) as workspace:
            compiler = PathListCompiler(settings.include_file, settings.exclude_file)
            include_list, excludes = compiler.compile(workspace.root)

            tasks = self.run_tasks(sink, workspace.extras_dir)

            manifest = build_manifest(
                base_name,
                plan.fmt.compression.value,
                plan.fmt.encryption.value,
                tasks,
            )
            write_manifest(workspace.extras_dir, manifest)

            result = pipeline.run(plan, include_list, excludes, workspace.extras_dir, workspace.root)

        if result.final_path is not None:
            RetentionManager(
                settings.output_dir,
                settings.archive_prefix,
                settings.retention,
                tag=settings.tag,
            ).prune()

        if result.skipped:
            status = RunStatus.SKIPPED
        elif result.final_path is None or result.failures or tasks.failed:
            status = RunStatus.DEGRADED
        else:
            status = RunStatus.COMPLETED

        return BackupSummary(
            status=status,
            started_at=started,
            output=result.final_path,
            compression=result.fmt.compression.value,
            encryption=result.fmt.encryption.value,
            tar_files=result.tar_files,
            tar_size=result.tar_size,
            final_size=result.final_size,
            tasks_total=tasks.total,
            tasks_ok=tasks.ok,
            tasks_fail=tasks.failed,
            verify=result.verify,
            checksum=settings.hash_algo.value,
            stages=result.stages,
            elapsed_seconds=time.monotonic() - t0,
            log_file=sink.path,
        )

    def run_tasks(self, sink: LogSink, extras_dir: Path) -> TaskRunReport:
        registry = TaskRegistry.from_directory(
            self.settings.tasks_dir, line_buffered=self.settings.stream_task_logs
        )
        runner = TaskRunner(
            registry,
            sink,
            stream=self.settings.stream_task_logs,
            non_interactive=self.settings.non_interactive,
            console=self.console,
        )
        return runner.run_all(extras_dir)

    def report(self, summary: BackupSummary, sink: LogSink) -> None:
        """Write the summary block to the run log and show it on the console."""
        lines = summary.render_lines()
        sink.write_lines(lines)
        style = {
            RunStatus.COMPLETED: "green",
            RunStatus.SKIPPED: "yellow",
            RunStatus.DEGRADED: "yellow",
            RunStatus.ABORTED: "red",
        }[summary.status]
        self.console.print(
            Panel(
                Text("\n".join(lines[1:])),
                title="[bold]Backup Summary[/bold]",
                border_style=style,
                padding=(1, 2),
            )
        )

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def run_restore(
        self,
        archive: Path,
        target: Path | None = None,
        *,
        confirm: Callable[[str], bool] | None = None,
        echo: Callable[[str], None] | None = None,
        ask_target: Callable[[Path], Path] | None = None,
    ) -> RestoreOutcome:
        """Restore or list *archive*. Raises ``LockHeldError`` or ``RestoreError``.

        *ask_target* is only called once the lock is held.
        """
        with terminate_on_signals(), RunLock(self.settings.lock_file):
            sink = LogSink.for_run(self.settings.log_dir, "restore", self._clock())
            self.log_file = sink.path
            handler = attach_sink(sink)
            try:
                pipeline = RestorePipeline(
                    self.settings, sink, confirm=confirm, echo=echo, ask_target=ask_target
                )
                try:
                    return pipeline.restore(archive, target)
                except RestoreError as exc:
                    logger.error("%s", exc)
                    raise
            finally:
                detach_sink(handler)
