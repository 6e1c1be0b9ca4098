"""Sequential task execution with output multiplexing.

Each task moves PENDING → RUNNING → SUCCEEDED|FAILED exactly once. Output
lines are prefixed ``[TASK <name>] `` and appended to the run log; in
streamed mode they are also echoed live to the console.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path

from rich.console import Console

from sysvault.core.log_sink import LogSink
from sysvault.models.tasks import (
    VALID_TASK_TRANSITIONS,
    TaskResult,
    TaskRunReport,
    TaskState,
)
from sysvault.tasks.base import LAUNCH_FAILURE_RC, Task
from sysvault.tasks.registry import TaskRegistry

logger = logging.getLogger(__name__)


class InvalidTaskTransitionError(RuntimeError):
    """Raised when a task state change is not in VALID_TASK_TRANSITIONS."""


class TaskRunner:
    """Runs every registered task against one extras directory.

    Parameters
    ----------
    registry:
        Tasks to execute, in order.
    sink:
        Run log shared with the rest of the run.
    stream:
        Echo task output to the console as well as the log.
    non_interactive:
        Exported to tasks as ``NON_INTERACTIVE=1``.
    console:
        Console for streamed output (stderr by default).
    """

    def __init__(
        self,
        registry: TaskRegistry,
        sink: LogSink,
        *,
        stream: bool = False,
        non_interactive: bool = False,
        console: Console | None = None,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._stream = stream
        self._non_interactive = non_interactive
        self._console = console or Console(stderr=True)
        self.states: dict[str, TaskState] = {t.name: TaskState.PENDING for t in registry}

    def task_environment(self, extras_dir: Path, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Environment every task sees: the caller's plus the three shared values."""
        env = dict(os.environ if base is None else base)
        env["TMP_BACKUP_DIR"] = str(extras_dir)
        env["NON_INTERACTIVE"] = "1" if self._non_interactive else "0"
        env["LOG_FILE"] = str(self._sink.path)
        return env

    def _advance(self, name: str, target: TaskState) -> None:
        current = self.states.get(name, TaskState.PENDING)
        if target not in VALID_TASK_TRANSITIONS[current]:
            raise InvalidTaskTransitionError(
                f"Cannot move task {name} from {current.value} to {target.value}"
            )
        self.states[name] = target

    def _line_writer(self, name: str) -> Callable[[str], None]:
        prefix = f"[TASK {name}] "

        def _write(line: str) -> None:
            text = prefix + line
            self._sink.write_line(text)
            if self._stream:
                self._console.print(text, markup=False, highlight=False, soft_wrap=True)

        return _write

    def run_task(self, task: Task, extras_dir: Path, env: Mapping[str, str]) -> TaskResult:
        self._advance(task.name, TaskState.RUNNING)
        logger.info("Running task: %s", task.name)
        try:
            returncode, duration = task.run(extras_dir, env, self._line_writer(task.name))
        except Exception as exc:
            # A misbehaving in-process task is isolated like a crashing script.
            logger.error("Task %s raised %s: %s", task.name, type(exc).__name__, exc)
            returncode, duration = LAUNCH_FAILURE_RC, 0.0

        if returncode == 0:
            self._advance(task.name, TaskState.SUCCEEDED)
            logger.info("Task %s completed (dur %ds)", task.name, duration)
        else:
            self._advance(task.name, TaskState.FAILED)
            logger.error("Task %s exited with rc=%d (dur %ds)", task.name, returncode, duration)

        return TaskResult(
            name=task.name,
            returncode=returncode,
            duration_seconds=duration,
            state=self.states[task.name],
        )

    def run_all(self, extras_dir: Path) -> TaskRunReport:
        """Run every task once, in order; failures never stop the loop."""
        extras_dir = Path(extras_dir)
        env = self.task_environment(extras_dir)
        results = [self.run_task(task, extras_dir, env) for task in self._registry]
        report = TaskRunReport(results=results)
        logger.info(
            "Tasks: total=%d, ok=%d, failed=%d", report.total, report.ok, report.failed
        )
        return report
