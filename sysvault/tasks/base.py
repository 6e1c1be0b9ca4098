"""Collection task interface and the script-backed implementation.

A task is an independent, best-effort unit that writes files under the
extras directory it is handed and exits. Contract:

* exit 0 on success, non-zero on failure;
* a failure is recorded by the runner and never aborts the run or the
  remaining tasks;
* the runner never retries a task (a task may retry internally);
* with ``NON_INTERACTIVE=1`` a task must not wait for terminal input.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from sysvault.core.tools import stop_process
from sysvault.models.tasks import TaskDescriptor

logger = logging.getLogger(__name__)

# Exit code recorded when a task executable cannot be started at all.
LAUNCH_FAILURE_RC = 127


@runtime_checkable
class Task(Protocol):
    """Anything with a ``name`` and a ``run`` method satisfies this protocol.

    ``run`` returns ``(returncode, duration_seconds)``. Output lines are
    delivered through *on_line* as they are produced. Implementations must
    not raise for ordinary failures; they report them through the return
    code.
    """

    name: str

    def run(
        self,
        extras_dir: Path,
        env: Mapping[str, str],
        on_line: Callable[[str], None],
    ) -> tuple[int, float]:
        ...


class ScriptTask:
    """A task backed by an executable file in the tasks directory.

    Parameters
    ----------
    descriptor:
        Name, path and argv of the executable.
    line_buffered:
        Prefix the command with ``stdbuf -oL -eL`` so output arrives
        line by line while streaming.
    """

    def __init__(self, descriptor: TaskDescriptor, *, line_buffered: bool = False) -> None:
        self.descriptor = descriptor
        self.name = descriptor.name
        self._line_buffered = line_buffered

    def argv(self) -> list[str]:
        if self._line_buffered:
            return ["stdbuf", "-oL", "-eL", *self.descriptor.command]
        return list(self.descriptor.command)

    def run(
        self,
        extras_dir: Path,
        env: Mapping[str, str],
        on_line: Callable[[str], None],
    ) -> tuple[int, float]:
        started = time.monotonic()
        try:
            proc = subprocess.Popen(
                self.argv(),
                stdin=subprocess.DEVNULL if env.get("NON_INTERACTIVE") == "1" else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=dict(env),
                cwd=self.descriptor.path.parent,
            )
        except OSError as exc:
            on_line(f"cannot start {self.descriptor.path}: {exc}")
            return LAUNCH_FAILURE_RC, time.monotonic() - started

        try:
            stdout = proc.stdout
            if stdout is None:
                raise RuntimeError(f"{self.name}: stdout is not a pipe")
            with stdout:
                for raw in stdout:
                    on_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
            returncode = proc.wait()
        except BaseException:
            stop_process(proc)
            raise
        return returncode, time.monotonic() - started

    def __repr__(self) -> str:
        return f"<ScriptTask name={self.name!r} path={str(self.descriptor.path)!r}>"
