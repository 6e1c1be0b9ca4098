"""External program invocation that records failures instead of raising.

Every pipeline step that shells out goes through :func:`run_safe` or
:func:`run_pipeline`. A non-zero exit (or a program that cannot be started)
is logged with the step description and exit code and returned as a
failed :class:`StageOutcome`; the caller decides how to continue.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import IO

from sysvault.core.log_sink import LogSink
from sysvault.models.run import StageOutcome, StageStatus

logger = logging.getLogger(__name__)


def require_cmd(name: str) -> bool:
    """True if *name* is on PATH; warns otherwise."""
    if shutil.which(name) is None:
        logger.warning("Missing command: %s", name)
        return False
    return True


STOP_TIMEOUT_SECONDS = 5.0


def stop_process(proc: subprocess.Popen[bytes]) -> None:
    """Terminate *proc* and wait for it, escalating to SIGKILL after a grace period."""
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=STOP_TIMEOUT_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning("pid %d ignored SIGTERM; killing it.", proc.pid)
        proc.kill()
        proc.wait()


def _outcome(description: str, returncode: int, detail: str = "") -> StageOutcome:
    if returncode != 0:
        logger.error("%s failed (rc=%d)%s", description, returncode, f": {detail}" if detail else "")
        return StageOutcome(
            description=description,
            status=StageStatus.FAILED,
            returncode=returncode,
            detail=detail,
        )
    logger.debug("%s OK", description)
    return StageOutcome(description=description, status=StageStatus.OK, returncode=0)


def run_safe(
    description: str,
    argv: list[str],
    sink: LogSink,
    *,
    stdout_path: Path | None = None,
    cwd: Path | None = None,
) -> StageOutcome:
    """Run one command with stderr (and stdout, unless redirected) in the run log."""
    logger.debug("%s: %s", description, " ".join(argv))
    try:
        with sink.redirect() as log_stream:
            if stdout_path is not None:
                with open(stdout_path, "wb") as out:
                    proc = subprocess.run(argv, stdout=out, stderr=log_stream, cwd=cwd, check=False)
            else:
                proc = subprocess.run(argv, stdout=log_stream, stderr=log_stream, cwd=cwd, check=False)
    except OSError as exc:
        return _outcome(description, 127, str(exc))
    return _outcome(description, proc.returncode)


def run_pipeline(
    description: str,
    commands: list[list[str]],
    sink: LogSink,
    *,
    stdin_path: Path | None = None,
    stdout: IO[bytes] | int | None = subprocess.DEVNULL,
    on_line: Callable[[str], None] | None = None,
) -> StageOutcome:
    """Run ``cmd1 | cmd2 | ...`` streaming, without intermediate files.

    Parameters
    ----------
    stdin_path:
        File fed to the first command's stdin.
    stdout:
        Destination of the last command's output (ignored when *on_line*
        is given).
    on_line:
        Called with each decoded output line of the last command.

    The exit status follows ``pipefail``: the right-most non-zero return
    code is reported.
    """
    logger.debug("%s: %s", description, " | ".join(" ".join(c) for c in commands))
    procs: list[subprocess.Popen[bytes]] = []
    stdin_file: IO[bytes] | None = open(stdin_path, "rb") if stdin_path is not None else None
    try:
        with sink.redirect() as log_stream:
            prev: IO[bytes] | None = stdin_file
            for index, argv in enumerate(commands):
                last = index == len(commands) - 1
                if not last or on_line is not None:
                    target: IO[bytes] | int | None = subprocess.PIPE
                else:
                    target = stdout
                try:
                    proc = subprocess.Popen(argv, stdin=prev, stdout=target, stderr=log_stream)
                except OSError as exc:
                    for running in procs:
                        stop_process(running)
                    return _outcome(description, 127, str(exc))
                if procs and procs[-1].stdout is not None:
                    # Only the child holds the read end now; lets upstream see SIGPIPE.
                    procs[-1].stdout.close()
                procs.append(proc)
                prev = proc.stdout

            if on_line is not None and procs[-1].stdout is not None:
                for raw in procs[-1].stdout:
                    on_line(raw.decode("utf-8", errors="replace").rstrip("\n"))
                procs[-1].stdout.close()

            codes = [proc.wait() for proc in procs]
    except BaseException:
        # Interrupted: no child may outlive the lock or the scratch directory.
        for proc in procs:
            stop_process(proc)
        raise
    finally:
        if stdin_file is not None:
            stdin_file.close()

    failing = [code for code in codes if code != 0]
    return _outcome(description, failing[-1] if failing else 0)
