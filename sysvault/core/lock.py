"""Single-instance lock and per-run scratch workspace.

``RunLock`` takes a non-blocking exclusive ``flock`` on the lock file. If
another process holds it, :class:`LockHeldError` is raised and the caller
exits successfully: the concurrent run already owns the work. Hosts
without ``fcntl`` run unlocked with a warning.

``RunWorkspace`` owns the scratch directory (intermediate tar, compressed
and encrypted files, extras). Both are context managers, and
:func:`terminate_on_signals` turns SIGTERM/SIGHUP into ordinary unwinding so
their ``__exit__`` runs on every exit path.
"""

from __future__ import annotations

import logging
import shutil
import signal
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import IO

from sysvault.core.errors import LockHeldError

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX hosts
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class RunLock:
    """Exclusive, non-blocking lock on a well-known file.

    Parameters
    ----------
    path:
        The lock file. Created if missing; never deleted.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._handle: IO[str] | None = None
        self.degraded = False

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if fcntl is None:
            self.degraded = True
            logger.warning("flock not available; continuing without concurrency lock.")
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            raise LockHeldError(f"Another run is in progress (lock: {self.path}).") from None
        except OSError as exc:
            handle.close()
            self.degraded = True
            logger.warning("Cannot lock %s (%s); continuing without concurrency lock.", self.path, exc)
            return
        self._handle = handle
        logger.debug("Acquired lock %s (fd %d)", self.path, handle.fileno())

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        logger.debug("Released lock %s", self.path)

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class RunWorkspace:
    """Scratch directory for one run, removed on exit.

    Layout::

        <parent>/.work.<stamp>.XXXXXX/
            extras/          handed to every task
            includes.null    compiled include list
            <base>.tar       raw archive and its compressed/encrypted successors
    """

    def __init__(self, parent: Path, stamp: str) -> None:
        self.parent = Path(parent)
        self.stamp = stamp
        self.path: Path | None = None

    @property
    def root(self) -> Path:
        if self.path is None:
            raise RuntimeError("Workspace is not open")
        return self.path

    @property
    def extras_dir(self) -> Path:
        return self.root / "extras"

    def open(self) -> Path:
        self.parent.mkdir(parents=True, exist_ok=True)
        self.path = Path(tempfile.mkdtemp(prefix=f".work.{self.stamp}.", dir=self.parent))
        self.extras_dir.mkdir()
        logger.info("Temp working dir: %s", self.path)
        logger.info("Extras (task output) dir: %s", self.extras_dir)
        return self.path

    def cleanup(self) -> None:
        if self.path is not None and self.path.exists():
            shutil.rmtree(self.path, ignore_errors=True)
            logger.debug("Cleanup complete (%s).", self.path)
        self.path = None

    def __enter__(self) -> RunWorkspace:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()


class Terminated(SystemExit):
    """Raised from the signal handler so ``finally`` blocks and ``__exit__`` run."""


def _raise_terminated(signum: int, frame: FrameType | None) -> None:
    logger.warning("Received signal %d, cleaning up.", signum)
    raise Terminated(0)


@contextmanager
def terminate_on_signals() -> Iterator[None]:
    """Convert SIGTERM and SIGHUP into :class:`Terminated` for the duration.

    SIGINT already raises ``KeyboardInterrupt``. Previous handlers are
    restored on exit.
    """
    previous: dict[int, object] = {}
    for name in ("SIGTERM", "SIGHUP"):
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        try:
            previous[signum] = signal.signal(signum, _raise_terminated)
        except ValueError:
            # Not the main thread; leave handlers alone.
            pass
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]
