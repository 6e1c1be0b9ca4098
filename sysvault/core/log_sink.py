"""Run log sink and logging setup.

The run log has several writers: the driver's ``logging`` records, the
task output multiplexer, and external tools whose stderr is appended
directly. All of them go through one :class:`LogSink`, whose append is
serialized by a lock. The file is opened in append mode and never
truncated while a run is active.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import IO

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "[%(asctime)s] %(levelname)-5s %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MODE = 0o600


class LogSink:
    """Append-only, thread-safe writer for the run log file.

    Parameters
    ----------
    path:
        Log file to append to. Parent directories are created.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        # Owner-only from creation: the log holds task output and tool stderr.
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, LOG_MODE)
        os.fchmod(fd, LOG_MODE)
        self._stream: IO[str] = open(fd, "a", encoding="utf-8", errors="backslashreplace")

    @classmethod
    def for_run(cls, log_dir: Path, mode: str, now: datetime | None = None) -> LogSink:
        """Create the sink for a run: ``<log_dir>/<YYYYMMDD-HHMMSS>-<mode>.log``."""
        stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        return cls(Path(log_dir) / f"{stamp}-{mode}.log")

    def write_line(self, line: str) -> None:
        with self._lock:
            self._stream.write(line.rstrip("\n") + "\n")
            self._stream.flush()

    def write_lines(self, lines: list[str]) -> None:
        with self._lock:
            for line in lines:
                self._stream.write(line.rstrip("\n") + "\n")
            self._stream.flush()

    @contextmanager
    def redirect(self) -> Iterator[IO[str]]:
        """Yield the underlying stream for a subprocess's stderr.

        The lock is held for the duration so no other writer interleaves
        with the child process.
        """
        with self._lock:
            self._stream.flush()
            yield self._stream
            self._stream.flush()

    def close(self) -> None:
        with self._lock:
            if not self._stream.closed:
                self._stream.close()

    @property
    def closed(self) -> bool:
        return self._stream.closed


class SinkHandler(logging.Handler):
    """``logging`` handler that appends formatted records to a :class:`LogSink`."""

    def __init__(self, sink: LogSink) -> None:
        super().__init__()
        self.sink = sink
        self.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        if self.sink.closed:
            return
        try:
            self.sink.write_line(self.format(record))
        except Exception:
            self.handleError(record)


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Install a Rich console handler on the ``sysvault`` logger.

    Safe to call more than once; the previous console handler is replaced.
    """
    root = logging.getLogger("sysvault")
    root.setLevel(level)
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
        log_time_format="[%Y-%m-%d %H:%M:%S]",
    )
    handler.setLevel(level)
    root.addHandler(handler)


def attach_sink(sink: LogSink) -> SinkHandler:
    """Route every ``sysvault`` log record into the run log as well."""
    handler = SinkHandler(sink)
    logging.getLogger("sysvault").addHandler(handler)
    return handler


def detach_sink(handler: SinkHandler) -> None:
    logging.getLogger("sysvault").removeHandler(handler)
    handler.sink.close()
