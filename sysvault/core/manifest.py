"""Manifest record written into the extras namespace before archiving."""

from __future__ import annotations

import getpass
import logging
import socket
from datetime import datetime
from pathlib import Path

from sysvault.models.run import Manifest
from sysvault.models.tasks import TaskRunReport

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "MANIFEST.txt"


def _host() -> str:
    return socket.getfqdn() or socket.gethostname()


def _user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def build_manifest(
    name: str,
    compress: str,
    encryption: str,
    tasks: TaskRunReport,
    now: datetime | None = None,
) -> Manifest:
    return Manifest(
        name=name,
        date=(now or datetime.now().astimezone()).isoformat(timespec="seconds"),
        host=_host(),
        user=_user(),
        compress=compress,
        encryption=encryption,
        tasks_total=tasks.total,
        tasks_ok=tasks.ok,
        tasks_fail=tasks.failed,
    )


def render_manifest(manifest: Manifest) -> str:
    """``key=value`` lines in field order."""
    return "".join(f"{key}={value}\n" for key, value in manifest.model_dump(mode="json").items())


def parse_manifest(text: str) -> Manifest:
    values: dict[str, str] = {}
    for line in text.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return Manifest.model_validate(values)


def write_manifest(extras_dir: Path, manifest: Manifest) -> Path:
    path = Path(extras_dir) / MANIFEST_FILENAME
    path.write_text(render_manifest(manifest), encoding="utf-8")
    logger.debug("Manifest written to %s", path)
    return path
