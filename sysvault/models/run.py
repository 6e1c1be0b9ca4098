"""Run-level records: stage outcomes, manifest, and end-of-run summaries."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class StageStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageOutcome(BaseModel):
    """What happened when one pipeline step ran an external tool (or didn't)."""

    model_config = ConfigDict(frozen=True)

    description: str
    status: StageStatus
    returncode: int | None = None
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.status is StageStatus.FAILED

    def describe(self) -> str:
        rc = f" (rc={self.returncode})" if self.returncode is not None else ""
        detail = f": {self.detail}" if self.detail else ""
        return f"{self.description}{rc}{detail}"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    DEGRADED = "degraded"
    SKIPPED = "skipped"
    ABORTED = "aborted"


class ConflictPolicy(str, Enum):
    """What extraction does when a file already exists at the target."""

    KEEP = "keep"
    OVERWRITE = "overwrite"


class Manifest(BaseModel):
    """Provenance record embedded in every archive's extras namespace."""

    model_config = ConfigDict(frozen=True)

    name: str
    date: str
    host: str
    user: str
    compress: str
    encryption: str
    tasks_total: int = 0
    tasks_ok: int = 0
    tasks_fail: int = 0


def human_size(num_bytes: int) -> str:
    """IEC size string, e.g. ``1.5KiB``."""
    size = float(num_bytes)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if size < 1024 or unit == "TiB":
            return f"{int(size)}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{num_bytes}B"


class BackupSummary(BaseModel):
    """Fixed-format report printed at the end of every backup run."""

    model_config = ConfigDict(frozen=True)

    status: RunStatus
    started_at: datetime
    output: Path | None = None
    compression: str = "none"
    encryption: str = "none"
    tar_files: int = 0
    tar_size: int = 0
    final_size: int = 0
    tasks_total: int = 0
    tasks_ok: int = 0
    tasks_fail: int = 0
    verify: str = "off"
    checksum: str = "none"
    stages: list[StageOutcome] = Field(default_factory=list)
    elapsed_seconds: float = 0.0
    log_file: Path | None = None
    note: str = ""

    @property
    def failures(self) -> list[StageOutcome]:
        return [s for s in self.stages if s.failed]

    def render_lines(self) -> list[str]:
        failures = "; ".join(s.describe() for s in self.failures) or "none"
        lines = [
            "=== Backup Summary ===",
            f"Status: {self.status.value}",
            f"Date: {self.started_at.isoformat(timespec='seconds')}",
            f"Output: {self.output or '-'}",
            f"Compression: {self.compression}",
            f"Encryption: {self.encryption}",
            f"Files in TAR: {self.tar_files}",
            f"TAR size (before compression): {human_size(self.tar_size)}",
            f"Final size: {human_size(self.final_size)}",
            f"Tasks: total={self.tasks_total}, ok={self.tasks_ok}, failed={self.tasks_fail}",
            f"Verify: {self.verify}",
            f"Checksum: {self.checksum}",
            f"Failures: {failures}",
            f"Elapsed: {int(self.elapsed_seconds)}s",
            f"Logs: {self.log_file or '-'}",
        ]
        if self.note:
            lines.insert(2, f"Note: {self.note}")
        return lines


class RestoreOutcome(BaseModel):
    """Result of a restore or dry-run listing."""

    model_config = ConfigDict(frozen=True)

    archive: Path
    target: Path
    dry_run: bool = False
    cancelled: bool = False
    policy: ConflictPolicy = ConflictPolicy.KEEP
    stage: StageOutcome | None = None
    extras_dir: Path | None = None

    @property
    def ok(self) -> bool:
        return not self.cancelled and self.stage is not None and not self.stage.failed
