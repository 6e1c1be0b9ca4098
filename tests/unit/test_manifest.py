"""Tests for the archive manifest."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sysvault.core.manifest import (
    MANIFEST_FILENAME,
    build_manifest,
    parse_manifest,
    render_manifest,
    write_manifest,
)
from sysvault.models.tasks import TaskResult, TaskRunReport, TaskState


def _report() -> TaskRunReport:
    return TaskRunReport(
        results=[
            TaskResult(name="10-a.sh", returncode=0, duration_seconds=0.1, state=TaskState.SUCCEEDED),
            TaskResult(name="20-b.sh", returncode=2, duration_seconds=0.2, state=TaskState.FAILED),
        ]
    )


class TestManifest:
    def test_counters_come_from_the_task_report(self):
        manifest = build_manifest("system-backup-20240101-000000", "zstd", "none", _report())
        assert (manifest.tasks_total, manifest.tasks_ok, manifest.tasks_fail) == (2, 1, 1)
        assert manifest.host
        assert manifest.user

    def test_render_is_key_value_lines(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        manifest = build_manifest("b", "xz", "gpg", _report(), now=now)
        lines = render_manifest(manifest).splitlines()
        assert lines[0] == "name=b"
        assert "date=2024-01-01T00:00:00+00:00" in lines
        assert "compress=xz" in lines
        assert "tasks_fail=1" in lines

    def test_written_file_parses_back(self, tmp_dir: Path):
        manifest = build_manifest("b", "gz", "none", _report())
        path = write_manifest(tmp_dir, manifest)
        assert path.name == MANIFEST_FILENAME
        assert parse_manifest(path.read_text()) == manifest
