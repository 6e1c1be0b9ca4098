"""Tests for archive naming, format detection and the summary block."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from sysvault.models.archive import (
    ArchiveFormat,
    Compression,
    Encryption,
    archive_filename,
    archive_name_pattern,
    build_base_name,
    detect_format,
    sanitize_tag,
)
from sysvault.models.run import (
    BackupSummary,
    RunStatus,
    StageOutcome,
    StageStatus,
    human_size,
)

STAMP = datetime(2024, 5, 6, 7, 8, 9)


class TestNaming:
    def test_base_name(self):
        assert build_base_name("system-backup", STAMP) == "system-backup-20240506-070809"

    def test_base_name_with_tag(self):
        assert build_base_name("host", STAMP, "pre upgrade/1") == "host-20240506-070809--pre_upgrade_1"

    def test_sanitize_keeps_safe_characters(self):
        assert sanitize_tag("v1.2_rc-3") == "v1.2_rc-3"

    def test_filename_orders_compression_before_encryption(self):
        fmt = ArchiveFormat(compression=Compression.XZ, encryption=Encryption.GPG)
        assert archive_filename("b", fmt) == "b.tar.xz.gpg"


class TestDetectFormat:
    @pytest.mark.parametrize(
        ("name", "compression", "encryption"),
        [
            ("a-20240101-000000.tar", Compression.NONE, Encryption.NONE),
            ("a-20240101-000000.tar.zst", Compression.ZSTD, Encryption.NONE),
            ("a-20240101-000000.tar.xz.gpg", Compression.XZ, Encryption.GPG),
            ("a-20240101-000000.tar.gz", Compression.GZIP, Encryption.NONE),
            ("a-20240101-000000.tar.gpg", Compression.NONE, Encryption.GPG),
        ],
    )
    def test_suffix_chain(self, name, compression, encryption):
        fmt = detect_format(name)
        assert fmt.compression is compression
        assert fmt.encryption is encryption

    def test_detected_format_rebuilds_the_name(self):
        name = "system-backup-20240101-000000--nightly.tar.zst.gpg"
        fmt = detect_format(name)
        assert archive_filename("system-backup-20240101-000000--nightly", fmt) == name


class TestNamePattern:
    def test_matches_every_format_of_the_prefix(self):
        pattern = archive_name_pattern("system-backup")
        for suffix in (".tar", ".tar.zst", ".tar.gz.gpg", ".tar.gpg"):
            assert pattern.match(f"system-backup-20240101-000000{suffix}")

    def test_ignores_sidecars_and_other_prefixes(self):
        pattern = archive_name_pattern("system-backup")
        assert not pattern.match("system-backup-20240101-000000.tar.zst.sha256")
        assert not pattern.match("system-backup-extra-20240101-000000.tar")
        assert not pattern.match("other-20240101-000000.tar")

    def test_tag_scopes_the_match(self):
        untagged = archive_name_pattern("system-backup")
        tagged = archive_name_pattern("system-backup", "nightly")
        name = "system-backup-20240101-000000--nightly.tar.zst"
        assert tagged.match(name)
        assert not untagged.match(name)
        assert not tagged.match("system-backup-20240101-000000.tar.zst")


class TestSummary:
    def test_human_size(self):
        assert human_size(10) == "10B"
        assert human_size(1536) == "1.5KiB"
        assert human_size(3 * 1024 * 1024) == "3.0MiB"

    def test_render_lines_layout(self):
        summary = BackupSummary(
            status=RunStatus.COMPLETED,
            started_at=STAMP,
            output=Path("/srv/out/a.tar"),
            tar_files=2,
            tasks_total=3,
            tasks_ok=2,
            tasks_fail=1,
            log_file=Path("/srv/logs/x.log"),
        )
        lines = summary.render_lines()
        assert lines[0] == "=== Backup Summary ==="
        assert "Files in TAR: 2" in lines
        assert "Tasks: total=3, ok=2, failed=1" in lines
        assert "Failures: none" in lines
        assert lines[-1] == "Logs: /srv/logs/x.log"

    def test_failures_are_listed(self):
        summary = BackupSummary(
            status=RunStatus.DEGRADED,
            started_at=STAMP,
            stages=[
                StageOutcome(description="tar create (system paths)", status=StageStatus.OK, returncode=0),
                StageOutcome(description="verify gzip", status=StageStatus.FAILED, returncode=2),
            ],
        )
        assert "Failures: verify gzip (rc=2)" in summary.render_lines()

    def test_note_follows_status(self):
        summary = BackupSummary(status=RunStatus.SKIPPED, started_at=STAMP, note="archive exists")
        lines = summary.render_lines()
        assert lines[1] == "Status: skipped"
        assert lines[2] == "Note: archive exists"
