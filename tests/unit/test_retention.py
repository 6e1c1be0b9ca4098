"""Tests for archive retention."""

from __future__ import annotations

import os
from pathlib import Path

from sysvault.core.retention import RetentionManager


def _touch(path: Path, mtime: int) -> Path:
    path.write_bytes(b"x")
    os.utime(path, (mtime, mtime))
    return path


def _populate(out: Path) -> list[Path]:
    """Five archives of the default prefix, oldest first, each with a sidecar."""
    archives = []
    for day in range(1, 6):
        archive = _touch(out / f"system-backup-2024010{day}-000000.tar.zst", 1_700_000_000 + day * 86400)
        _touch(out / (archive.name + ".sha256"), 1_700_000_000 + day * 86400)
        archives.append(archive)
    return archives


class TestRetention:
    def test_keeps_newest(self, tmp_dir: Path):
        archives = _populate(tmp_dir)

        removed = RetentionManager(tmp_dir, "system-backup", keep=2).prune()

        assert sorted(removed) == sorted(archives[:3])
        assert [p.exists() for p in archives] == [False, False, False, True, True]
        for archive in archives[:3]:
            assert not (tmp_dir / (archive.name + ".sha256")).exists()
        assert (tmp_dir / (archives[4].name + ".sha256")).exists()

    def test_other_prefixes_and_tags_untouched(self, tmp_dir: Path):
        _populate(tmp_dir)
        other = _touch(tmp_dir / "other-20230101-000000.tar", 1)
        tagged = _touch(tmp_dir / "system-backup-20230101-000000--nightly.tar", 1)
        stray = _touch(tmp_dir / "notes.txt", 1)

        RetentionManager(tmp_dir, "system-backup", keep=1).prune()

        assert other.exists()
        assert tagged.exists()
        assert stray.exists()
        assert len(RetentionManager(tmp_dir, "system-backup", keep=1).list_archives()) == 1

    def test_tagged_retention_only_sees_its_tag(self, tmp_dir: Path):
        _populate(tmp_dir)
        old = _touch(tmp_dir / "system-backup-20230101-000000--nightly.tar", 10)
        new = _touch(tmp_dir / "system-backup-20230102-000000--nightly.tar", 20)

        removed = RetentionManager(tmp_dir, "system-backup", keep=1, tag="nightly").prune()

        assert removed == [old]
        assert new.exists()
        assert len(RetentionManager(tmp_dir, "system-backup", keep=0).list_archives()) == 5

    def test_zero_disables(self, tmp_dir: Path):
        archives = _populate(tmp_dir)
        assert RetentionManager(tmp_dir, "system-backup", keep=0).prune() == []
        assert all(p.exists() for p in archives)

    def test_name_breaks_mtime_ties(self, tmp_dir: Path):
        a = _touch(tmp_dir / "system-backup-20240101-000000.tar", 100)
        b = _touch(tmp_dir / "system-backup-20240102-000000.tar", 100)
        assert RetentionManager(tmp_dir, "system-backup", keep=1).list_archives() == [b, a]

    def test_missing_output_dir(self, tmp_dir: Path):
        assert RetentionManager(tmp_dir / "none", "system-backup", keep=3).prune() == []
