"""Retention: keep the N most recent archives of one prefix and tag.

Only names matching the archive filename grammar for exactly the
configured prefix and tag are candidates, so archives of other prefixes,
other tags, and unrelated files in the output directory are never touched.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sysvault.core.checksum import remove_sidecars
from sysvault.models.archive import archive_name_pattern

logger = logging.getLogger(__name__)


class RetentionManager:
    """Prunes old archives beyond a keep-count.

    Parameters
    ----------
    output_dir:
        Directory holding the archives.
    prefix:
        Archive name prefix (``system-backup`` by default).
    tag:
        Tag part of the name; ``""`` selects untagged archives only.
    keep:
        Number of most recent archives to keep. ``0`` disables pruning.
    """

    def __init__(self, output_dir: Path, prefix: str, keep: int, tag: str = "") -> None:
        self.output_dir = Path(output_dir)
        self.prefix = prefix
        self.tag = tag
        self.keep = keep
        self._pattern = archive_name_pattern(prefix, tag)

    def list_archives(self) -> list[Path]:
        """Matching archives, newest first (mtime, then name)."""
        if not self.output_dir.is_dir():
            return []
        candidates = [
            p for p in self.output_dir.iterdir()
            if p.is_file() and self._pattern.match(p.name)
        ]
        return sorted(candidates, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def prune(self) -> list[Path]:
        """Delete everything past the newest ``keep`` archives, with sidecars.

        Returns the archives that were removed.
        """
        if self.keep <= 0:
            return []
        logger.info(
            "Retention: keeping latest %d archives with prefix '%s'", self.keep, self.prefix
        )
        existing = self.list_archives()
        if len(existing) <= self.keep:
            logger.debug("Nothing to prune.")
            return []

        removed: list[Path] = []
        for archive in existing[self.keep:]:
            logger.info("Pruning old archive: %s", archive.name)
            try:
                archive.unlink()
            except OSError as exc:
                logger.error("Failed to prune %s: %s", archive.name, exc)
                continue
            remove_sidecars(archive)
            removed.append(archive)
        return removed
