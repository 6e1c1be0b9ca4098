"""Sysvault: lock-guarded, task-driven system backup and restore.

A single run:
  - takes an exclusive lock so only one backup or restore is active
  - runs every collection task in ``tasks.d`` into a shared extras directory
  - archives the include list (minus excludes) plus the extras namespace
  - compresses, encrypts, places, checksums and optionally verifies the result
  - prunes older archives beyond the retention count

Restore reverses the chain using only the archive's filename suffixes.
"""

__version__ = "1.2.0"
__description__ = "Modular backup/restore orchestrator built on tar, zstd/xz/gzip and gpg"

from sysvault.core.orchestrator import BackupOrchestrator
from sysvault.cli.app import app as cli

__all__ = ["BackupOrchestrator", "cli", "__version__"]
