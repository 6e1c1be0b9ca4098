"""Checksum sidecars in ``sha256sum``/``sha512sum`` text format."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from sysvault.models.archive import SIDECAR_SUFFIXES, HashAlgorithm
from sysvault.models.run import StageOutcome, StageStatus

logger = logging.getLogger(__name__)

_CHUNK = 1024 * 1024


def file_digest(path: Path, algorithm: HashAlgorithm) -> str:
    """Hex digest of *path*, read in chunks."""
    digest = hashlib.new(algorithm.value)
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def sidecar_path(archive: Path, algorithm: HashAlgorithm) -> Path:
    return archive.with_name(archive.name + algorithm.sidecar_suffix)


def existing_sidecars(archive: Path) -> list[Path]:
    return [
        archive.with_name(archive.name + suffix)
        for suffix in SIDECAR_SUFFIXES
        if archive.with_name(archive.name + suffix).exists()
    ]


def remove_sidecars(archive: Path) -> list[Path]:
    """Delete every sidecar of *archive*, whatever algorithm wrote it."""
    removed = existing_sidecars(archive)
    for path in removed:
        path.unlink(missing_ok=True)
    return removed


def write_checksum(archive: Path, algorithm: HashAlgorithm) -> StageOutcome:
    """Write ``<archive>.<algo>`` containing ``"<hex>  <basename>"``."""
    description = f"checksum {algorithm.value}"
    if algorithm is HashAlgorithm.NONE:
        return StageOutcome(description=description, status=StageStatus.SKIPPED)
    try:
        digest = file_digest(archive, algorithm)
        target = sidecar_path(archive, algorithm)
        target.write_text(f"{digest}  {archive.name}\n", encoding="utf-8")
        target.chmod(0o600)
    except OSError as exc:
        logger.error("%s failed: %s", description, exc)
        return StageOutcome(description=description, status=StageStatus.FAILED, detail=str(exc))
    logger.info("Wrote %s", target.name)
    return StageOutcome(description=description, status=StageStatus.OK)


def verify_sidecar(archive: Path) -> bool | None:
    """Check *archive* against the first sidecar found.

    Returns ``None`` when there is no sidecar, otherwise whether the
    recorded digest matches.
    """
    for suffix in SIDECAR_SUFFIXES:
        candidate = archive.with_name(archive.name + suffix)
        if not candidate.exists():
            continue
        algorithm = HashAlgorithm(suffix.lstrip("."))
        recorded = candidate.read_text(encoding="utf-8").split()
        if not recorded:
            return False
        return recorded[0].lower() == file_digest(archive, algorithm)
    return None
