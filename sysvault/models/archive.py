"""Archive naming and format detection.

Filename grammar::

    <prefix>-<YYYYMMDD-HHMMSS>[--<tag>].tar[.zst|.xz|.gz][.gpg]

The compression suffix always precedes the encryption suffix. Format
detection reads the suffixes greedily from the end of the name using the
single ``FORMAT_SUFFIXES`` table, so backup verification, dry-run listing
and restore all agree on what a file contains.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

_TAG_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class Compression(str, Enum):
    """Compression codec applied to the raw tar."""

    ZSTD = "zstd"
    XZ = "xz"
    GZIP = "gz"
    NONE = "none"

    @property
    def suffix(self) -> str:
        return _COMPRESSION_SUFFIXES[self]


class Encryption(str, Enum):
    """Encryption applied after compression."""

    GPG = "gpg"
    NONE = "none"

    @property
    def suffix(self) -> str:
        return ".gpg" if self is Encryption.GPG else ""


class HashAlgorithm(str, Enum):
    """Digest written to the checksum sidecar."""

    SHA256 = "sha256"
    SHA512 = "sha512"
    NONE = "none"

    @property
    def sidecar_suffix(self) -> str:
        return "" if self is HashAlgorithm.NONE else f".{self.value}"


_COMPRESSION_SUFFIXES: dict[Compression, str] = {
    Compression.ZSTD: ".zst",
    Compression.XZ: ".xz",
    Compression.GZIP: ".gz",
    Compression.NONE: "",
}

# Every sidecar suffix the tool has ever written; pruning and overwrite
# remove all of them so no stale digest survives an algorithm change.
SIDECAR_SUFFIXES: tuple[str, ...] = tuple(
    algo.sidecar_suffix for algo in HashAlgorithm if algo is not HashAlgorithm.NONE
)


class SuffixStep(BaseModel):
    """One row of the suffix table: a filename suffix and the layer it names."""

    model_config = ConfigDict(frozen=True)

    suffix: str
    encryption: Encryption | None = None
    compression: Compression | None = None


# Outermost layer first. Encryption may only be stripped before compression.
FORMAT_SUFFIXES: list[SuffixStep] = [
    SuffixStep(suffix=".gpg", encryption=Encryption.GPG),
    SuffixStep(suffix=".zst", compression=Compression.ZSTD),
    SuffixStep(suffix=".xz", compression=Compression.XZ),
    SuffixStep(suffix=".gz", compression=Compression.GZIP),
]


class ArchiveFormat(BaseModel):
    """The transform chain of an archive file: tar → compression → encryption."""

    model_config = ConfigDict(frozen=True)

    compression: Compression = Compression.NONE
    encryption: Encryption = Encryption.NONE

    @property
    def suffix(self) -> str:
        """Full extension, e.g. ``.tar.zst.gpg``."""
        return f".tar{self.compression.suffix}{self.encryption.suffix}"


def detect_format(filename: str) -> ArchiveFormat:
    """Derive the transform chain of *filename* from its trailing suffixes.

    The table is walked once; an encryption suffix is only recognised as
    the outermost layer and at most one compression suffix is taken.
    Anything left over is treated as a plain tar stream.
    """
    remaining = filename
    encryption = Encryption.NONE
    compression = Compression.NONE
    for step in FORMAT_SUFFIXES:
        if not remaining.endswith(step.suffix):
            continue
        remaining = remaining[: -len(step.suffix)]
        if step.encryption is not None:
            encryption = step.encryption
        else:
            compression = step.compression or Compression.NONE
            break
    return ArchiveFormat(compression=compression, encryption=encryption)


def sanitize_tag(tag: str) -> str:
    """Replace characters outside ``[A-Za-z0-9._-]`` with ``_``."""
    return _TAG_UNSAFE.sub("_", tag)


def build_base_name(prefix: str, timestamp: datetime, tag: str = "") -> str:
    """``<prefix>-<YYYYMMDD-HHMMSS>[--<tag>]``: the name without extensions."""
    tag_part = f"--{sanitize_tag(tag)}" if tag else ""
    return f"{prefix}-{timestamp.strftime(TIMESTAMP_FORMAT)}{tag_part}"


def archive_filename(base_name: str, fmt: ArchiveFormat) -> str:
    return f"{base_name}{fmt.suffix}"


def archive_name_pattern(prefix: str, tag: str = "") -> re.Pattern[str]:
    """Regex matching every archive name for exactly this prefix and tag."""
    tag_part = re.escape(f"--{sanitize_tag(tag)}") if tag else ""
    return re.compile(
        rf"^{re.escape(prefix)}-\d{{8}}-\d{{6}}{tag_part}\.tar(\.(zst|xz|gz))?(\.gpg)?$"
    )
