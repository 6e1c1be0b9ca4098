"""Command lines for the compression and encryption layers.

Encoders read a finished file and write a new one. Decoders read stdin and
write stdout so they can be chained in front of ``tar``; the chain for a
given archive is derived from :class:`ArchiveFormat` alone.
"""

from __future__ import annotations

from pathlib import Path

from sysvault.models.archive import ArchiveFormat, Compression, Encryption

COMPRESSION_TOOLS: dict[Compression, str] = {
    Compression.ZSTD: "zstd",
    Compression.XZ: "xz",
    Compression.GZIP: "gzip",
}

ENCRYPTION_TOOLS: dict[Encryption, str] = {
    Encryption.GPG: "gpg",
}

_DECOMPRESS: dict[Compression, list[str]] = {
    Compression.ZSTD: ["zstd", "-dc", "-q"],
    Compression.XZ: ["xz", "-dc"],
    Compression.GZIP: ["gzip", "-dc"],
}

_DECRYPT: dict[Encryption, list[str]] = {
    Encryption.GPG: ["gpg", "--batch", "-q", "--decrypt"],
}


def compress_command(compression: Compression, src: Path, dst: Path) -> tuple[list[str], Path | None]:
    """Return ``(argv, stdout_path)``; ``stdout_path`` is set when the tool writes to stdout."""
    if compression is Compression.ZSTD:
        return ["zstd", "-q", "-T0", "-19", "-f", "-o", str(dst), str(src)], None
    if compression is Compression.XZ:
        return ["xz", "-T0", "-9", "-c", str(src)], dst
    if compression is Compression.GZIP:
        return ["gzip", "-9", "-c", str(src)], dst
    raise ValueError(f"No compressor for {compression.value}")


def encrypt_command(src: Path, dst: Path, recipient: str) -> list[str]:
    return [
        "gpg", "--batch", "--yes",
        "--output", str(dst),
        "--encrypt", "--recipient", recipient,
        str(src),
    ]


def decode_chain(fmt: ArchiveFormat) -> list[list[str]]:
    """Decoders to pipe an archive through, outermost layer first."""
    chain: list[list[str]] = []
    if fmt.encryption in _DECRYPT:
        chain.append(list(_DECRYPT[fmt.encryption]))
    if fmt.compression in _DECOMPRESS:
        chain.append(list(_DECOMPRESS[fmt.compression]))
    return chain


def required_decoders(fmt: ArchiveFormat) -> list[str]:
    """Program names needed to read an archive of this format."""
    tools: list[str] = []
    if fmt.encryption in ENCRYPTION_TOOLS:
        tools.append(ENCRYPTION_TOOLS[fmt.encryption])
    if fmt.compression in COMPRESSION_TOOLS:
        tools.append(COMPRESSION_TOOLS[fmt.compression])
    return tools


def describe_chain(fmt: ArchiveFormat) -> str:
    """Short label such as ``gpg+zstd`` or ``tar`` for log lines."""
    parts = [tool for tool in required_decoders(fmt)]
    return "+".join(parts) if parts else "tar"
