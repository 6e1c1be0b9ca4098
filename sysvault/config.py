"""Run configuration: layered, resolved once, immutable.

Precedence (lowest to highest):

1. field defaults below
2. the config file (dotenv format, ``SYSVAULT_*`` keys)
3. ``SYSVAULT_*`` environment variables
4. CLI flags, passed to :func:`resolve_settings` as keyword overrides

Examples
--------
Config file (``config.env``)::

    SYSVAULT_OUTPUT_DIR=/srv/backups
    SYSVAULT_COMPRESS=xz
    SYSVAULT_ENCRYPTION=gpg
    SYSVAULT_GPG_RECIPIENT=ops@example.com
    SYSVAULT_RETENTION=7

Environment::

    export SYSVAULT_VERIFY=1
    export SYSVAULT_LOG_LEVEL=DEBUG

Unknown values for enum-like settings never fail the run: a warning is
logged and the safe default is substituted.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sysvault.models.archive import Compression, Encryption, HashAlgorithm
from sysvault.models.run import ConflictPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("config.env")

_COMPRESSION_ALIASES: dict[str, Compression] = {
    "zstd": Compression.ZSTD,
    "zst": Compression.ZSTD,
    "xz": Compression.XZ,
    "gz": Compression.GZIP,
    "gzip": Compression.GZIP,
    "none": Compression.NONE,
    "": Compression.NONE,
}

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


class VaultSettings(BaseSettings):
    """Every option a backup or restore run reads. Frozen after construction."""

    model_config = SettingsConfigDict(
        env_prefix="SYSVAULT_",
        env_file=None,
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Locations
    output_dir: Path = Path("output")
    include_file: Path = Path("include.txt")
    exclude_file: Path = Path("exclude.txt")
    tasks_dir: Path = Path("tasks.d")
    log_dir: Path = Path("logs")
    lock_file: Path = Path(".backup.lock")
    tmpdir_parent: Path | None = None  # defaults to output_dir

    # Naming
    archive_prefix: str = "system-backup"
    staging_prefix: str = "__backup_extras"
    tag: str = ""

    # Pipeline
    compress: Compression = Compression.ZSTD
    encryption: Encryption = Encryption.GPG
    gpg_recipient: str = ""
    hash_algo: HashAlgorithm = HashAlgorithm.SHA256
    verify: bool = False
    retention: int = 0
    overwrite: bool = False

    # tar behaviour
    one_fs: bool = False
    exclude_caches: bool = True
    sparse: bool = True

    # Interaction and logging
    non_interactive: bool = False
    stream_task_logs: bool = Field(default_factory=lambda: sys.stdout.isatty())
    log_level: str = "INFO"

    # Restore
    target_dir: Path = Path("/")
    dry_run: bool = False

    # ------------------------------------------------------------------
    # Lenient validators: warn and fall back, never raise
    # ------------------------------------------------------------------

    @field_validator("compress", mode="before")
    @classmethod
    def _coerce_compress(cls, value: Any) -> Any:
        if isinstance(value, Compression):
            return value
        key = str(value).strip().lower()
        if key not in _COMPRESSION_ALIASES:
            logger.warning("Unknown COMPRESS=%s, falling back to no compression.", value)
            return Compression.NONE
        return _COMPRESSION_ALIASES[key]

    @field_validator("encryption", mode="before")
    @classmethod
    def _coerce_encryption(cls, value: Any) -> Any:
        if isinstance(value, Encryption):
            return value
        key = str(value).strip().lower() or "none"
        try:
            return Encryption(key)
        except ValueError:
            logger.warning("Unknown encryption '%s', using none.", value)
            return Encryption.NONE

    @field_validator("hash_algo", mode="before")
    @classmethod
    def _coerce_hash(cls, value: Any) -> Any:
        if isinstance(value, HashAlgorithm):
            return value
        key = str(value).strip().lower() or "none"
        try:
            return HashAlgorithm(key)
        except ValueError:
            logger.warning("Unknown HASH_ALGO=%s, no checksum will be written.", value)
            return HashAlgorithm.NONE

    @field_validator("retention", mode="before")
    @classmethod
    def _coerce_retention(cls, value: Any) -> Any:
        try:
            count = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid RETENTION=%s, pruning disabled.", value)
            return 0
        if count < 0:
            logger.warning("Negative RETENTION=%s, pruning disabled.", value)
            return 0
        return count

    @field_validator("log_level", mode="before")
    @classmethod
    def _coerce_log_level(cls, value: Any) -> Any:
        level = str(value).strip().upper()
        if level not in _LOG_LEVELS:
            logger.warning("Unknown LOG_LEVEL=%s, using INFO.", value)
            return "INFO"
        return level

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def work_parent(self) -> Path:
        """Directory under which the per-run scratch directory is created."""
        return self.tmpdir_parent or self.output_dir

    @property
    def conflict_policy(self) -> ConflictPolicy:
        """Restore conflict policy; one switch, so keep and overwrite never coexist."""
        return ConflictPolicy.OVERWRITE if self.overwrite else ConflictPolicy.KEEP


def resolve_settings(config_file: Path | None = None, **overrides: Any) -> VaultSettings:
    """Merge defaults, config file, environment and CLI overrides into one value.

    ``None`` overrides are dropped so an unset CLI flag never masks a value
    from a lower layer.
    """
    path = Path(config_file) if config_file else DEFAULT_CONFIG_FILE
    env_file: Path | None = None
    if path.is_file():
        env_file = path
        logger.info("Loaded config from %s", path)
    else:
        logger.warning("Config file not found (%s), using defaults.", path)

    explicit = {key: value for key, value in overrides.items() if value is not None}
    return VaultSettings(_env_file=env_file, **explicit)
