"""Archive pipeline: assemble → account → compress → encrypt → place → checksum → verify.

Each stage consumes only the finished output of the previous one, and
every intermediate lives in the run's scratch directory. A failing
external tool is recorded as a failed :class:`StageOutcome` and the
pipeline carries on with the best artifact it has:

* compression fails → the raw tar is used and the name drops the codec suffix;
* encryption fails or is unavailable → the archive stays unencrypted;
* checksum or verification fails → reported, the archive is kept.

Only a finished file is moved into the output directory, via a rename, so
an interrupted run never leaves a partial archive under a final name.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from sysvault.config import VaultSettings
from sysvault.core.checksum import remove_sidecars, write_checksum
from sysvault.core.codecs import (
    COMPRESSION_TOOLS,
    compress_command,
    decode_chain,
    describe_chain,
    encrypt_command,
    required_decoders,
)
from sysvault.core.log_sink import LogSink
from sysvault.core.tools import require_cmd, run_pipeline, run_safe
from sysvault.models.archive import (
    ArchiveFormat,
    Compression,
    Encryption,
    archive_filename,
    detect_format,
)
from sysvault.models.run import StageOutcome, StageStatus

logger = logging.getLogger(__name__)

FINAL_MODE = 0o600


class ArchivePlan(BaseModel):
    """Where the archive will land, decided before any work starts."""

    model_config = ConfigDict(frozen=True)

    base_name: str
    fmt: ArchiveFormat
    output_dir: Path

    @property
    def final_path(self) -> Path:
        return self.output_dir / archive_filename(self.base_name, self.fmt)


class PipelineResult(BaseModel):
    """Everything the summary needs from one pipeline run."""

    model_config = ConfigDict(frozen=True)

    final_path: Path | None = None
    fmt: ArchiveFormat = ArchiveFormat()
    tar_files: int = 0
    tar_size: int = 0
    final_size: int = 0
    stages: list[StageOutcome] = Field(default_factory=list)
    skipped: bool = False
    verify: str = "off"

    @property
    def failures(self) -> list[StageOutcome]:
        return [s for s in self.stages if s.failed]


def _atomic_place(src: Path, dst: Path) -> None:
    """Move *src* to *dst* so *dst* only ever names a complete file."""
    try:
        os.replace(src, dst)
        return
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
    partial = dst.with_name(f".{dst.name}.partial")
    try:
        shutil.copyfile(src, partial)
        os.replace(partial, dst)
    finally:
        partial.unlink(missing_ok=True)
    src.unlink(missing_ok=True)


class ArchivePipeline:
    """Builds one archive from a compiled path list and an extras directory.

    Parameters
    ----------
    settings:
        Resolved run configuration.
    sink:
        Run log; every external tool's stderr is appended to it.
    """

    def __init__(self, settings: VaultSettings, sink: LogSink) -> None:
        self.settings = settings
        self.sink = sink

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, base_name: str) -> ArchivePlan:
        """Resolve the effective format, degrading on missing prerequisites."""
        compression = self.settings.compress
        tool = COMPRESSION_TOOLS.get(compression)
        if tool is not None and not require_cmd(tool):
            logger.warning("%s not available, falling back to no compression.", tool)
            compression = Compression.NONE

        encryption = self.settings.encryption
        if encryption is Encryption.GPG:
            if not require_cmd("gpg") or not self.settings.gpg_recipient:
                logger.warning(
                    "ENCRYPTION=gpg but gpg or GPG_RECIPIENT missing; skipping encryption."
                )
                encryption = Encryption.NONE

        return ArchivePlan(
            base_name=base_name,
            fmt=ArchiveFormat(compression=compression, encryption=encryption),
            output_dir=self.settings.output_dir,
        )

    def blocked_by_existing(self, path: Path) -> bool:
        """True if *path* exists and overwrite was not requested."""
        if path.exists() and not self.settings.overwrite:
            logger.warning("Archive exists: %s; skipping backup (idempotent).", path.name)
            return True
        return False

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def tar_create_args(self, raw_tar: Path, include_list: Path, excludes: list[str]) -> list[str]:
        args = [
            "tar",
            "--create",
            "--file", str(raw_tar),
            "--xattrs", "--acls", "--numeric-owner", "--preserve-permissions",
            "--ignore-failed-read",
            "--warning=no-file-ignored",
        ]
        if self.settings.one_fs:
            args.append("--one-file-system")
        if self.settings.exclude_caches:
            args += ["--exclude-caches-all", "--exclude-backups"]
        if self.settings.sparse:
            args.append("--sparse")
        args += [f"--exclude={pattern}" for pattern in excludes]
        args += ["-C", "/", "--null", f"--files-from={include_list}"]
        return args

    def tar_append_args(self, raw_tar: Path, extras_dir: Path) -> list[str] | None:
        entries = sorted(p.name for p in extras_dir.iterdir())
        if not entries:
            return None
        prefix = self.settings.staging_prefix.strip("/")
        return [
            "tar",
            "--append",
            "--file", str(raw_tar),
            f"--transform=s,^,{prefix}/,S",
            "-C", str(extras_dir),
            "--",
            *entries,
        ]

    def assemble(
        self,
        raw_tar: Path,
        include_list: Path,
        excludes: list[str],
        extras_dir: Path,
    ) -> list[StageOutcome]:
        logger.info("Creating TAR (phase 1: system paths from include list)")
        outcomes = [
            run_safe(
                "tar create (system paths)",
                self.tar_create_args(raw_tar, include_list, excludes),
                self.sink,
            )
        ]
        append = self.tar_append_args(raw_tar, extras_dir)
        if append is None:
            logger.info("No extras to append")
            return outcomes
        logger.info("Appending extras from tasks under %s/", self.settings.staging_prefix)
        outcomes.append(run_safe("tar append (extras)", append, self.sink))
        return outcomes

    def account(self, raw_tar: Path) -> tuple[int, int, StageOutcome]:
        """Member count and byte size of the uncompressed tar."""
        if not raw_tar.exists():
            outcome = StageOutcome(
                description="tar list (count)",
                status=StageStatus.FAILED,
                detail="raw archive missing",
            )
            logger.error("Raw archive missing: %s", raw_tar)
            return 0, 0, outcome
        count = 0

        def _count(_line: str) -> None:
            nonlocal count
            count += 1

        outcome = run_pipeline(
            "tar list (count)", [["tar", "-tf", str(raw_tar)]], self.sink, on_line=_count
        )
        return count, raw_tar.stat().st_size, outcome

    def compress(self, raw_tar: Path, fmt: ArchiveFormat) -> tuple[Path, Compression, StageOutcome]:
        compression = fmt.compression
        if compression is Compression.NONE:
            logger.info("No compression")
            return raw_tar, Compression.NONE, StageOutcome(
                description="compress", status=StageStatus.SKIPPED
            )

        target = raw_tar.with_name(raw_tar.name + compression.suffix)
        argv, stdout_path = compress_command(compression, raw_tar, target)
        logger.info("Compressing with %s", COMPRESSION_TOOLS[compression])
        outcome = run_safe(f"{COMPRESSION_TOOLS[compression]} compress", argv, self.sink, stdout_path=stdout_path)
        if outcome.failed or not target.exists():
            logger.warning("Compression failed; keeping uncompressed archive.")
            target.unlink(missing_ok=True)
            return raw_tar, Compression.NONE, outcome
        raw_tar.unlink(missing_ok=True)
        return target, compression, outcome

    def encrypt(self, staged: Path, fmt: ArchiveFormat) -> tuple[Path, Encryption, StageOutcome]:
        if fmt.encryption is Encryption.NONE:
            return staged, Encryption.NONE, StageOutcome(
                description="gpg encrypt", status=StageStatus.SKIPPED
            )

        target = staged.with_name(staged.name + fmt.encryption.suffix)
        logger.info("Encrypting with GPG (recipient: %s)", self.settings.gpg_recipient)
        outcome = run_safe(
            "gpg encrypt",
            encrypt_command(staged, target, self.settings.gpg_recipient),
            self.sink,
        )
        if outcome.failed or not target.exists():
            logger.warning("GPG encryption failed; leaving unencrypted archive.")
            target.unlink(missing_ok=True)
            return staged, Encryption.NONE, outcome
        target.chmod(FINAL_MODE)
        staged.unlink(missing_ok=True)
        return target, fmt.encryption, outcome

    def place(self, staged: Path, final_path: Path) -> StageOutcome:
        final_path.parent.mkdir(parents=True, exist_ok=True)
        if self.settings.overwrite:
            if final_path.exists():
                logger.info("Overwrite enabled: replacing %s", final_path.name)
                final_path.unlink()
            remove_sidecars(final_path)
        try:
            _atomic_place(staged, final_path)
            final_path.chmod(FINAL_MODE)
        except OSError as exc:
            logger.error("move into place failed: %s", exc)
            return StageOutcome(description="move into place", status=StageStatus.FAILED, detail=str(exc))
        logger.info("Archive written: %s", final_path)
        return StageOutcome(description="move into place", status=StageStatus.OK)

    def verify(self, archive: Path) -> StageOutcome:
        """Stream the archive back through its decoders into ``tar -t``.

        Nothing is extracted; the tar stream only has to parse end to end.
        """
        fmt = detect_format(archive.name)
        label = f"verify {describe_chain(fmt)}"
        missing = [tool for tool in required_decoders(fmt) if not require_cmd(tool)]
        if missing:
            logger.warning("Cannot verify %s: missing %s", archive.name, ", ".join(missing))
            return StageOutcome(description=label, status=StageStatus.SKIPPED, detail="decoder missing")
        logger.info("Verifying archive integrity: %s", archive.name)
        commands = decode_chain(fmt) + [["tar", "-tf", "-"]]
        return run_pipeline(label, commands, self.sink, stdin_path=archive)

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def run(
        self,
        plan: ArchivePlan,
        include_list: Path,
        excludes: list[str],
        extras_dir: Path,
        work_dir: Path,
    ) -> PipelineResult:
        stages: list[StageOutcome] = []
        raw_tar = Path(work_dir) / f"{plan.base_name}.tar"

        stages += self.assemble(raw_tar, include_list, excludes, extras_dir)
        tar_files, tar_size, counted = self.account(raw_tar)
        stages.append(counted)
        if not raw_tar.exists():
            return PipelineResult(stages=stages)

        staged, compression, outcome = self.compress(raw_tar, plan.fmt)
        stages.append(outcome)
        staged, encryption, outcome = self.encrypt(staged, plan.fmt)
        stages.append(outcome)

        fmt = ArchiveFormat(compression=compression, encryption=encryption)
        final_path = plan.output_dir / archive_filename(plan.base_name, fmt)
        if final_path != plan.final_path and self.blocked_by_existing(final_path):
            stages.append(
                StageOutcome(description="move into place", status=StageStatus.SKIPPED, detail="archive exists")
            )
            return PipelineResult(
                fmt=fmt, tar_files=tar_files, tar_size=tar_size, stages=stages, skipped=True
            )

        placed = self.place(staged, final_path)
        stages.append(placed)
        if placed.failed:
            return PipelineResult(fmt=fmt, tar_files=tar_files, tar_size=tar_size, stages=stages)

        stages.append(write_checksum(final_path, self.settings.hash_algo))

        verify_label = "off"
        if self.settings.verify:
            verified = self.verify(final_path)
            stages.append(verified)
            verify_label = verified.status.value

        return PipelineResult(
            final_path=final_path,
            fmt=fmt,
            tar_files=tar_files,
            tar_size=tar_size,
            final_size=final_path.stat().st_size,
            stages=stages,
            verify=verify_label,
        )
