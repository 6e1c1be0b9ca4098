"""Restore: decode an archive by its filename suffixes and extract or list it.

The transform chain comes only from the trailing extensions (``.gpg``,
then ``.zst``/``.xz``/``.gz``); the decoders are streamed straight into
``tar`` so no decrypted or decompressed copy ever touches the disk.

Conflict policy is a single switch: keep existing files (the default,
``--skip-old-files``) or overwrite them (``--overwrite``).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from sysvault.config import VaultSettings
from sysvault.core.checksum import verify_sidecar
from sysvault.core.codecs import decode_chain, describe_chain, required_decoders
from sysvault.core.errors import RestoreError
from sysvault.core.log_sink import LogSink
from sysvault.core.tools import require_cmd, run_pipeline
from sysvault.models.archive import detect_format
from sysvault.models.run import ConflictPolicy, RestoreOutcome

logger = logging.getLogger(__name__)


def tar_extract_args(target: Path, policy: ConflictPolicy) -> list[str]:
    args = [
        "tar",
        "--extract",
        "--xattrs", "--acls", "--numeric-owner", "--preserve-permissions",
        "-C", str(target),
    ]
    if policy is ConflictPolicy.OVERWRITE:
        args.append("--overwrite")
    else:
        args.append("--skip-old-files")
    args += ["-f", "-"]
    return args


class RestorePipeline:
    """Lists or extracts one archive.

    Parameters
    ----------
    settings:
        Resolved configuration (target, dry-run, overwrite, non-interactive).
    sink:
        Run log.
    confirm:
        Asks the operator a yes/no question; only consulted in interactive
        mode. Declining cancels the restore.
    echo:
        Receives each listed member during a dry-run.
    ask_target:
        Asks for the extraction root when none was given, offering the
        configured default. Only consulted for interactive extraction.
    """

    def __init__(
        self,
        settings: VaultSettings,
        sink: LogSink,
        *,
        confirm: Callable[[str], bool] | None = None,
        echo: Callable[[str], None] | None = None,
        ask_target: Callable[[Path], Path] | None = None,
    ) -> None:
        self.settings = settings
        self.sink = sink
        self._confirm = confirm or (lambda _prompt: False)
        self._echo = echo or (lambda _line: None)
        self._ask_target = ask_target

    def _check_decoders(self, archive: Path) -> None:
        fmt = detect_format(archive.name)
        for tool in required_decoders(fmt):
            if not require_cmd(tool):
                if tool == "gpg":
                    raise RestoreError("gpg not available; cannot decrypt.")
                raise RestoreError(f"{tool} not available; cannot decompress {archive.name}.")

    def list_contents(self, archive: Path) -> RestoreOutcome:
        fmt = detect_format(archive.name)
        logger.info("Dry-run: listing archive contents only.")

        def _emit(line: str) -> None:
            self.sink.write_line(line)
            self._echo(line)

        outcome = run_pipeline(
            f"list {describe_chain(fmt)}",
            decode_chain(fmt) + [["tar", "-tf", "-"]],
            self.sink,
            stdin_path=archive,
            on_line=_emit,
        )
        return RestoreOutcome(
            archive=archive,
            target=self.settings.target_dir,
            dry_run=True,
            policy=self.settings.conflict_policy,
            stage=outcome,
        )

    def restore(self, archive: Path, target: Path | None = None) -> RestoreOutcome:
        """Extract (or, in dry-run mode, list) *archive*.

        Raises
        ------
        RestoreError
            Archive missing, decoder missing, or checksum sidecar mismatch.
        """
        archive = Path(archive)
        policy = self.settings.conflict_policy

        if not archive.is_file():
            raise RestoreError(f"Archive not found: {archive}")
        self._check_decoders(archive)

        if target is not None:
            target = Path(target)
        elif self._ask_target is not None and not self.settings.non_interactive and not self.settings.dry_run:
            target = Path(self._ask_target(self.settings.target_dir))
        else:
            target = self.settings.target_dir

        logger.info("Restoring to: %s", target)
        logger.info(
            "Keep old files: %s (use --overwrite to replace)",
            "yes" if policy is ConflictPolicy.KEEP else "no",
        )
        logger.info("Archive: %s", archive)

        if self.settings.dry_run:
            return self.list_contents(archive)

        matches = verify_sidecar(archive)
        if matches is False:
            raise RestoreError(f"Checksum mismatch for {archive.name}; refusing to restore.")
        if matches:
            logger.info("Checksum sidecar OK for %s", archive.name)

        prompt = f"Proceed with restore to '{target}'?"
        if self.settings.non_interactive:
            logger.debug("NON_INTERACTIVE=1 -> auto-yes: %s", prompt)
        elif not self._confirm(prompt):
            logger.info("Restore cancelled.")
            return RestoreOutcome(archive=archive, target=target, cancelled=True, policy=policy)

        target.mkdir(parents=True, exist_ok=True)
        fmt = detect_format(archive.name)
        outcome = run_pipeline(
            f"restore {describe_chain(fmt)}",
            decode_chain(fmt) + [tar_extract_args(target, policy)],
            self.sink,
            stdin_path=archive,
        )

        extras_dir = target / self.settings.staging_prefix.strip("/")
        if outcome.failed:
            logger.error("Restore of %s did not complete cleanly.", archive.name)
        else:
            logger.info(
                "Restore completed. Look for '%s/' inside '%s' for task outputs (e.g., MANIFEST.txt).",
                self.settings.staging_prefix,
                target,
            )
        return RestoreOutcome(
            archive=archive,
            target=target,
            policy=policy,
            stage=outcome,
            extras_dir=extras_dir,
        )
