"""Sysvault data models: Pydantic v2, frozen."""

from sysvault.models.archive import (
    FORMAT_SUFFIXES,
    SIDECAR_SUFFIXES,
    ArchiveFormat,
    Compression,
    Encryption,
    HashAlgorithm,
    SuffixStep,
    detect_format,
)
from sysvault.models.run import (
    BackupSummary,
    ConflictPolicy,
    Manifest,
    RestoreOutcome,
    RunStatus,
    StageOutcome,
    StageStatus,
)
from sysvault.models.tasks import (
    VALID_TASK_TRANSITIONS,
    TaskDescriptor,
    TaskResult,
    TaskRunReport,
    TaskState,
)

__all__ = [
    # archive
    "ArchiveFormat",
    "Compression",
    "Encryption",
    "HashAlgorithm",
    "SuffixStep",
    "FORMAT_SUFFIXES",
    "SIDECAR_SUFFIXES",
    "detect_format",
    # run
    "BackupSummary",
    "ConflictPolicy",
    "Manifest",
    "RestoreOutcome",
    "RunStatus",
    "StageOutcome",
    "StageStatus",
    # tasks
    "TaskDescriptor",
    "TaskResult",
    "TaskRunReport",
    "TaskState",
    "VALID_TASK_TRANSITIONS",
]
