"""Exceptions that are allowed to halt a run.

Everything else (task failures, stage failures, missing optional tools) is
recorded as data and surfaced through the summary instead of raised.
"""

from __future__ import annotations


class SysvaultError(RuntimeError):
    """Base class for run-halting errors."""


class LockHeldError(SysvaultError):
    """Raised when another run already holds the lock file."""


class MissingDependencyError(SysvaultError):
    """Raised when a required external program (``tar``) is not on PATH."""


class RestoreError(SysvaultError):
    """Raised when a restore cannot proceed (missing archive, decoder, bad checksum)."""
