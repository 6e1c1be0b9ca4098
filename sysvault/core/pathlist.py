"""Include/exclude list compilation for the archiver.

List files are semi-trusted data: one pattern per line, ``#`` comments and
blank lines ignored, ``$VAR`` / ``${VAR}`` expanded from the environment.
A line containing command-substitution syntax (``$(`` or a backtick) is
kept literally and never expanded; nothing here ever invokes a shell.

The archiver runs with ``-C /``, so include paths are written root-relative
and every absolute exclude is emitted in both absolute and root-relative
form.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

_VAR_REF = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")
_SUBSTITUTION_MARKERS = ("$(", "`")


class PatternKind(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"


def expand_vars_only(line: str, environ: Mapping[str, str] | None = None) -> str:
    """Expand environment references in *line*, leaving globs untouched.

    Unset variables expand to the empty string. Lines carrying
    command-substitution syntax are returned unchanged.
    """
    line = line.rstrip("\r")
    if any(marker in line for marker in _SUBSTITUTION_MARKERS):
        return line
    env = os.environ if environ is None else environ
    return _VAR_REF.sub(lambda m: env.get(m.group(1) or m.group(2), ""), line)


def load_list(
    path: Path,
    kind: PatternKind,
    environ: Mapping[str, str] | None = None,
) -> list[str]:
    """Read a list file into ordered, expanded patterns. A missing file yields ``[]``.

    Lines are decoded with :func:`os.fsdecode`, so patterns naming paths that
    are not valid UTF-8 survive unchanged into the NUL list and tar argv.
    """
    path = Path(path)
    if not path.is_file():
        logger.debug("%s list not found: %s", kind.value, path)
        return []

    patterns: list[str] = []
    with open(path, "rb") as fh:
        for line in fh:
            raw = os.fsdecode(line.rstrip(b"\n").rstrip(b"\r"))
            stripped = raw.strip()
            if not stripped or stripped.startswith("#"):
                continue
            expanded = expand_vars_only(raw, environ)
            if not expanded:
                continue
            patterns.append(expanded)
    return patterns


def compile_excludes(
    path: Path, environ: Mapping[str, str] | None = None
) -> list[str]:
    """Exclude patterns for tar, each absolute one followed by its root-relative twin."""
    excludes: list[str] = []
    for pattern in load_list(path, PatternKind.EXCLUDE, environ):
        excludes.append(pattern)
        relative = pattern.lstrip("/")
        if relative and relative != pattern:
            excludes.append(relative)
        logger.debug("exclude: %r%s", pattern, f" (alt: {relative!r})" if relative != pattern else "")
    return excludes


def compile_includes(
    path: Path, environ: Mapping[str, str] | None = None
) -> list[str]:
    """Include paths relative to ``/``."""
    includes: list[str] = []
    for pattern in load_list(path, PatternKind.INCLUDE, environ):
        relative = pattern.lstrip("/")
        if not relative:
            continue
        includes.append(relative)
        logger.debug("include: %r -> %r", pattern, relative)
    return includes


def write_null_list(paths: list[str], destination: Path) -> Path:
    """Write *paths* NUL-delimited for ``tar --null --files-from``."""
    destination = Path(destination)
    with open(destination, "wb") as fh:
        for item in paths:
            fh.write(os.fsencode(item) + b"\0")
    return destination


def read_null_list(source: Path) -> list[str]:
    data = Path(source).read_bytes()
    return [os.fsdecode(item) for item in data.split(b"\0") if item]


class PathListCompiler:
    """Compiles the include and exclude list files of a run.

    Parameters
    ----------
    include_file, exclude_file:
        List files; either may be missing.
    environ:
        Mapping used for variable expansion. Defaults to ``os.environ``.
    """

    def __init__(
        self,
        include_file: Path,
        exclude_file: Path,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.include_file = Path(include_file)
        self.exclude_file = Path(exclude_file)
        self._environ = environ

    def includes(self) -> list[str]:
        return compile_includes(self.include_file, self._environ)

    def excludes(self) -> list[str]:
        return compile_excludes(self.exclude_file, self._environ)

    def compile(self, work_dir: Path) -> tuple[Path, list[str]]:
        """Write ``includes.null`` into *work_dir* and return it with the excludes."""
        includes = self.includes()
        null_list = write_null_list(includes, Path(work_dir) / "includes.null")
        if includes:
            logger.info("Tar include list:\n%s", "\n".join(f"  - {p}" for p in includes))
        else:
            logger.warning("Include list is empty (%s)", self.include_file)
        return null_list, self.excludes()
