"""Shared test fixtures for Sysvault."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from sysvault.config import VaultSettings
from sysvault.core.log_sink import LogSink
from sysvault.models.archive import Compression, Encryption

FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep the caller's SYSVAULT_* variables and config.env out of every test."""
    for key in list(os.environ):
        if key.startswith("SYSVAULT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def make_settings(tmp_dir: Path) -> Callable[..., VaultSettings]:
    """Factory fixture: settings rooted in the temp dir, plain tar, no prompts."""

    def _factory(**overrides: Any) -> VaultSettings:
        defaults: dict[str, Any] = {
            "output_dir": tmp_dir / "output",
            "include_file": tmp_dir / "include.txt",
            "exclude_file": tmp_dir / "exclude.txt",
            "tasks_dir": tmp_dir / "tasks.d",
            "log_dir": tmp_dir / "logs",
            "lock_file": tmp_dir / ".backup.lock",
            "compress": Compression.NONE,
            "encryption": Encryption.NONE,
            "non_interactive": True,
            "stream_task_logs": False,
        }
        defaults.update(overrides)
        return VaultSettings(**defaults)

    return _factory


@pytest.fixture
def sink(tmp_dir: Path) -> Iterator[LogSink]:
    """Provide a run log in the temp dir, closed after the test."""
    log = LogSink(tmp_dir / "logs" / "test.log")
    yield log
    log.close()


@pytest.fixture
def make_task(tmp_dir: Path) -> Callable[..., Path]:
    """Factory fixture: write a shell task into ``tasks.d``."""

    def _factory(name: str, body: str, *, executable: bool = True) -> Path:
        tasks_dir = tmp_dir / "tasks.d"
        tasks_dir.mkdir(exist_ok=True)
        path = tasks_dir / name
        path.write_text("#!/usr/bin/env bash\n" + body + "\n", encoding="utf-8")
        if executable:
            path.chmod(0o755)
        return path

    return _factory


@pytest.fixture
def source_file(tmp_dir: Path) -> Path:
    """One small file to back up, plus an include list naming it."""
    data = tmp_dir / "data"
    data.mkdir()
    target = data / "hello.txt"
    target.write_text("hello sysvault\n", encoding="utf-8")
    (tmp_dir / "include.txt").write_text(f"# system files\n{target}\n", encoding="utf-8")
    return target


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock that always returns the same instant, so archive names repeat."""
    return lambda: FIXED_NOW
