"""Task discovery: the plugin registry, populated by a directory scan.

Discovery rules for the tasks directory (not recursive):

* regular files only, hidden files skipped;
* ``*.sample`` files skipped (shipped examples, disabled by name);
* ``*.sh`` files run through ``bash`` whether or not they are executable;
* any other file must carry an executable bit and is run directly;
* order is the plain sort order of the file names, so ``100-…`` runs
  before ``110-…``.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from sysvault.models.tasks import TaskDescriptor
from sysvault.tasks.base import ScriptTask, Task

logger = logging.getLogger(__name__)

SAMPLE_SUFFIX = ".sample"


def discover_tasks(tasks_dir: Path) -> list[TaskDescriptor]:
    """Scan *tasks_dir* and return descriptors in execution order."""
    tasks_dir = Path(tasks_dir)
    if not tasks_dir.is_dir():
        logger.debug("Tasks directory not found: %s", tasks_dir)
        return []

    descriptors: list[TaskDescriptor] = []
    for entry in sorted(tasks_dir.iterdir(), key=lambda p: p.name):
        if entry.name.startswith(".") or entry.name.endswith(SAMPLE_SUFFIX):
            continue
        if not entry.is_file():
            continue
        if entry.suffix == ".sh":
            command = ["bash", str(entry.resolve())]
        elif os.access(entry, os.X_OK):
            command = [str(entry.resolve())]
        else:
            logger.debug("Skipping non-executable task file: %s", entry.name)
            continue
        descriptors.append(TaskDescriptor(name=entry.name, path=entry, command=command))
    return descriptors


class TaskRegistry:
    """Ordered set of tasks for one run.

    Tasks are registered once; names must be unique.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    @classmethod
    def from_directory(cls, tasks_dir: Path, *, line_buffered: bool = False) -> TaskRegistry:
        """Build a registry from every task found in *tasks_dir*.

        ``line_buffered`` only takes effect when ``stdbuf`` is installed.
        """
        registry = cls()
        use_stdbuf = line_buffered and shutil.which("stdbuf") is not None
        for descriptor in discover_tasks(tasks_dir):
            registry.register(ScriptTask(descriptor, line_buffered=use_stdbuf))
        return registry

    def register(self, task: Task) -> None:
        if not isinstance(task, Task):
            raise TypeError(f"{task!r} does not implement the Task protocol")
        if task.name in self._tasks:
            raise ValueError(f"Task already registered: {task.name}")
        self._tasks[task.name] = task

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self):
        return iter(self.tasks)
