"""Task execution models: per-task state machine and run counters."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class TaskState(str, Enum):
    """Lifecycle of one collection task within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# No retries and no cancellation: terminal states have no outgoing edges.
VALID_TASK_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.PENDING: {TaskState.RUNNING},
    TaskState.RUNNING: {TaskState.SUCCEEDED, TaskState.FAILED},
    TaskState.SUCCEEDED: set(),
    TaskState.FAILED: set(),
}


class TaskDescriptor(BaseModel):
    """A discovered task: its display name and the executable behind it."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    command: list[str]


class TaskResult(BaseModel):
    """Completion record for a single task."""

    model_config = ConfigDict(frozen=True)

    name: str
    returncode: int
    duration_seconds: float
    state: TaskState

    @property
    def ok(self) -> bool:
        return self.state is TaskState.SUCCEEDED


class TaskRunReport(BaseModel):
    """Aggregate of every task result in a run, in execution order."""

    model_config = ConfigDict(frozen=True)

    results: list[TaskResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def ok(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)
