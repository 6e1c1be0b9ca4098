"""Collection tasks: discovery, the Task protocol, and the sequential runner."""

from sysvault.tasks.base import ScriptTask, Task
from sysvault.tasks.registry import TaskRegistry, discover_tasks
from sysvault.tasks.runner import TaskRunner

__all__ = ["ScriptTask", "Task", "TaskRegistry", "TaskRunner", "discover_tasks"]
