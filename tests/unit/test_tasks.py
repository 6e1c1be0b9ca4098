"""Tests for task discovery, the task state machine and the runner."""

from __future__ import annotations

import io
import os
import signal
from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from sysvault.core.lock import Terminated, terminate_on_signals
from sysvault.core.log_sink import LogSink
from sysvault.models.tasks import TaskState
from sysvault.tasks.base import LAUNCH_FAILURE_RC, ScriptTask, Task
from sysvault.tasks.registry import TaskRegistry, discover_tasks
from sysvault.tasks.runner import InvalidTaskTransitionError, TaskRunner


class RaisingTask:
    name = "boom"

    def run(self, extras_dir, env, on_line):
        raise RuntimeError("kaboom")


class EchoTask:
    def __init__(self, name: str, returncode: int = 0) -> None:
        self.name = name
        self.returncode = returncode

    def run(self, extras_dir, env, on_line):
        on_line(f"hello from {self.name}")
        (Path(extras_dir) / f"{self.name}.out").write_text(env["TMP_BACKUP_DIR"], encoding="utf-8")
        return self.returncode, 0.0


class TestDiscovery:
    def test_order_and_filters(self, tmp_dir: Path, make_task: Callable[..., Path]):
        make_task("20-second.sh", "exit 0")
        make_task("10-first.sh", "exit 0")
        make_task("30-disabled.sh.sample", "exit 0")
        make_task(".hidden.sh", "exit 0")
        make_task("40-binary", "exit 0")
        make_task("50-notes.txt", "not a task", executable=False)
        (tmp_dir / "tasks.d" / "60-dir").mkdir()

        names = [d.name for d in discover_tasks(tmp_dir / "tasks.d")]
        assert names == ["10-first.sh", "20-second.sh", "40-binary"]

    def test_shell_scripts_run_through_bash(self, tmp_dir: Path, make_task: Callable[..., Path]):
        make_task("10-plain.sh", "exit 0", executable=False)
        (descriptor,) = discover_tasks(tmp_dir / "tasks.d")
        assert descriptor.command[0] == "bash"

    def test_missing_directory(self, tmp_dir: Path):
        assert discover_tasks(tmp_dir / "nowhere") == []

    def test_stdbuf_prefix(self, tmp_dir: Path, make_task: Callable[..., Path]):
        make_task("10-a.sh", "exit 0")
        (descriptor,) = discover_tasks(tmp_dir / "tasks.d")
        task = ScriptTask(descriptor, line_buffered=True)
        assert task.argv()[:3] == ["stdbuf", "-oL", "-eL"]


class TestRegistry:
    def test_script_task_satisfies_protocol(self, tmp_dir: Path, make_task: Callable[..., Path]):
        make_task("10-a.sh", "exit 0")
        registry = TaskRegistry.from_directory(tmp_dir / "tasks.d")
        assert len(registry) == 1
        assert isinstance(registry.tasks[0], Task)

    def test_duplicate_name_rejected(self):
        registry = TaskRegistry()
        registry.register(EchoTask("a"))
        with pytest.raises(ValueError):
            registry.register(EchoTask("a"))

    def test_non_task_rejected(self):
        with pytest.raises(TypeError):
            TaskRegistry().register(object())  # type: ignore[arg-type]


class TestTaskRunner:
    def test_every_task_gets_a_record(self, tmp_dir: Path, sink: LogSink, make_task: Callable[..., Path]):
        make_task("10-ok.sh", "echo collected")
        make_task("20-fail.sh", "echo broken >&2; exit 3")
        make_task("30-after.sh", 'echo later > "$TMP_BACKUP_DIR/after.txt"')
        extras = tmp_dir / "extras"
        extras.mkdir()

        runner = TaskRunner(TaskRegistry.from_directory(tmp_dir / "tasks.d"), sink, non_interactive=True)
        report = runner.run_all(extras)

        assert report.total == 3
        assert report.ok + report.failed == report.total
        assert report.failed == 1
        failed = [r for r in report.results if not r.ok]
        assert failed[0].name == "20-fail.sh"
        assert failed[0].returncode == 3
        # the failure did not stop the next task
        assert (extras / "after.txt").read_text().strip() == "later"

    def test_output_is_prefixed_in_log(self, tmp_dir: Path, sink: LogSink, make_task: Callable[..., Path]):
        make_task("10-talk.sh", "echo out; echo err >&2")
        extras = tmp_dir / "extras"
        extras.mkdir()

        TaskRunner(TaskRegistry.from_directory(tmp_dir / "tasks.d"), sink).run_all(extras)

        log = sink.path.read_text()
        assert "[TASK 10-talk.sh] out" in log
        assert "[TASK 10-talk.sh] err" in log

    def test_task_environment(self, tmp_dir: Path, sink: LogSink, make_task: Callable[..., Path]):
        make_task(
            "10-env.sh",
            'echo "ni=$NON_INTERACTIVE"; echo "log=$LOG_FILE"; echo "dir=$TMP_BACKUP_DIR"',
        )
        extras = tmp_dir / "extras"
        extras.mkdir()

        runner = TaskRunner(TaskRegistry.from_directory(tmp_dir / "tasks.d"), sink, non_interactive=True)
        runner.run_all(extras)

        log = sink.path.read_text()
        assert "[TASK 10-env.sh] ni=1" in log
        assert f"[TASK 10-env.sh] log={sink.path}" in log
        assert f"[TASK 10-env.sh] dir={extras}" in log

    def test_streaming_echoes_to_console(self, tmp_dir: Path, sink: LogSink):
        buffer = io.StringIO()
        registry = TaskRegistry()
        registry.register(EchoTask("echo"))
        runner = TaskRunner(registry, sink, stream=True, console=Console(file=buffer, width=200))

        runner.run_all(tmp_dir)

        assert "[TASK echo] hello from echo" in buffer.getvalue()
        assert "[TASK echo] hello from echo" in sink.path.read_text()

    def test_buffered_mode_stays_quiet(self, tmp_dir: Path, sink: LogSink):
        buffer = io.StringIO()
        registry = TaskRegistry()
        registry.register(EchoTask("echo"))
        TaskRunner(registry, sink, console=Console(file=buffer)).run_all(tmp_dir)
        assert buffer.getvalue() == ""

    def test_raising_task_is_isolated(self, tmp_dir: Path, sink: LogSink):
        registry = TaskRegistry()
        registry.register(RaisingTask())
        registry.register(EchoTask("next"))

        report = TaskRunner(registry, sink).run_all(tmp_dir)

        assert [r.returncode for r in report.results] == [LAUNCH_FAILURE_RC, 0]
        assert (tmp_dir / "next.out").exists()

    def test_unstartable_script(self, tmp_dir: Path, sink: LogSink, make_task: Callable[..., Path]):
        path = make_task("10-gone", "exit 0")
        registry = TaskRegistry.from_directory(tmp_dir / "tasks.d")
        path.unlink()

        report = TaskRunner(registry, sink).run_all(tmp_dir)

        assert report.results[0].returncode == LAUNCH_FAILURE_RC


class TestTaskStateMachine:
    def test_terminal_states(self, tmp_dir: Path, sink: LogSink):
        registry = TaskRegistry()
        registry.register(EchoTask("good"))
        registry.register(EchoTask("bad", returncode=1))
        runner = TaskRunner(registry, sink)
        assert set(runner.states.values()) == {TaskState.PENDING}

        runner.run_all(tmp_dir)

        assert runner.states == {"good": TaskState.SUCCEEDED, "bad": TaskState.FAILED}

    def test_no_retry_after_completion(self, tmp_dir: Path, sink: LogSink):
        registry = TaskRegistry()
        task = EchoTask("once")
        registry.register(task)
        runner = TaskRunner(registry, sink)
        runner.run_all(tmp_dir)

        with pytest.raises(InvalidTaskTransitionError):
            runner.run_task(task, tmp_dir, {"TMP_BACKUP_DIR": str(tmp_dir)})


class TestInterruption:
    def test_sigterm_stops_running_task(self, tmp_dir: Path, make_task: Callable[..., Path]):
        make_task("10-sleep.sh", 'echo "$$"\nexec sleep 30')
        (descriptor,) = discover_tasks(tmp_dir / "tasks.d")
        pids: list[int] = []

        def _on_line(line: str) -> None:
            pids.append(int(line))
            os.kill(os.getpid(), signal.SIGTERM)

        with pytest.raises(Terminated):
            with terminate_on_signals():
                ScriptTask(descriptor).run(tmp_dir, {**os.environ, "NON_INTERACTIVE": "1"}, _on_line)

        assert pids
        with pytest.raises(ProcessLookupError):
            os.kill(pids[0], 0)

    def test_runner_does_not_swallow_termination(self, tmp_dir: Path, sink: LogSink, make_task: Callable[..., Path]):
        make_task("10-term.sh", 'kill -TERM "$PPID"\nexec sleep 30')
        make_task("20-after.sh", 'touch "$TMP_BACKUP_DIR/ran"')
        registry = TaskRegistry.from_directory(tmp_dir / "tasks.d")

        with pytest.raises(Terminated):
            with terminate_on_signals():
                TaskRunner(registry, sink).run_all(tmp_dir)

        assert not (tmp_dir / "ran").exists()
