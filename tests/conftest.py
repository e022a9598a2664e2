# tests/conftest.py
"""
Shared fixtures: a scripted CommandRunner, a recording listener and an
engine factory rooted in a temporary workflows directory.

Nothing here shells out; every `run:` step goes to FakeRunner.
"""
from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import pytest

from triggerci.engine import WorkflowEngine
from triggerci.events import WorkflowListener
from triggerci.runners import ActionRegistry, CommandResult, CommandTimeout
from triggerci.settings import EngineSettings


class FakeRunner:
    """
    CommandRunner double.

    - `echo X`   succeeds with stdout "X\\n"
    - `sleep S`  sleeps S seconds (or raises CommandTimeout past the budget)
    - anything listed in `script` returns that exit code, CommandResult, or
      the result of calling it with (command, env, timeout)
    - everything else succeeds with empty output
    """

    def __init__(self, script: Optional[Mapping[str, Any]] = None):
        self.script: Dict[str, Any] = dict(script or {})
        self.calls: List[Tuple[str, Dict[str, str], Optional[float]]] = []
        self._lock = threading.Lock()

    @property
    def commands(self) -> List[str]:
        with self._lock:
            return [c for c, _, _ in self.calls]

    def env_for(self, command: str) -> Dict[str, str]:
        with self._lock:
            for c, env, _ in self.calls:
                if c == command:
                    return env
        raise KeyError(command)

    def run(self, command: str, env: Mapping[str, str], timeout: Optional[float] = None) -> CommandResult:
        with self._lock:
            self.calls.append((command, dict(env), timeout))

        scripted = self.script.get(command)
        if callable(scripted):
            return scripted(command, env, timeout)
        if isinstance(scripted, CommandResult):
            return scripted
        if isinstance(scripted, int):
            return CommandResult(stdout="", exit_code=scripted, stderr=f"{command}: exit {scripted}")

        if command.startswith("sleep "):
            seconds = float(command.split()[1])
            if timeout is not None and seconds > timeout:
                time.sleep(timeout)
                raise CommandTimeout(command, timeout)
            time.sleep(seconds)
            return CommandResult(stdout="", exit_code=0)
        if command.startswith("echo "):
            return CommandResult(stdout=command[len("echo "):] + "\n", exit_code=0)
        return CommandResult(stdout="", exit_code=0)


class RecordingListener(WorkflowListener):
    """Keeps every notification as a tuple: (hook, workflow, job_id, detail)."""

    def __init__(self):
        self.events: List[Tuple[str, ...]] = []
        self._lock = threading.Lock()

    def _add(self, *item: Any) -> None:
        with self._lock:
            self.events.append(item)

    def hooks(self) -> List[str]:
        with self._lock:
            return [e[0] for e in self.events]

    def workflow_start(self, workflow, event):
        self._add("workflow_start", workflow.name, event.name)

    def workflow_complete(self, workflow, event, summary):
        self._add("workflow_complete", workflow.name, summary.status.value)

    def job_start(self, workflow, job_id, job):
        self._add("job_start", workflow, job_id)

    def job_complete(self, workflow, job_id, result):
        self._add("job_complete", workflow, job_id, result.state.value)

    def job_skipped(self, workflow, job_id, reason):
        self._add("job_skipped", workflow, job_id, reason)

    def step_start(self, workflow, job_id, step):
        self._add("step_start", workflow, job_id, step.name)

    def step_complete(self, workflow, job_id, step, result):
        self._add("step_complete", workflow, job_id, step.name, result.status.value)

    def step_error(self, workflow, job_id, step, error):
        self._add("step_error", workflow, job_id, step.name, str(error))


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def workflows_dir(tmp_path: Path) -> Path:
    path = tmp_path / ".workflows"
    path.mkdir()
    return path


@pytest.fixture
def make_engine(workflows_dir: Path) -> Callable[..., WorkflowEngine]:
    def _make(
        runner: Optional[FakeRunner] = None,
        actions: Optional[ActionRegistry] = None,
        listeners: Optional[List[WorkflowListener]] = None,
        **settings: Any,
    ) -> WorkflowEngine:
        settings.setdefault("workflows_dir", workflows_dir)
        return WorkflowEngine(
            EngineSettings(**settings),
            runner=runner or FakeRunner(),
            actions=actions,
            listeners=listeners,
        )

    return _make


def write_workflow(directory: Path, filename: str, text: str) -> Path:
    path = directory / filename
    path.write_text(text, encoding="utf-8")
    return path


CI_WORKFLOW = """\
name: ci
on: push
jobs:
  build:
    steps:
      - run: compile
  test:
    needs: [build]
    steps:
      - run: test
"""
