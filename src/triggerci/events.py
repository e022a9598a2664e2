# events.py
"""
Lifecycle notifications for external observers.

Listeners are called synchronously, in process, possibly from worker
threads. They exist for diagnostics only: a listener that raises is logged
and ignored, never allowed to change the outcome of a run.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, List

from .model import Event, JobDefinition, JobResult, RunSummary, StepDefinition, StepResult, WorkflowDefinition

logger = logging.getLogger(__name__)


class WorkflowListener:
    """Subclass and override the hooks you care about."""

    def workflow_start(self, workflow: WorkflowDefinition, event: Event) -> None:
        pass

    def workflow_complete(self, workflow: WorkflowDefinition, event: Event, summary: RunSummary) -> None:
        pass

    def job_start(self, workflow: str, job_id: str, job: JobDefinition) -> None:
        pass

    def job_complete(self, workflow: str, job_id: str, result: JobResult) -> None:
        pass

    def job_skipped(self, workflow: str, job_id: str, reason: str) -> None:
        pass

    def step_start(self, workflow: str, job_id: str, step: StepDefinition) -> None:
        pass

    def step_complete(self, workflow: str, job_id: str, step: StepDefinition, result: StepResult) -> None:
        pass

    def step_error(self, workflow: str, job_id: str, step: StepDefinition, error: BaseException) -> None:
        pass


class EventDispatcher:
    """Fans each notification out to every registered listener."""

    def __init__(self, listeners: List[WorkflowListener] | None = None):
        self._lock = threading.Lock()
        self._listeners: List[WorkflowListener] = list(listeners or [])

    def subscribe(self, listener: WorkflowListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: WorkflowListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, hook: str, *args: Any) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                getattr(listener, hook)(*args)
            except Exception:
                logger.exception("Listener %r failed in %s", listener, hook)

    def workflow_start(self, *args: Any) -> None:
        self.emit("workflow_start", *args)

    def workflow_complete(self, *args: Any) -> None:
        self.emit("workflow_complete", *args)

    def job_start(self, *args: Any) -> None:
        self.emit("job_start", *args)

    def job_complete(self, *args: Any) -> None:
        self.emit("job_complete", *args)

    def job_skipped(self, *args: Any) -> None:
        self.emit("job_skipped", *args)

    def step_start(self, *args: Any) -> None:
        self.emit("step_start", *args)

    def step_complete(self, *args: Any) -> None:
        self.emit("step_complete", *args)

    def step_error(self, *args: Any) -> None:
        self.emit("step_error", *args)
