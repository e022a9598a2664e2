"""Console output formatting utilities for triggerci."""

from __future__ import annotations

import sys
import threading
import traceback
from typing import Dict, List, Optional

from ..events import WorkflowListener
from ..errors import StepExecutionError
from ..model import (
    Event,
    JobDefinition,
    JobResult,
    JobRunState,
    RunSummary,
    StepDefinition,
    StepResult,
    StepStatus,
    WorkflowDefinition,
)


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(self, workflow: str, event: str, job_count: int) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Workflow: {workflow}")
        print(f"Event: {event}")
        print(f"Jobs: {job_count}")
        print()

    def print_job_start(self, name: str) -> None:
        print(f"\nJOB STARTED: {name}")

    def print_step(self, name: str) -> None:
        print(f"STEP: {name}")

    def print_success(self, name: str) -> None:
        print("STATUS: success")

    def print_step_skipped(self, name: str) -> None:
        print(f"STATUS: skipped ({name})")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        print(f"{prefix}: {name}")
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if hint:
            print(f"Hint: {hint}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        print(f"\nJOB SKIPPED: {name}")
        print(f"STATUS: skipped ({reason})")

    def print_stage(self, index: int, jobs: List[str]) -> None:
        """Print one stage of a workflow plan."""
        print(f"  stage {index}: {', '.join(jobs)}")

    def print_results(self, summary: RunSummary) -> None:
        """Print final results summary for one workflow run."""
        print("\n" + "=" * 40)
        print(f"RESULTS: {summary.workflow}")
        print("=" * 40)
        for job_id, result in summary.jobs.items():
            status_display = "SUCCESS" if result.state is JobRunState.SUCCEEDED else result.state.value.upper()
            if result.reason:
                status_display = f"{status_display} ({result.reason})"
            print(f"  {job_id}: {status_display}")
        print(f"Status: {summary.status.value}")
        print(f"Duration: {summary.duration:.1f}s")
        if summary.error:
            print(f"First error: {summary.error}")

    def print_workflows(self, workflows: List[Dict[str, str]]) -> None:
        if not workflows:
            print("No workflows registered.")
            return
        width = max(len(wf["name"]) for wf in workflows)
        for wf in workflows:
            print(f"  {wf['name']:<{width}}  {wf['description']}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[List[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


class ConsoleListener(WorkflowListener):
    """
    Renders run progress through a Console.

    Jobs run on worker threads, so each hook prints under one lock to keep a
    job's lines together.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or get_console()
        self._lock = threading.Lock()

    def workflow_start(self, workflow: WorkflowDefinition, event: Event) -> None:
        with self._lock:
            self.console.print_run_started(workflow.name, event.name, len(workflow.jobs))

    def workflow_complete(self, workflow: WorkflowDefinition, event: Event, summary: RunSummary) -> None:
        with self._lock:
            self.console.print_results(summary)

    def job_start(self, workflow: str, job_id: str, job: JobDefinition) -> None:
        with self._lock:
            self.console.print_job_start(job.name if job.name == job_id else f"{job_id} ({job.name})")

    def job_complete(self, workflow: str, job_id: str, result: JobResult) -> None:
        if result.state is not JobRunState.FAILED:
            return
        with self._lock:
            self.console.print_failure(job_id, result.error or "", is_job=True)

    def job_skipped(self, workflow: str, job_id: str, reason: str) -> None:
        with self._lock:
            self.console.print_job_skipped(job_id, reason)

    def step_start(self, workflow: str, job_id: str, step: StepDefinition) -> None:
        with self._lock:
            self.console.print_step(f"{job_id} / {step.name}")

    def step_complete(self, workflow: str, job_id: str, step: StepDefinition, result: StepResult) -> None:
        with self._lock:
            if result.status is StepStatus.SUCCEEDED:
                self.console.print_success(step.name)
            elif result.status is StepStatus.SKIPPED:
                self.console.print_step_skipped(f"{job_id} / {step.name}")

    def step_error(self, workflow: str, job_id: str, step: StepDefinition, error: BaseException) -> None:
        exit_code = error.exit_code if isinstance(error, StepExecutionError) else None
        with self._lock:
            self.console.print_failure(f"{job_id} / {step.name}", str(error), exit_code=exit_code)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
