# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


class TriggerCIError(Exception):
    """Base class for every error raised by triggerci."""


# ----------------------------------------------------------------------
# Load / registration time
# ----------------------------------------------------------------------

class DefinitionError(TriggerCIError):
    """
    A workflow document that cannot be registered.

    Raised only while loading or registering a definition, never during a run.
    """

    def __init__(self, workflow: str | None, message: str, source: str | None = None):
        self.workflow = workflow
        self.message = message
        self.source = source
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f"workflow '{self.workflow}'" if self.workflow else "workflow"
        if self.source:
            where = f"{where} ({self.source})"
        return f"{where}: {self.message}"


class CycleDetectedError(DefinitionError):
    pass


class UnknownDependencyError(DefinitionError):
    pass


# ----------------------------------------------------------------------
# Run time
# ----------------------------------------------------------------------

class GatingEvaluationError(TriggerCIError):
    """The predicate evaluator could not decide; the gate counts as false."""

    def __init__(self, expression: str, message: str):
        self.expression = expression
        super().__init__(f"cannot evaluate {expression!r}: {message}")


@dataclass(eq=False)
class StepExecutionError(TriggerCIError):
    """
    A step that failed: non-zero exit, action error or exceeded budget.

    Fails the owning job only.
    """
    job: str
    step: str
    message: str
    exit_code: Optional[int] = None
    stdout: str = field(default="", repr=False)
    stderr: str = field(default="", repr=False)

    def __str__(self) -> str:
        text = f"[{self.job}] step '{self.step}' failed: {self.message}"
        if self.exit_code is not None:
            text += f" (exit={self.exit_code})"
        return text


@dataclass(eq=False)
class RunTimeoutError(StepExecutionError):
    pass


@dataclass(eq=False)
class ActionNotFoundError(StepExecutionError):
    pass


class SchedulerStateError(TriggerCIError):
    """Illegal job state transition. Indicates a scheduler bug."""
