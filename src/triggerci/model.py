# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

Trigger = Union[str, Tuple[str, ...], Mapping[str, Any]]


@dataclass(frozen=True)
class StepDefinition:
    """
    A single step inside a job.

    Exactly one of `run` (a shell-style command) or `uses` (a named action,
    called with `with_`) is set. `id` is only needed when a later step or the
    job outputs reference this step's result.
    """
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    if_: Optional[str] = None
    id: Optional[str] = None
    timeout_minutes: Optional[float] = None

    @property
    def kind(self) -> str:
        return "run" if self.run is not None else "uses"


@dataclass(frozen=True)
class JobDefinition:
    """A job: ordered steps + prerequisite jobs + optional gate and outputs."""
    name: str
    steps: Tuple[StepDefinition, ...]
    needs: Tuple[str, ...] = ()
    if_: Optional[str] = None
    environment: Optional[str] = None
    outputs: Dict[str, str] = field(default_factory=dict)
    timeout_minutes: Optional[float] = None


@dataclass(frozen=True)
class WorkflowDefinition:
    name: str
    on: Trigger
    jobs: Dict[str, JobDefinition]
    description: str = ""


@dataclass(frozen=True)
class Event:
    name: str
    payload: Dict[str, Any] = field(default_factory=dict)


# ----------------------------------------------------------------------
# Run-time state
# ----------------------------------------------------------------------

class JobRunState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobRunState.SUCCEEDED, JobRunState.FAILED, JobRunState.SKIPPED)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    id: Optional[str] = None
    output: Any = None
    error: Optional[str] = None
    duration: float = 0.0


@dataclass
class JobResult:
    job_id: str
    state: JobRunState
    steps: List[StepResult] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    # why a job was skipped: "condition", "needs-failed", "needs-skipped", "cancelled"
    reason: Optional[str] = None
    duration: float = 0.0


@dataclass
class RunSummary:
    """What `trigger()` hands back for every workflow it ran."""
    workflow: str
    event: str
    status: RunStatus
    jobs: Dict[str, JobResult] = field(default_factory=dict)
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.SUCCEEDED

    def outputs(self) -> Dict[str, Dict[str, Any]]:
        return {job_id: dict(res.outputs) for job_id, res in self.jobs.items()}
