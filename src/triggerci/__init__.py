from .dsl import job, sh, uses, workflow
from .engine import WorkflowEngine
from .errors import (
    ActionNotFoundError,
    CycleDetectedError,
    DefinitionError,
    GatingEvaluationError,
    RunTimeoutError,
    SchedulerStateError,
    StepExecutionError,
    TriggerCIError,
    UnknownDependencyError,
)
from .events import WorkflowListener
from .model import (
    Event,
    JobDefinition,
    JobResult,
    JobRunState,
    RunStatus,
    RunSummary,
    StepDefinition,
    StepResult,
    StepStatus,
    WorkflowDefinition,
)
from .runners import ActionRegistry, CommandResult, CommandRunner, SubprocessCommandRunner
from .settings import EngineSettings

__all__ = [
    "job", "sh", "uses", "workflow",
    "WorkflowEngine", "EngineSettings", "WorkflowListener",
    "Event", "WorkflowDefinition", "JobDefinition", "StepDefinition",
    "JobRunState", "StepStatus", "RunStatus", "StepResult", "JobResult", "RunSummary",
    "ActionRegistry", "CommandResult", "CommandRunner", "SubprocessCommandRunner",
    "TriggerCIError", "DefinitionError", "CycleDetectedError", "UnknownDependencyError",
    "GatingEvaluationError", "StepExecutionError", "RunTimeoutError", "ActionNotFoundError",
    "SchedulerStateError",
]
