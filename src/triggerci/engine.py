# engine.py
from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional

from .context import RunContext
from .events import EventDispatcher, WorkflowListener
from .executor import StepExecutor
from .gating import ContextEvaluator, PredicateEvaluator, ShellEvaluator
from .model import Event, JobRunState, RunStatus, RunSummary, WorkflowDefinition
from .router import route
from .runners import ActionRegistry, CommandRunner, SubprocessCommandRunner
from .scheduler import JobGraphScheduler
from .settings import EngineSettings
from .store import DefinitionStore
from .templates import TemplateSuggester, WorkflowSuggester

logger = logging.getLogger(__name__)

DISPATCH_EVENT = "workflow_dispatch"


class WorkflowEngine:
    """
    Event-triggered workflow engine.

    Owns its definition store and collaborators; nothing is shared between
    instances, so several engines can run side by side.

        engine = WorkflowEngine(EngineSettings(workflows_dir="ci/.workflows"))
        engine.load()
        for summary in engine.trigger(Event("push", {"ref": "main"})):
            print(summary.workflow, summary.status)
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        runner: CommandRunner | None = None,
        actions: ActionRegistry | None = None,
        evaluator: PredicateEvaluator | None = None,
        suggester: WorkflowSuggester | None = None,
        listeners: List[WorkflowListener] | None = None,
        store: DefinitionStore | None = None,
    ):
        self.settings = settings or EngineSettings()
        self.store = store or DefinitionStore(self.settings.workflows_dir)
        self.runner = runner or SubprocessCommandRunner(cwd=self.settings.working_dir, shell=self.settings.shell)
        self.actions = actions or ActionRegistry()
        if evaluator is None:
            evaluator = ShellEvaluator(self.runner) if self.settings.shell_gates else ContextEvaluator()
        self.evaluator = evaluator
        self.suggester = suggester or TemplateSuggester()
        self.dispatcher = EventDispatcher(listeners)

        self.executor = StepExecutor(
            self.runner,
            self.actions,
            self.evaluator,
            self.dispatcher,
            default_step_timeout=self.settings.default_step_timeout,
        )
        self.scheduler = JobGraphScheduler(
            self.executor,
            self.evaluator,
            self.dispatcher,
            max_workers=self.settings.max_workers,
            skipped_blocks_dependents=self.settings.skipped_blocks_dependents,
        )

    # ----------------------------------------------------------------------
    # Definitions
    # ----------------------------------------------------------------------

    def load(self) -> int:
        return self.store.load()

    def get(self, name: str) -> Optional[WorkflowDefinition]:
        return self.store.get(name)

    def list(self) -> List[Dict[str, str]]:
        return [{"name": wf.name, "description": wf.description or wf.name} for wf in self.store.list()]

    def create(self, name: str, definition: WorkflowDefinition) -> WorkflowDefinition:
        return self.store.create(name, definition)

    def delete(self, name: str) -> bool:
        return self.store.delete(name)

    def suggest(self, framework: str, language: str) -> WorkflowDefinition:
        return self.suggester.suggest(framework, language)

    def subscribe(self, listener: WorkflowListener) -> None:
        self.dispatcher.subscribe(listener)

    # ----------------------------------------------------------------------
    # Runs
    # ----------------------------------------------------------------------

    def trigger(self, event: Event, cancel: Optional[threading.Event] = None) -> List[RunSummary]:
        """
        Run every workflow `event` triggers, one after another.

        Returns one RunSummary per workflow that ran; an event nobody listens
        to yields an empty list. Job and step failures are reported in the
        summaries, never raised.
        """
        logger.info("Event triggered: %s", event.name)
        matching = route(event.name, self.store.list())
        if not matching:
            logger.warning("No workflows found for event: %s", event.name)
            return []

        summaries: List[RunSummary] = []
        for definition in matching:
            if cancel is not None and cancel.is_set():
                logger.info("Cancelled; not starting workflow %s", definition.name)
                break
            summaries.append(self.run_workflow(definition, event, cancel))
        return summaries

    def dispatch(self, name: str, inputs: Optional[Dict[str, Any]] = None,
                 cancel: Optional[threading.Event] = None) -> RunSummary:
        """Manually run one workflow, as a `workflow_dispatch` event."""
        definition = self.store.get(name)
        if definition is None:
            raise KeyError(f"Workflow not found: {name}")
        event = Event(DISPATCH_EVENT, {"workflow": name, "inputs": dict(inputs or {})})
        return self.run_workflow(definition, event, cancel)

    def run_workflow(
        self,
        definition: WorkflowDefinition,
        event: Event,
        cancel: Optional[threading.Event] = None,
    ) -> RunSummary:
        env = dict(os.environ)
        env.update(self.settings.env)
        context = RunContext(event, env, workflow=definition.name)

        logger.info("Executing workflow: %s (run %s)", definition.name, context.run_id)
        self.dispatcher.workflow_start(definition, event)
        started = time.monotonic()

        outcome = self.scheduler.run(definition, context, cancel)

        failed = any(res.state is JobRunState.FAILED for res in outcome.jobs.values())
        summary = RunSummary(
            workflow=definition.name,
            event=event.name,
            status=RunStatus.FAILED if failed else RunStatus.SUCCEEDED,
            jobs=outcome.jobs,
            error=outcome.first_error,
            duration=time.monotonic() - started,
        )

        logger.info("Workflow %s %s in %.2fs", definition.name, summary.status.value, summary.duration)
        self.dispatcher.workflow_complete(definition, event, summary)
        return summary
