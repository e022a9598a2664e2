# scheduler.py
"""
Job graph scheduler: runs every job of one triggered workflow exactly once.

Ready-counter propagation
-------------------------
Each job keeps a count of prerequisites that have not reached a terminal
state. Jobs starting at zero are READY. When a job becomes terminal, the
counter of every dependent is decremented; a dependent reaching zero is
settled right then, in one place:

  - a prerequisite FAILED                       -> SKIPPED ("needs-failed")
  - a prerequisite SKIPPED and skips block      -> SKIPPED ("needs-skipped")
  - otherwise                                   -> READY

READY jobs pass their gate (false -> SKIPPED "condition") and are handed to
the thread pool. Only the scheduling loop below reads or writes job states
and counters; worker threads just run steps and return a JobResult. That
loop is the single serialization point, so a dependent whose prerequisites
finish at the same moment is still released once.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .context import RunContext
from .dag import build_graph
from .errors import SchedulerStateError
from .events import EventDispatcher
from .executor import StepExecutor
from .gating import PredicateEvaluator, evaluate_gate
from .model import JobResult, JobRunState, WorkflowDefinition

logger = logging.getLogger(__name__)

_ALLOWED = {
    JobRunState.PENDING: {JobRunState.READY, JobRunState.SKIPPED},
    JobRunState.READY: {JobRunState.RUNNING, JobRunState.SKIPPED},
    JobRunState.RUNNING: {JobRunState.SUCCEEDED, JobRunState.FAILED},
}

_CONTEXT_RESULT = {
    JobRunState.SUCCEEDED: "success",
    JobRunState.FAILED: "failure",
    JobRunState.SKIPPED: "skipped",
}


@dataclass
class _RunState:
    """Book-keeping for one run. Owned by the scheduling loop."""
    states: Dict[str, JobRunState]
    remaining: Dict[str, int]
    dependents: Dict[str, Set[str]]
    results: Dict[str, JobResult] = field(default_factory=dict)
    ready: List[str] = field(default_factory=list)
    # jobs that entered RUNNING, in order; each id appears at most once
    started: List[str] = field(default_factory=list)
    first_error: Optional[str] = None

    def move(self, job_id: str, to: JobRunState) -> None:
        current = self.states[job_id]
        if to not in _ALLOWED.get(current, set()):
            raise SchedulerStateError(f"job '{job_id}': illegal transition {current.value} -> {to.value}")
        self.states[job_id] = to


@dataclass
class ScheduleResult:
    jobs: Dict[str, JobResult]
    # first failure by completion order
    first_error: Optional[str] = None
    # job ids in the order they entered RUNNING
    started: List[str] = field(default_factory=list)


class JobGraphScheduler:
    def __init__(
        self,
        executor: StepExecutor,
        evaluator: PredicateEvaluator,
        dispatcher: EventDispatcher | None = None,
        *,
        max_workers: Optional[int] = None,
        skipped_blocks_dependents: bool = False,
    ):
        self.executor = executor
        self.evaluator = evaluator
        self.dispatcher = dispatcher or EventDispatcher()
        self.max_workers = max_workers
        self.skipped_blocks_dependents = skipped_blocks_dependents

    def run(
        self,
        workflow: WorkflowDefinition,
        context: RunContext,
        cancel: Optional[threading.Event] = None,
    ) -> ScheduleResult:
        """
        Drive every job to a terminal state.

        The workflow must already be validated (acyclic, references resolve);
        that happens once when it is registered, not here.
        """
        adj, indeg = build_graph(workflow.jobs, workflow.name)
        run = _RunState(
            states={job_id: JobRunState.PENDING for job_id in workflow.jobs},
            remaining=dict(indeg),
            dependents=adj,
        )

        # declaration order keeps dispatch order predictable
        for job_id in workflow.jobs:
            if run.remaining[job_id] == 0:
                run.move(job_id, JobRunState.READY)
                run.ready.append(job_id)

        workers = self.max_workers or max(1, len(workflow.jobs))
        in_flight: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"triggerci-{workflow.name}") as pool:
            while run.ready or in_flight:
                # dispatch everything that is currently ready
                while run.ready:
                    job_id = run.ready.pop(0)
                    if cancel is not None and cancel.is_set():
                        self._skip(workflow, context, run, job_id, "cancelled")
                        continue

                    job = workflow.jobs[job_id]
                    if not evaluate_gate(self.evaluator, job.if_, context.scope(job_id)):
                        self._skip(workflow, context, run, job_id, "condition")
                        continue

                    run.move(job_id, JobRunState.RUNNING)
                    run.started.append(job_id)
                    logger.info("[%s] job '%s' started", workflow.name, job_id)
                    self.dispatcher.job_start(workflow.name, job_id, job)
                    fut = pool.submit(self.executor.run_job, workflow.name, job_id, job, context)
                    in_flight[fut] = job_id

                if not in_flight:
                    break

                # wait for at least one completion, then settle it and re-dispatch
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    job_id = in_flight.pop(fut)
                    self._finish(workflow, context, run, job_id, fut)

        unfinished = [j for j, s in run.states.items() if not s.terminal]
        if unfinished:
            raise SchedulerStateError(f"jobs never reached a terminal state: {unfinished}")

        return ScheduleResult(
            jobs={job_id: run.results[job_id] for job_id in workflow.jobs},
            first_error=run.first_error,
            started=list(run.started),
        )

    # ----------------------------------------------------------------------
    # Transitions
    # ----------------------------------------------------------------------

    def _finish(
        self,
        workflow: WorkflowDefinition,
        context: RunContext,
        run: _RunState,
        job_id: str,
        fut: Future,
    ) -> None:
        try:
            result: JobResult = fut.result()
        except Exception as e:
            # run_job reports step failures in its result; anything raised
            # here is unexpected, but it still only fails this one job
            logger.exception("[%s] job '%s' crashed", workflow.name, job_id)
            result = JobResult(job_id=job_id, state=JobRunState.FAILED, error=f"{type(e).__name__}: {e}")

        if result.state not in (JobRunState.SUCCEEDED, JobRunState.FAILED):
            result.state = JobRunState.FAILED
            result.error = result.error or "job ended without a result"

        run.move(job_id, result.state)
        run.results[job_id] = result
        if result.state is JobRunState.FAILED and run.first_error is None:
            run.first_error = result.error

        context.record_job(job_id, _CONTEXT_RESULT[result.state], result.outputs)
        logger.info("[%s] job '%s' %s", workflow.name, job_id, result.state.value)
        self.dispatcher.job_complete(workflow.name, job_id, result)
        self._release(workflow, context, run, job_id)

    def _skip(
        self,
        workflow: WorkflowDefinition,
        context: RunContext,
        run: _RunState,
        job_id: str,
        reason: str,
    ) -> None:
        run.move(job_id, JobRunState.SKIPPED)
        result = JobResult(job_id=job_id, state=JobRunState.SKIPPED, reason=reason)
        run.results[job_id] = result

        context.record_job(job_id, "skipped")
        logger.info("[%s] job '%s' skipped (%s)", workflow.name, job_id, reason)
        self.dispatcher.job_skipped(workflow.name, job_id, reason)
        self.dispatcher.job_complete(workflow.name, job_id, result)
        self._release(workflow, context, run, job_id)

    def _release(self, workflow: WorkflowDefinition, context: RunContext, run: _RunState, job_id: str) -> None:
        """`job_id` just became terminal: decrement dependents, settle the ones at zero."""
        for dependent in sorted(run.dependents.get(job_id, ())):
            run.remaining[dependent] -= 1
            if run.remaining[dependent] > 0:
                continue

            needs = workflow.jobs[dependent].needs
            prereq_states = [run.states[n] for n in needs]
            if JobRunState.FAILED in prereq_states:
                self._skip(workflow, context, run, dependent, "needs-failed")
            elif self.skipped_blocks_dependents and JobRunState.SKIPPED in prereq_states:
                self._skip(workflow, context, run, dependent, "needs-skipped")
            else:
                run.move(dependent, JobRunState.READY)
                run.ready.append(dependent)
