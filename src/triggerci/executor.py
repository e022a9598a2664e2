# executor.py
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Optional

from .context import JobScope, RunContext
from .errors import ActionNotFoundError, RunTimeoutError, StepExecutionError
from .events import EventDispatcher
from .gating import PredicateEvaluator, evaluate_gate
from .model import JobDefinition, JobResult, JobRunState, StepDefinition, StepResult, StepStatus
from .runners import ActionRegistry, CommandRunner, CommandTimeout, UnknownActionError

logger = logging.getLogger(__name__)

ENVIRONMENT_VAR = "TRIGGERCI_ENVIRONMENT"


def _minutes(value: Optional[float]) -> Optional[float]:
    return None if value is None else value * 60.0


class StepExecutor:
    """
    Runs the steps of one job, strictly in order.

    A failing step stops the job; the job result says FAILED and carries the
    first error. Nothing here touches other jobs: the scheduler owns job states.
    """

    def __init__(
        self,
        runner: CommandRunner,
        actions: ActionRegistry,
        evaluator: PredicateEvaluator,
        dispatcher: EventDispatcher | None = None,
        *,
        default_step_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.runner = runner
        self.actions = actions
        self.evaluator = evaluator
        self.dispatcher = dispatcher or EventDispatcher()
        self.default_step_timeout = default_step_timeout
        self.clock = clock

    # ----------------------------------------------------------------------
    # Job
    # ----------------------------------------------------------------------

    def run_job(self, workflow: str, job_id: str, job: JobDefinition, context: RunContext) -> JobResult:
        scope = context.scope(job_id)
        started = self.clock()
        job_budget = _minutes(job.timeout_minutes)
        deadline = started + job_budget if job_budget is not None else None

        result = JobResult(job_id=job_id, state=JobRunState.RUNNING)

        for step in job.steps:
            step_result = self._run_step(workflow, job_id, job, step, context, scope, deadline)
            result.steps.append(step_result)
            if step_result.status is StepStatus.FAILED:
                result.state = JobRunState.FAILED
                result.error = step_result.error
                break

        if result.state is JobRunState.RUNNING:
            result.outputs = {name: scope.interpolate(expr) for name, expr in job.outputs.items()}
            result.state = JobRunState.SUCCEEDED

        result.duration = self.clock() - started
        return result

    # ----------------------------------------------------------------------
    # Step
    # ----------------------------------------------------------------------

    def _run_step(
        self,
        workflow: str,
        job_id: str,
        job: JobDefinition,
        step: StepDefinition,
        context: RunContext,
        scope: JobScope,
        deadline: Optional[float],
    ) -> StepResult:
        if not evaluate_gate(self.evaluator, step.if_, scope):
            logger.info("[%s] step '%s' skipped (condition)", job_id, step.name)
            skipped = StepResult(name=step.name, id=step.id, status=StepStatus.SKIPPED)
            if step.id:
                context.record_step(job_id, step.id, None, outcome="skipped")
            self.dispatcher.step_complete(workflow, job_id, step, skipped)
            return skipped

        logger.info("[%s] step '%s'", job_id, step.name)
        self.dispatcher.step_start(workflow, job_id, step)
        t0 = self.clock()
        try:
            output = self._dispatch(job_id, job, step, scope, deadline)
        except StepExecutionError as e:
            logger.error("%s", e)
            failed = StepResult(
                name=step.name, id=step.id, status=StepStatus.FAILED,
                error=str(e), duration=self.clock() - t0,
            )
            if step.id:
                context.record_step(job_id, step.id, None, outcome="failure")
            self.dispatcher.step_error(workflow, job_id, step, e)
            return failed

        done = StepResult(
            name=step.name, id=step.id, status=StepStatus.SUCCEEDED,
            output=output, duration=self.clock() - t0,
        )
        if step.id:
            context.record_step(job_id, step.id, output)
        self.dispatcher.step_complete(workflow, job_id, step, done)
        return done

    def _budget(self, job_id: str, step: StepDefinition, deadline: Optional[float]) -> Optional[float]:
        budget = _minutes(step.timeout_minutes)
        if budget is None:
            budget = self.default_step_timeout
        if deadline is not None:
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise RunTimeoutError(job=job_id, step=step.name, message="job exceeded its time budget")
            budget = remaining if budget is None else min(budget, remaining)
        return budget

    def _step_env(self, job: JobDefinition, step: StepDefinition, scope: JobScope) -> Dict[str, str]:
        env = {k: str(v) for k, v in (scope.get("env") or {}).items()}
        if job.environment:
            env[ENVIRONMENT_VAR] = job.environment
        for key, value in scope.interpolate(step.env).items():
            env[key] = "" if value is None else str(value)
        return env

    def _dispatch(
        self,
        job_id: str,
        job: JobDefinition,
        step: StepDefinition,
        scope: JobScope,
        deadline: Optional[float],
    ) -> Any:
        budget = self._budget(job_id, step, deadline)

        if step.run is not None:
            return self._run_command(job_id, job, step, scope, budget)
        return self._run_action(job_id, step, scope, budget)

    def _run_command(
        self,
        job_id: str,
        job: JobDefinition,
        step: StepDefinition,
        scope: JobScope,
        budget: Optional[float],
    ) -> str:
        resolved = scope.interpolate(step.run)
        command = "" if resolved is None else str(resolved)
        env = self._step_env(job, step, scope)
        try:
            res = self.runner.run(command, env, timeout=budget)
        except CommandTimeout as e:
            raise RunTimeoutError(
                job=job_id, step=step.name, message=str(e), stdout=e.stdout, stderr=e.stderr,
            ) from e
        except Exception as e:
            raise StepExecutionError(job=job_id, step=step.name, message=f"{type(e).__name__}: {e}") from e

        if res.exit_code != 0:
            raise StepExecutionError(
                job=job_id,
                step=step.name,
                message=f"command failed: {command}",
                exit_code=res.exit_code,
                stdout=res.stdout,
                stderr=res.stderr,
            )
        return res.stdout.strip()

    def _run_action(self, job_id: str, step: StepDefinition, scope: JobScope, budget: Optional[float]) -> Any:
        name = step.uses or ""
        inputs = scope.interpolate(step.with_)
        try:
            if budget is None:
                return self.actions.invoke(name, inputs)
            return self._invoke_with_budget(job_id, step, name, inputs, budget)
        except UnknownActionError as e:
            raise ActionNotFoundError(job=job_id, step=step.name, message=str(e)) from e
        except StepExecutionError:
            raise
        except Exception as e:
            raise StepExecutionError(job=job_id, step=step.name, message=f"{type(e).__name__}: {e}") from e

    def _invoke_with_budget(
        self, job_id: str, step: StepDefinition, name: str, inputs: Dict[str, Any], budget: float,
    ) -> Any:
        # the action is not pre-empted: on timeout it keeps running in the
        # helper thread and its result is discarded
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="triggerci-action")
        try:
            future = pool.submit(self.actions.invoke, name, inputs)
            done, _ = wait([future], timeout=budget)
            if not done:
                raise RunTimeoutError(
                    job=job_id, step=step.name, message=f"action {name} timed out after {budget:g}s",
                )
            # an exception raised by the action itself, TimeoutError included
            return future.result()
        finally:
            pool.shutdown(wait=False)
