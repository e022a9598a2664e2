# dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .model import JobDefinition, StepDefinition, Trigger, WorkflowDefinition


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    id: str | None = None,
    env: Optional[Dict[str, str]] = None,
    if_: str | None = None,
    timeout_minutes: float | None = None,
) -> StepDefinition:
    """Create a command step."""
    return StepDefinition(
        name=name,
        run=cmd,
        id=id,
        env=dict(env or {}),
        if_=if_,
        timeout_minutes=timeout_minutes,
    )


def uses(
    name: str,
    action: str,
    *,
    with_: Optional[Mapping[str, Any]] = None,
    id: str | None = None,
    env: Optional[Dict[str, str]] = None,
    if_: str | None = None,
    timeout_minutes: float | None = None,
) -> StepDefinition:
    """Create an action step."""
    return StepDefinition(
        name=name,
        uses=action,
        with_=dict(with_ or {}),
        id=id,
        env=dict(env or {}),
        if_=if_,
        timeout_minutes=timeout_minutes,
    )


# ---------------------------------------------------------------------
# Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepDefinition,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[StepDefinition]] = None,
    needs: Union[str, Iterable[str], None] = None,
    if_: str | None = None,
    environment: str | None = None,
    outputs: Optional[Dict[str, str]] = None,
    timeout_minutes: float | None = None,
) -> JobDefinition:
    steps_final: List[StepDefinition] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if isinstance(needs, str):
        needs = [needs]

    return JobDefinition(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(dict.fromkeys(needs or ())),
        if_=if_,
        environment=environment,
        outputs=dict(outputs or {}),
        timeout_minutes=timeout_minutes,
    )


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def workflow(
    name: str,
    on: Union[Trigger, List[str]],
    jobs: Optional[Mapping[str, JobDefinition]] = None,
    *,
    description: str = "",
    **more_jobs: JobDefinition,
) -> WorkflowDefinition:
    """
    Build a WorkflowDefinition in code.

        workflow(
            "ci", on="push",
            build=job("Build", sh("Compile", "make")),
            test=job("Test", sh("Test", "make test"), needs="build"),
        )

    Job ids that are not valid Python identifiers go in `jobs={...}`.
    Validation (cycles, dangling needs) happens when the definition is
    registered with a store or engine.
    """
    all_jobs: Dict[str, JobDefinition] = dict(jobs or {})
    all_jobs.update(more_jobs)
    trigger: Trigger = tuple(on) if isinstance(on, list) else on
    return WorkflowDefinition(name=name, on=trigger, jobs=all_jobs, description=description)
