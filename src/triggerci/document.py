# document.py
"""
Workflow documents: YAML text <-> WorkflowDefinition.

One document describes one workflow::

    name: ci
    on: [push, pull_request]
    jobs:
      build:
        name: Build
        steps:
          - name: Compile
            id: compile
            run: make
      test:
        needs: [build]
        if: "true"
        steps:
          - uses: actions/checkout@v3
            with: {fetch-depth: 1}

The raw mapping is validated with pydantic, then converted to the frozen
dataclasses in `model`. Everything wrong with a document surfaces as a
DefinitionError, including cycles and dangling `needs`, so a definition that
parses is always safe to schedule.
"""
from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator, model_validator

from .dag import validate_graph
from .errors import DefinitionError
from .model import JobDefinition, StepDefinition, Trigger, WorkflowDefinition


# ---------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------

def _gate_to_str(value: Any) -> Any:
    # `if: false` in YAML arrives as a bool
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


Gate = Annotated[Optional[str], BeforeValidator(_gate_to_str)]


class StepDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    id: Optional[str] = None
    run: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, Any] = Field(default_factory=dict)
    if_: Gate = Field(default=None, alias="if")
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)

    @field_validator("with_", "env", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _run_xor_uses(self) -> "StepDocument":
        if (self.run is None) == (self.uses is None):
            raise ValueError("step must define exactly one of 'run' or 'uses'")
        return self


class JobDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    needs: List[str] = Field(default_factory=list)
    if_: Gate = Field(default=None, alias="if")
    environment: Optional[str] = None
    outputs: Dict[str, Any] = Field(default_factory=dict)
    timeout_minutes: Optional[float] = Field(default=None, alias="timeout-minutes", gt=0)
    steps: List[StepDocument] = Field(min_length=1)

    @field_validator("needs", mode="before")
    @classmethod
    def _needs_as_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class WorkflowDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    on: Union[str, List[str], Dict[str, Any]]
    description: str = ""
    jobs: Dict[str, JobDocument] = Field(min_length=1)


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------

def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def _step_from_doc(doc: StepDocument) -> StepDefinition:
    return StepDefinition(
        name=doc.name or doc.id or doc.run or doc.uses or "",
        run=doc.run,
        uses=doc.uses,
        with_=dict(doc.with_),
        env={k: str(v) for k, v in doc.env.items()},
        if_=doc.if_,
        id=doc.id,
        timeout_minutes=doc.timeout_minutes,
    )


def _trigger_from_doc(on: Union[str, List[str], Dict[str, Any]]) -> Trigger:
    if isinstance(on, list):
        return tuple(on)
    return on


def parse_definition(data: Mapping[str, Any], source: str | None = None) -> WorkflowDefinition:
    """Validate a raw mapping (as loaded from YAML) and build a WorkflowDefinition."""
    if not isinstance(data, Mapping):
        raise DefinitionError(None, "document root must be a mapping", source)

    data = dict(data)
    # YAML 1.1 reads a bare `on:` key as the boolean True
    if True in data and "on" not in data:
        data["on"] = data.pop(True)

    name = data.get("name") if isinstance(data.get("name"), str) else None
    try:
        doc = WorkflowDocument.model_validate(data)
    except ValidationError as exc:
        raise DefinitionError(name, _format_validation_error(exc), source) from exc

    jobs: Dict[str, JobDefinition] = {}
    for job_id, job_doc in doc.jobs.items():
        seen_ids = set()
        for step in job_doc.steps:
            if step.id is None:
                continue
            if step.id in seen_ids:
                raise DefinitionError(doc.name, f"duplicate step id '{step.id}' in job '{job_id}'", source)
            seen_ids.add(step.id)

        jobs[job_id] = JobDefinition(
            name=job_doc.name or job_id,
            steps=tuple(_step_from_doc(s) for s in job_doc.steps),
            needs=tuple(dict.fromkeys(job_doc.needs)),
            if_=job_doc.if_,
            environment=job_doc.environment,
            outputs={k: str(v) for k, v in job_doc.outputs.items()},
            timeout_minutes=job_doc.timeout_minutes,
        )

    try:
        validate_graph(jobs, doc.name)
    except DefinitionError as exc:
        exc.source = source
        raise

    return WorkflowDefinition(
        name=doc.name,
        on=_trigger_from_doc(doc.on),
        jobs=jobs,
        description=doc.description,
    )


def parse_yaml(text: str, source: str | None = None) -> WorkflowDefinition:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise DefinitionError(None, f"invalid YAML: {exc}", source) from exc
    if data is None:
        raise DefinitionError(None, "document is empty", source)
    return parse_definition(data, source)


def load_document(path: str | Path) -> WorkflowDefinition:
    path = Path(path)
    return parse_yaml(path.read_text(encoding="utf-8"), source=str(path))


# ---------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------

def _plain(value: Any) -> Any:
    """Tuples -> lists, recursively, so yaml.safe_dump accepts the value."""
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def step_to_dict(step: StepDefinition) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": step.name}
    if step.id is not None:
        out["id"] = step.id
    if step.run is not None:
        out["run"] = step.run
    if step.uses is not None:
        out["uses"] = step.uses
    if step.with_:
        out["with"] = _plain(step.with_)
    if step.env:
        out["env"] = dict(step.env)
    if step.if_ is not None:
        out["if"] = step.if_
    if step.timeout_minutes is not None:
        out["timeout-minutes"] = step.timeout_minutes
    return out


def job_to_dict(job: JobDefinition) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": job.name}
    if job.needs:
        out["needs"] = list(job.needs)
    if job.if_ is not None:
        out["if"] = job.if_
    if job.environment is not None:
        out["environment"] = job.environment
    if job.outputs:
        out["outputs"] = dict(job.outputs)
    if job.timeout_minutes is not None:
        out["timeout-minutes"] = job.timeout_minutes
    out["steps"] = [step_to_dict(s) for s in job.steps]
    return out


def definition_to_dict(definition: WorkflowDefinition) -> Dict[str, Any]:
    out: Dict[str, Any] = {"name": definition.name}
    if definition.description:
        out["description"] = definition.description
    out["on"] = _plain(definition.on)
    out["jobs"] = {job_id: job_to_dict(job) for job_id, job in definition.jobs.items()}
    return out


def dump_document(definition: WorkflowDefinition) -> str:
    return yaml.safe_dump(definition_to_dict(definition), sort_keys=False, allow_unicode=True)
