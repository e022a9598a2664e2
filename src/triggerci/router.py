# router.py
from __future__ import annotations

from collections.abc import Mapping
from typing import Iterable, List

from .model import Trigger, WorkflowDefinition


def matches(on: Trigger, event_name: str) -> bool:
    """
    Does a trigger declaration fire on `event_name`?

      "push"                  -> only "push"
      ["push", "pull_request"] -> either
      {"push": {...}}         -> "push" (values are reserved, ignored for now)
    """
    if isinstance(on, str):
        return on == event_name
    if isinstance(on, Mapping):
        return event_name in on
    if isinstance(on, (list, tuple)):
        return event_name in on
    return False


def route(event_name: str, workflows: Iterable[WorkflowDefinition]) -> List[WorkflowDefinition]:
    """Workflows triggered by `event_name`, in input order. Empty is not an error."""
    return [wf for wf in workflows if matches(wf.on, event_name)]
