# context.py
"""
RunContext: the per-run data bag used for interpolation and gating.

Layout::

    event                    payload of the triggering event
    env                      process environment (plus configured overlay)
    run                      {"id", "workflow", "event"}
    jobs.<job>.outputs       outputs of finished jobs
    jobs.<job>.result        "success" | "failure" | "skipped"
    steps.<step>.output      results of earlier steps, scoped to the current job
    steps.<step>.outcome

One instance per run. Jobs of the same run share it from several worker
threads, so every read and write goes through one lock.
"""
from __future__ import annotations

import copy
import re
import threading
import uuid
from typing import Any, Dict, Mapping, Optional

from .model import Event

_EXPR_RE = re.compile(r"\$\{\{\s*(.+?)\s*\}\}")

_MISSING = object()


def deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a new dict: mappings merge recursively, anything else is replaced."""
    result: Dict[str, Any] = copy.deepcopy(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _walk(obj: Any, parts: list[str]) -> Any:
    for part in parts:
        if isinstance(obj, Mapping):
            if part not in obj:
                return _MISSING
            obj = obj[part]
        elif isinstance(obj, (list, tuple)) and part.isdigit():
            idx = int(part)
            if idx >= len(obj):
                return _MISSING
            obj = obj[idx]
        else:
            return _MISSING
    return obj


class RunContext:
    def __init__(
        self,
        event: Event,
        env: Optional[Mapping[str, str]] = None,
        *,
        workflow: str = "",
        run_id: str | None = None,
    ):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = {
            "event": copy.deepcopy(dict(event.payload)),
            "env": dict(env or {}),
            "run": {"id": self.run_id, "workflow": workflow, "event": event.name},
            "jobs": {},
            # job_id -> step_id -> {"output", "outcome"}
            "steps": {},
        }

    # -----------------------------
    # Reads
    # -----------------------------
    def get(self, path: str, default: Any = None, *, job: str | None = None) -> Any:
        """
        Dotted lookup, e.g. `event.ref`, `jobs.build.outputs.version`.

        `steps.*` only resolves when `job` is given: steps are visible to
        later steps of the same job only.
        """
        parts = [p for p in path.strip().split(".") if p]
        if not parts:
            return default

        with self._lock:
            if parts[0] == "steps":
                if job is None:
                    return default
                value = _walk(self._data["steps"].get(job, {}), parts[1:])
            else:
                value = _walk(self._data, parts)
            if value is _MISSING:
                return default
            return copy.deepcopy(value)

    def has(self, path: str, *, job: str | None = None) -> bool:
        return self.get(path, _MISSING, job=job) is not _MISSING

    def scope(self, job_id: str) -> "JobScope":
        return JobScope(self, job_id)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._data)

    # -----------------------------
    # Writes (scheduler / executor only)
    # -----------------------------
    def merge(self, partial: Mapping[str, Any]) -> None:
        with self._lock:
            self._data = deep_merge(self._data, partial)

    def record_step(self, job_id: str, step_id: str, output: Any, outcome: str = "success") -> None:
        with self._lock:
            steps = self._data["steps"].setdefault(job_id, {})
            # a later step may reuse an id; the newest value wins
            steps[step_id] = {"output": copy.deepcopy(output), "outcome": outcome}

    def record_job(self, job_id: str, result: str, outputs: Optional[Mapping[str, Any]] = None) -> None:
        with self._lock:
            self._data["jobs"][job_id] = {
                "result": result,
                "outputs": copy.deepcopy(dict(outputs or {})),
            }

    # -----------------------------
    # Interpolation
    # -----------------------------
    def interpolate(self, value: Any, *, job: str | None = None) -> Any:
        """
        Replace `${{ path }}` tokens in strings, recursing into dicts and lists.

        A string that is exactly one token keeps the resolved value's type
        (None when missing). Inside a larger string, missing values become "".
        """
        if isinstance(value, str):
            return self._interpolate_string(value, job)
        if isinstance(value, Mapping):
            return {k: self.interpolate(v, job=job) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.interpolate(v, job=job) for v in value]
        return value

    def _interpolate_string(self, value: str, job: str | None) -> Any:
        whole = _EXPR_RE.fullmatch(value.strip())
        if whole:
            return self.get(whole.group(1), job=job)

        def _replace(m: re.Match) -> str:
            resolved = self.get(m.group(1), job=job)
            return "" if resolved is None else str(resolved)

        return _EXPR_RE.sub(_replace, value)


class JobScope:
    """Read-only view of a RunContext as seen from inside one job."""

    def __init__(self, context: RunContext, job_id: str):
        self.context = context
        self.job_id = job_id

    def get(self, path: str, default: Any = None) -> Any:
        return self.context.get(path, default, job=self.job_id)

    def has(self, path: str) -> bool:
        return self.context.has(path, job=self.job_id)

    def interpolate(self, value: Any) -> Any:
        return self.context.interpolate(value, job=self.job_id)
