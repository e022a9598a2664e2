# gating.py
"""
Gate predicates for `if:` on jobs and steps.

The engine does not understand predicates itself; it hands the string to a
PredicateEvaluator. Two evaluators ship here:

ContextEvaluator (default) accepts a deliberately small vocabulary:

    true / false / always()
    event.deploy                     truthiness of a context path
    !steps.check.output              negation
    jobs.build.result == 'success'   comparison with a quoted literal
    ${{ ... }}                       optional wrapper around any of the above

ShellEvaluator runs the predicate as a command; exit code 0 means true.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional, Protocol

from .context import JobScope
from .errors import GatingEvaluationError
from .model import WorkflowDefinition
from .runners import CommandRunner

logger = logging.getLogger(__name__)

_WRAPPED = re.compile(r"^\$\{\{\s*(.*?)\s*\}\}$", re.S)
_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*(\.[A-Za-z0-9_\-]+)*$")
_COMPARE = re.compile(r"^(?P<path>\S+)\s*(?P<op>==|!=)\s*(?P<q>['\"])(?P<value>.*)(?P=q)$")


class PredicateEvaluator(Protocol):
    def evaluate(self, expression: str, scope: JobScope) -> bool:
        ...


class ContextEvaluator:
    def evaluate(self, expression: str, scope: JobScope) -> bool:
        expr = expression.strip()
        wrapped = _WRAPPED.match(expr)
        if wrapped:
            expr = wrapped.group(1)

        lowered = expr.lower()
        if lowered in ("true", "always()"):
            return True
        if lowered == "false":
            return False

        if expr.startswith("!"):
            return not self.evaluate(expr[1:], scope)

        cmp = _COMPARE.match(expr)
        if cmp:
            if not _PATH.match(cmp.group("path")):
                raise GatingEvaluationError(expression, f"not a context path: {cmp.group('path')!r}")
            value = scope.get(cmp.group("path"))
            equal = ("" if value is None else str(value)) == cmp.group("value")
            return equal if cmp.group("op") == "==" else not equal

        if _PATH.match(expr):
            return bool(scope.get(expr))

        raise GatingEvaluationError(expression, "unsupported predicate")


def is_context_predicate(expression: str) -> bool:
    """True if `expression` is in the ContextEvaluator vocabulary (regardless of its value)."""
    expr = expression.strip()
    wrapped = _WRAPPED.match(expr)
    if wrapped:
        expr = wrapped.group(1)
    while expr.startswith("!"):
        expr = expr[1:]
    if expr.lower() in ("true", "false", "always()"):
        return True
    cmp = _COMPARE.match(expr)
    if cmp:
        return bool(_PATH.match(cmp.group("path")))
    return bool(_PATH.match(expr))


def shell_gates(definition: WorkflowDefinition) -> List[str]:
    """Gates of `definition` that only a ShellEvaluator can answer."""
    gates = []
    for job in definition.jobs.values():
        for expr in [job.if_, *(step.if_ for step in job.steps)]:
            if expr and expr.strip() and not is_context_predicate(expr) and expr not in gates:
                gates.append(expr)
    return gates


class ShellEvaluator:
    """Evaluate predicates such as `test -f package.json` through a CommandRunner."""

    def __init__(self, runner: CommandRunner, timeout: Optional[float] = 60.0):
        self.runner = runner
        self.timeout = timeout

    def evaluate(self, expression: str, scope: JobScope) -> bool:
        command = scope.interpolate(expression)
        env = scope.get("env") or {}
        result = self.runner.run(str(command), env, timeout=self.timeout)
        return result.exit_code == 0


def evaluate_gate(evaluator: PredicateEvaluator, expression: Optional[str], scope: JobScope) -> bool:
    """
    No gate means "run". Any evaluator failure is logged and counts as false,
    so the job or step is skipped rather than crashing the run.
    """
    if expression is None or not expression.strip():
        return True
    try:
        return bool(evaluator.evaluate(expression, scope))
    except GatingEvaluationError as e:
        logger.warning("[%s] gate %r is false: %s", scope.job_id, expression, e)
        return False
    except Exception as e:
        err = GatingEvaluationError(expression, f"{type(e).__name__}: {e}")
        logger.warning("[%s] gate %r is false: %s", scope.job_id, expression, err)
        return False
