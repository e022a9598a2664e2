# runners.py
"""
Outward-facing collaborators: how commands and actions actually execute.

The engine never shells out or imports action code itself; it calls a
CommandRunner for `run:` steps and an ActionRegistry for `uses:` steps.
"""
from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

# keep captured output bounded
OUTPUT_TAIL = 4000


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    exit_code: int
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandTimeout(Exception):
    """Raised by a CommandRunner when the command outlives its budget."""

    def __init__(self, command: str, timeout: float, stdout: str = "", stderr: str = ""):
        self.command = command
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"command timed out after {timeout:g}s: {command}")


class CommandRunner(Protocol):
    def run(self, command: str, env: Mapping[str, str], timeout: Optional[float] = None) -> CommandResult:
        ...


def _text(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class SubprocessCommandRunner:
    """
    Run commands through the system shell.

    `env` is layered over the current process environment, so a step only
    needs to declare the variables it adds or overrides.
    """

    def __init__(self, cwd: str | Path = ".", shell: str | None = None, inherit_env: bool = True):
        self.cwd = Path(cwd)
        self.shell = shell
        self.inherit_env = inherit_env

    def run(self, command: str, env: Mapping[str, str], timeout: Optional[float] = None) -> CommandResult:
        full_env = os.environ.copy() if self.inherit_env else {}
        full_env.update({k: str(v) for k, v in env.items()})

        cwd = self.cwd.resolve()
        if not cwd.exists():
            raise FileNotFoundError(f"working directory not found: {cwd}")

        logger.debug("Executing command: %s", command)
        try:
            proc = subprocess.run(
                command,
                shell=True,
                executable=self.shell,
                cwd=str(cwd),
                env=full_env,
                text=True,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeout(command, timeout or 0.0, _text(e.stdout), _text(e.stderr)) from e

        return CommandResult(
            stdout=proc.stdout[-OUTPUT_TAIL:],
            exit_code=proc.returncode,
            stderr=proc.stderr[-OUTPUT_TAIL:],
        )


# ----------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------

Action = Callable[[Dict[str, Any]], Any]


class UnknownActionError(LookupError):
    pass


class ActionRegistry:
    """
    Named actions invoked by `uses:` steps.

    `uses: actions/checkout@v3` resolves to an action registered as
    "actions/checkout@v3" if there is one, otherwise to "actions/checkout".
    """

    def __init__(self, actions: Optional[Mapping[str, Action]] = None):
        self._lock = threading.Lock()
        self._actions: Dict[str, Action] = dict(actions or {})

    def register(self, name: str, fn: Action | None = None):
        """Register `fn` under `name`. Usable as a decorator: @registry.register("x")."""
        if fn is None:
            def _decorator(f: Action) -> Action:
                self.register(name, f)
                return f
            return _decorator

        with self._lock:
            self._actions[name] = fn
        return fn

    def unregister(self, name: str) -> None:
        with self._lock:
            self._actions.pop(name, None)

    def resolve(self, name: str) -> Action:
        with self._lock:
            if name in self._actions:
                return self._actions[name]
            base = name.split("@", 1)[0]
            if base in self._actions:
                return self._actions[base]
        raise UnknownActionError(f"unknown action: {name}")

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._actions)

    def __contains__(self, name: str) -> bool:
        try:
            self.resolve(name)
        except UnknownActionError:
            return False
        return True

    def invoke(self, name: str, inputs: Mapping[str, Any]) -> Any:
        fn = self.resolve(name)
        logger.debug("Executing action: %s with inputs %s", name, dict(inputs))
        return fn(dict(inputs))
