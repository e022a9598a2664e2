# settings.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """
    Engine configuration, read from TRIGGERCI_* environment variables.

    CLI flags override these; code can pass an instance explicitly.
    """

    model_config = SettingsConfigDict(env_prefix="TRIGGERCI_", extra="ignore")

    workflows_dir: Path = Field(default=Path(".workflows"), description="Directory of workflow documents.")
    working_dir: Path = Field(default=Path("."), description="Where `run:` commands execute.")
    shell: Optional[str] = Field(default=None, description="Shell for `run:` commands (default: /bin/sh).")

    max_workers: Optional[int] = Field(
        default=None,
        ge=1,
        description="Cap on concurrently running jobs per workflow run (default: no cap).",
    )
    skipped_blocks_dependents: bool = Field(
        default=False,
        description="If true, a job whose prerequisite was skipped is skipped as well.",
    )
    default_step_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Seconds a step may run when neither step nor job sets timeout-minutes.",
    )
    shell_gates: bool = Field(
        default=False,
        description="Evaluate `if:` predicates as shell commands instead of context predicates.",
    )

    env: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra variables layered over the process environment for every run.",
    )

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
