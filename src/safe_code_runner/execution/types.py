from __future__ import annotations

from dataclasses import dataclass

from ..languages import LanguageProfile
from ..workspace import Workspace


@dataclass(slots=True)
class ExecutionJob:
    """Fully resolved unit of work handed to an execution engine.

    Example:
        ```python
        job = ExecutionJob(profile=profile, workspace=ws, stdin="abc", timeout_seconds=10)
        ```
    """

    profile: LanguageProfile
    workspace: Workspace
    stdin: str | None
    timeout_seconds: float
    memory_limit_mb: int = 256
    max_output_bytes: int = 1024 * 1024


@dataclass(slots=True)
class ExecutionOutcome:
    """Normalized response returned by an execution engine.

    `phase` is "compile" when the build step decided the outcome, otherwise "run".
    `returncode` is None when the process never produced an exit status of its own.

    Example:
        ```python
        out = ExecutionOutcome(stdout="hi\\n", stderr="", returncode=0, timed_out=False)
        ```
    """

    stdout: str
    stderr: str
    returncode: int | None
    timed_out: bool
    error: str | None = None
    phase: str = "run"
    truncated: bool = False
    stderr_is_failure: bool = False
