from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import CompileError, ExecutionTimeoutError, InfrastructureError, ProgramError
from .execution.types import ExecutionOutcome

TIMEOUT_MESSAGE = "Execution timeout exceeded."


class ExecutionStatus(str, Enum):
    """Terminal state of one execution request."""

    COMPLETED = "completed"
    RUNTIME_ERROR = "runtime_error"
    COMPILE_ERROR = "compile_error"
    TIMED_OUT = "timed_out"
    INFRASTRUCTURE_ERROR = "infrastructure_error"


@dataclass(slots=True)
class ExecutionResult:
    """Structured result returned for every accepted execution request.

    Exactly one of `timed_out`, `infrastructure_error`, or `exit_code` is set.

    Example:
        ```python
        result = ExecutionResult(stdout="hi\\n", stderr="", exit_code=0, status=ExecutionStatus.COMPLETED)
        ```
    """

    stdout: str
    stderr: str
    exit_code: int | None
    status: ExecutionStatus
    timed_out: bool = False
    infrastructure_error: str | None = None
    language: str | None = None
    truncated: bool = False
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        """Return True when the program ran to completion without a reportable error.

        Example:
            ```python
            if result.ok:
                print(result.stdout)
            ```
        """
        return self.status is ExecutionStatus.COMPLETED

    def raise_for_status(self) -> "ExecutionResult":
        """Raise the matching error for a failed result, otherwise return self.

        Example:
            ```python
            stdout = result.raise_for_status().stdout
            ```
        """
        if self.status is ExecutionStatus.COMPILE_ERROR:
            raise CompileError(self.stderr)
        if self.status is ExecutionStatus.RUNTIME_ERROR:
            raise ProgramError(self.stderr or f"Program exited with code {self.exit_code}")
        if self.status is ExecutionStatus.TIMED_OUT:
            raise ExecutionTimeoutError(TIMEOUT_MESSAGE)
        if self.status is ExecutionStatus.INFRASTRUCTURE_ERROR:
            raise InfrastructureError(self.infrastructure_error or "Execution infrastructure failed")
        return self


def build_result(
    outcome: ExecutionOutcome,
    *,
    language: str | None = None,
    duration_seconds: float = 0.0,
) -> ExecutionResult:
    """Normalize an engine outcome into the public `ExecutionResult`.

    Example:
        ```python
        result = build_result(ExecutionOutcome("x\\n", "", 0, False), language="python")
        ```
    """
    common = {"language": language, "duration_seconds": duration_seconds, "truncated": outcome.truncated}
    if outcome.error is not None:
        return ExecutionResult(
            stdout="",
            stderr=outcome.stderr,
            exit_code=None,
            status=ExecutionStatus.INFRASTRUCTURE_ERROR,
            infrastructure_error=outcome.error,
            **common,
        )
    if outcome.timed_out:
        return ExecutionResult(
            stdout="",
            stderr="",
            exit_code=None,
            status=ExecutionStatus.TIMED_OUT,
            timed_out=True,
            **common,
        )

    exit_code = outcome.returncode if outcome.returncode is not None else -1
    if outcome.phase == "compile":
        status = ExecutionStatus.COMPILE_ERROR
    elif exit_code != 0:
        status = ExecutionStatus.RUNTIME_ERROR
    elif outcome.stderr_is_failure and outcome.stderr.strip():
        status = ExecutionStatus.RUNTIME_ERROR
    else:
        status = ExecutionStatus.COMPLETED
    return ExecutionResult(
        stdout=outcome.stdout,
        stderr=outcome.stderr,
        exit_code=exit_code,
        status=status,
        **common,
    )
