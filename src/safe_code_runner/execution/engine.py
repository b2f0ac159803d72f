from __future__ import annotations

from typing import Protocol

from .types import ExecutionJob, ExecutionOutcome


class ExecutionEngine(Protocol):
    def execute(self, job: ExecutionJob) -> ExecutionOutcome:
        """Execute one job inside its workspace and return the normalized outcome.

        Example:
            ```python
            outcome = engine.execute(ExecutionJob(profile=profile, workspace=ws, stdin=None, timeout_seconds=10))
            ```
        """
        ...
