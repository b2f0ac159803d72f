from __future__ import annotations

from .engine import ExecutionEngine
from .types import ExecutionJob, ExecutionOutcome


class StrategyEngine:
    """Route each job by profile: containerized when it names an image, native otherwise.

    Example:
        ```python
        engine = StrategyEngine(containerized=DockerEngine(), native=LocalEngine())
        ```
    """

    def __init__(self, *, containerized: ExecutionEngine, native: ExecutionEngine) -> None:
        """Hold one engine per execution strategy.

        Example:
            ```python
            engine = StrategyEngine(containerized=docker, native=local)
            ```
        """
        self._containerized = containerized
        self._native = native

    def execute(self, job: ExecutionJob) -> ExecutionOutcome:
        """Dispatch `job` to the strategy its profile selects.

        Example:
            ```python
            outcome = engine.execute(job)
            ```
        """
        if job.profile.isolation_image:
            return self._containerized.execute(job)
        return self._native.execute(job)
