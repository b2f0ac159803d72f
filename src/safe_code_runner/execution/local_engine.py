from __future__ import annotations

import logging
import time
from typing import Mapping

from ..errors import InfrastructureError
from .config import sanitized_env
from .process import ProcessOutcome, run_process
from .types import ExecutionJob, ExecutionOutcome

logger = logging.getLogger(__name__)


class LocalEngine:
    """Compile and run code with the host toolchain inside the job workspace.

    One deadline covers both the compile step and the run step.

    Example:
        ```python
        engine = LocalEngine()
        ```
    """

    stderr_is_failure = False

    def __init__(self, *, env: Mapping[str, str] | None = None) -> None:
        """Initialize the engine with the environment passed to child processes.

        Example:
            ```python
            engine = LocalEngine(env={"PATH": "/usr/bin:/bin"})
            ```
        """
        self._env = dict(env) if env is not None else sanitized_env()

    def execute(self, job: ExecutionJob) -> ExecutionOutcome:
        """Compile (when required) and run one job on the host.

        Example:
            ```python
            outcome = engine.execute(job)
            ```
        """
        deadline = time.monotonic() + job.timeout_seconds
        try:
            compile_argv = job.profile.compile_argv()
            if compile_argv is not None:
                compiled = self._run(compile_argv, job, stdin=None, deadline=deadline)
                if compiled.timed_out:
                    return self._outcome(compiled, job, phase="compile")
                if compiled.returncode != 0 or compiled.stderr.strip():
                    logger.info("Compile step failed for %s (exit %s)", job.profile.language.value, compiled.returncode)
                    return self._outcome(compiled, job, phase="compile")
            ran = self._run(job.profile.run_argv(), job, stdin=job.stdin, deadline=deadline)
        except InfrastructureError as exc:
            return ExecutionOutcome("", "", None, False, str(exc), stderr_is_failure=self.stderr_is_failure)
        return self._outcome(ran, job, phase="run")

    def _run(
        self,
        argv: list[str],
        job: ExecutionJob,
        *,
        stdin: str | None,
        deadline: float,
    ) -> ProcessOutcome:
        """Run one step with whatever time is left before the shared deadline.

        Example:
            ```python
            step = engine._run(["javac", "Main.java"], job, stdin=None, deadline=time.monotonic() + 5)
            ```
        """
        return run_process(
            argv,
            cwd=job.workspace.root,
            stdin=stdin,
            timeout_seconds=max(0.0, deadline - time.monotonic()),
            max_output_bytes=job.max_output_bytes,
            env=self._env,
        )

    def _outcome(self, step: ProcessOutcome, job: ExecutionJob, *, phase: str) -> ExecutionOutcome:
        """Translate a process step into an engine outcome.

        Example:
            ```python
            outcome = engine._outcome(step, job, phase="run")
            ```
        """
        if step.timed_out:
            logger.warning(
                "%s %s step timed out after %ss", job.profile.language.value, phase, job.timeout_seconds
            )
        return ExecutionOutcome(
            stdout=step.stdout,
            stderr=step.stderr,
            returncode=step.returncode,
            timed_out=step.timed_out,
            phase=phase,
            truncated=step.truncated,
            stderr_is_failure=self.stderr_is_failure,
        )
