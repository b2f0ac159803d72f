from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor

from .errors import ValidationError
from .execution.engine import ExecutionEngine
from .execution.types import ExecutionJob
from .languages import DEFAULT_REGISTRY, LanguageRegistry
from .policy import RunnerPolicy
from .request import ExecutionRequest
from .result import ExecutionResult, build_result
from .templates import TemplateStore, parse_template_id, resolve_template
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


def _resolve_policy(policy: RunnerPolicy | None, policy_file: str | None) -> RunnerPolicy:
    """Resolve the effective policy object for a run.

    Example:
        ```python
        policy = _resolve_policy(None, "/tmp/policy.toml")
        ```
    """
    if policy is not None and policy_file is not None:
        raise ValueError("Provide either 'policy' or 'policy_file', not both")
    if policy is None and policy_file is not None:
        return RunnerPolicy.from_file(policy_file)
    if policy is None:
        return RunnerPolicy()
    return policy


def _resolve_registry(registry: LanguageRegistry | None, policy: RunnerPolicy) -> LanguageRegistry:
    """Apply policy image overrides to the given (or default) registry.

    Example:
        ```python
        registry = _resolve_registry(None, RunnerPolicy(images={"python": "sandbox-python"}))
        ```
    """
    base = registry or DEFAULT_REGISTRY
    return base.with_images(policy.images) if policy.images else base


def run_code(
    code: str,
    language: str,
    engine: ExecutionEngine,
    stdin: str | None = None,
    policy: RunnerPolicy | None = None,
    policy_file: str | None = None,
    *,
    registry: LanguageRegistry | None = None,
    workspaces: WorkspaceManager | None = None,
    timeout_seconds: float | None = None,
) -> ExecutionResult:
    """Execute source code in a fresh workspace and return a structured result.

    Unsupported languages and empty code are rejected before any workspace exists.
    The workspace is removed on every exit path.

    Example:
        ```python
        from safe_code_runner import DockerEngine, run_code
        result = run_code("print('hi')", "python", engine=DockerEngine())
        ```
    """
    resolved_policy = _resolve_policy(policy, policy_file)
    if not code or not language:
        raise ValidationError("Language and code are required.")
    profile = _resolve_registry(registry, resolved_policy).resolve(language)
    manager = workspaces or WorkspaceManager(resolved_policy.scratch_root or None)
    timeout = timeout_seconds or resolved_policy.timeout_seconds

    started = time.monotonic()
    with manager.session() as workspace:
        manager.write(workspace, profile.source_filename, code)
        outcome = engine.execute(
            ExecutionJob(
                profile=profile,
                workspace=workspace,
                stdin=stdin,
                timeout_seconds=timeout,
                memory_limit_mb=resolved_policy.memory_limit_mb,
                max_output_bytes=resolved_policy.max_output_bytes,
            )
        )
        result = build_result(
            outcome,
            language=profile.language.value,
            duration_seconds=time.monotonic() - started,
        )
    logger.info(
        "Executed %s request in %.2fs: %s",
        profile.language.value,
        result.duration_seconds,
        result.status.value,
    )
    return result


def run_template(
    template_id: int | str,
    store: TemplateStore,
    engine: ExecutionEngine,
    stdin: str | None = None,
    policy: RunnerPolicy | None = None,
    policy_file: str | None = None,
    *,
    registry: LanguageRegistry | None = None,
    workspaces: WorkspaceManager | None = None,
    timeout_seconds: float | None = None,
) -> ExecutionResult:
    """Resolve a stored template and execute it exactly like inline code.

    Example:
        ```python
        result = run_template(3, store, engine=DockerEngine(), stdin="abc")
        ```
    """
    template = resolve_template(store, parse_template_id(template_id))
    return run_code(
        template.code,
        template.language,
        engine,
        stdin=stdin,
        policy=policy,
        policy_file=policy_file,
        registry=registry,
        workspaces=workspaces,
        timeout_seconds=timeout_seconds,
    )


class CodeRunner:
    """Long-lived execution service with a bounded number of concurrent runs.

    Example:
        ```python
        with CodeRunner(DockerEngine(), template_store=store) as runner:
            result = runner.execute(ExecutionRequest(language="python", code="print(1)"))
        ```
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        *,
        policy: RunnerPolicy | None = None,
        policy_file: str | None = None,
        registry: LanguageRegistry | None = None,
        template_store: TemplateStore | None = None,
    ) -> None:
        """Resolve configuration and start the bounded worker pool.

        Example:
            ```python
            runner = CodeRunner(LocalEngine(), policy=RunnerPolicy(max_concurrency=2))
            ```
        """
        self._policy = _resolve_policy(policy, policy_file)
        self._registry = _resolve_registry(registry, self._policy)
        self._workspaces = WorkspaceManager(self._policy.scratch_root or None)
        self._engine = engine
        self._templates = template_store
        self._pool = ThreadPoolExecutor(
            max_workers=self._policy.effective_concurrency,
            thread_name_prefix="safe-code-runner",
        )

    @property
    def policy(self) -> RunnerPolicy:
        """Return the effective policy.

        Example:
            ```python
            timeout = runner.policy.timeout_seconds
            ```
        """
        return self._policy

    @property
    def registry(self) -> LanguageRegistry:
        """Return the language registry in use.

        Example:
            ```python
            profile = runner.registry.resolve("java")
            ```
        """
        return self._registry

    @property
    def workspaces(self) -> WorkspaceManager:
        """Return the workspace manager in use.

        Example:
            ```python
            root = runner.workspaces.scratch_root
            ```
        """
        return self._workspaces

    def submit(self, request: ExecutionRequest) -> Future[ExecutionResult]:
        """Validate `request` now and schedule its execution on the worker pool.

        Validation, language and template errors raise here, before any
        workspace is allocated.

        Example:
            ```python
            future = runner.submit(ExecutionRequest(language="c", code=src))
            result = future.result()
            ```
        """
        language, code = self._normalize(request)
        self._registry.resolve(language)
        return self._pool.submit(
            run_code,
            code,
            language,
            self._engine,
            stdin=request.stdin,
            policy=self._policy,
            registry=self._registry,
            workspaces=self._workspaces,
            timeout_seconds=request.timeout_seconds,
        )

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run `request` and block until its result is ready.

        Example:
            ```python
            result = runner.execute(ExecutionRequest(template_id=1))
            ```
        """
        return self.submit(request).result()

    def close(self) -> None:
        """Wait for in-flight executions and stop the worker pool.

        Example:
            ```python
            runner.close()
            ```
        """
        self._pool.shutdown(wait=True)

    def __enter__(self) -> "CodeRunner":
        """Return self for `with` usage.

        Example:
            ```python
            with CodeRunner(engine) as runner: ...
            ```
        """
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Close the runner on context exit.

        Example:
            ```python
            with CodeRunner(engine) as runner: ...
            ```
        """
        self.close()

    def _normalize(self, request: ExecutionRequest) -> tuple[str, str]:
        """Turn either request form into `(language, code)`.

        Example:
            ```python
            language, code = runner._normalize(ExecutionRequest(template_id=1))
            ```
        """
        if request.template_id is None:
            return str(request.language), str(request.code)
        if self._templates is None:
            raise ValidationError("Template execution requires a template store.")
        template = resolve_template(self._templates, request.template_id)
        return template.language, template.code
