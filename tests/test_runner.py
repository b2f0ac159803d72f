from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from safe_code_runner import (
    CodeRunner,
    CodeTemplate,
    ExecutionRequest,
    ExecutionStatus,
    InMemoryTemplateStore,
    RunnerPolicy,
    WorkspaceManager,
    run_code,
    run_template,
)
from safe_code_runner.errors import TemplateNotFoundError, UnsupportedLanguageError, ValidationError
from safe_code_runner.execution.types import ExecutionJob, ExecutionOutcome


class _RecordingEngine:
    """Echo the source file back as stdout and remember every job."""

    def __init__(self, delay: float = 0.0) -> None:
        self.jobs: list[ExecutionJob] = []
        self.seen_sources: list[str] = []
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def execute(self, job: ExecutionJob) -> ExecutionOutcome:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.jobs.append(job)
        try:
            source = job.workspace.path_for(job.profile.source_filename).read_text(encoding="utf-8")
            self.seen_sources.append(source)
            if self.delay:
                time.sleep(self.delay)
            return ExecutionOutcome(source + (job.stdin or ""), "", 0, False)
        finally:
            with self._lock:
                self.active -= 1


def _policy(tmp_path: Path, **overrides: object) -> RunnerPolicy:
    return RunnerPolicy(scratch_root=str(tmp_path / "scratch"), **overrides)


def test_run_code_writes_source_and_cleans_workspace(tmp_path: Path) -> None:
    engine = _RecordingEngine()
    policy = _policy(tmp_path, timeout_seconds=3)

    result = run_code("print('hi')", "Python", engine, stdin="abc", policy=policy)

    assert result.status is ExecutionStatus.COMPLETED
    assert result.stdout == "print('hi')abc"
    assert result.language == "python"
    job = engine.jobs[0]
    assert job.profile.source_filename == "code.py"
    assert job.timeout_seconds == 3
    assert job.stdin == "abc"
    assert not job.workspace.root.exists()
    assert list((tmp_path / "scratch").iterdir()) == []


def test_java_source_uses_fixed_entry_file(tmp_path: Path) -> None:
    engine = _RecordingEngine()
    run_code("public class Main {}", "java", engine, policy=_policy(tmp_path))
    assert engine.jobs[0].profile.source_filename == "Main.java"
    assert engine.seen_sources == ["public class Main {}"]


def test_unsupported_language_creates_no_workspace(tmp_path: Path) -> None:
    engine = _RecordingEngine()
    with pytest.raises(UnsupportedLanguageError, match="Unsupported language: brainfuck"):
        run_code("+[.]", "brainfuck", engine, policy=_policy(tmp_path))
    assert engine.jobs == []
    assert not (tmp_path / "scratch").exists()


def test_empty_code_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="Language and code are required"):
        run_code("", "python", _RecordingEngine(), policy=_policy(tmp_path))


def test_workspace_removed_when_engine_raises(tmp_path: Path) -> None:
    class _Exploding:
        def execute(self, job: ExecutionJob) -> ExecutionOutcome:
            self.root = job.workspace.root
            raise RuntimeError("engine bug")

    engine = _Exploding()
    with pytest.raises(RuntimeError, match="engine bug"):
        run_code("print(1)", "python", engine, policy=_policy(tmp_path))
    assert not engine.root.exists()


def test_policy_and_policy_file_are_exclusive(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="either 'policy' or 'policy_file'"):
        run_code("print(1)", "python", _RecordingEngine(), policy=RunnerPolicy(), policy_file="x.toml")


def test_template_runs_like_inline_code(tmp_path: Path) -> None:
    store = InMemoryTemplateStore([CodeTemplate(1, "python", "print(input())")])
    direct_engine = _RecordingEngine()
    template_engine = _RecordingEngine()
    manager = WorkspaceManager(tmp_path / "scratch")

    direct = run_code("print(input())", "python", direct_engine, stdin="abc", workspaces=manager)
    stored = run_template("1", store, template_engine, stdin="abc", workspaces=manager)

    assert stored.stdout == direct.stdout
    assert stored.status is direct.status
    assert template_engine.jobs[0].profile == direct_engine.jobs[0].profile


def test_missing_template_fails_before_workspace(tmp_path: Path) -> None:
    engine = _RecordingEngine()
    with pytest.raises(TemplateNotFoundError):
        run_template(5, InMemoryTemplateStore(), engine, policy=_policy(tmp_path))
    assert engine.jobs == []
    assert not (tmp_path / "scratch").exists()


def test_policy_file_sets_limits_and_images(tmp_path: Path) -> None:
    config = tmp_path / "policy.toml"
    config.write_text(
        "[policy]\n"
        "timeout_seconds = 2.5\n"
        "memory_limit_mb = 128\n"
        "max_output_kb = 8\n"
        "max_concurrency = 3\n"
        f"scratch_root = {str(tmp_path / 'scratch')!r}\n"
        "\n"
        "[images]\n"
        "python = \"sandbox-python:latest\"\n",
        encoding="utf-8",
    )

    engine = _RecordingEngine()
    with CodeRunner(engine, policy_file=str(config)) as runner:
        assert runner.policy.effective_concurrency == 3
        assert runner.registry.resolve("python").isolation_image == "sandbox-python:latest"
        assert runner.registry.resolve("c").isolation_image == "gcc:14"
        runner.execute(ExecutionRequest(language="python", code="print(1)"))

    job = engine.jobs[0]
    assert job.timeout_seconds == 2.5
    assert job.memory_limit_mb == 128
    assert job.max_output_bytes == 8 * 1024
    assert job.workspace.root.parent == tmp_path / "scratch"


def test_policy_rejects_invalid_limits() -> None:
    with pytest.raises(ValueError, match="timeout_seconds must be positive"):
        RunnerPolicy(timeout_seconds=0)
    with pytest.raises(ValueError, match="max_concurrency"):
        RunnerPolicy(max_concurrency=-1)


def test_request_timeout_overrides_policy(tmp_path: Path) -> None:
    engine = _RecordingEngine()
    with CodeRunner(engine, policy=_policy(tmp_path, timeout_seconds=10)) as runner:
        runner.execute(ExecutionRequest(language="js", code="console.log(1)", timeout_seconds=1.5))
    assert engine.jobs[0].timeout_seconds == 1.5


def test_submit_validates_before_scheduling(tmp_path: Path) -> None:
    engine = _RecordingEngine()
    with CodeRunner(engine, policy=_policy(tmp_path)) as runner:
        with pytest.raises(UnsupportedLanguageError):
            runner.submit(ExecutionRequest(language="cobol", code="DISPLAY 'x'"))
        with pytest.raises(ValidationError, match="requires a template store"):
            runner.submit(ExecutionRequest(template_id=1))
    assert engine.jobs == []


def test_runner_executes_templates(tmp_path: Path) -> None:
    store = InMemoryTemplateStore([CodeTemplate(3, "c", "int main(void){return 0;}")])
    engine = _RecordingEngine()
    with CodeRunner(engine, policy=_policy(tmp_path), template_store=store) as runner:
        result = runner.execute(ExecutionRequest(template_id=3, stdin="in"))
        with pytest.raises(TemplateNotFoundError):
            runner.execute(ExecutionRequest(template_id=4))
    assert result.ok is True
    assert engine.jobs[0].profile.source_filename == "code.c"
    assert len(engine.jobs) == 1


def test_concurrency_is_bounded(tmp_path: Path) -> None:
    engine = _RecordingEngine(delay=0.2)
    with CodeRunner(engine, policy=_policy(tmp_path, max_concurrency=2)) as runner:
        futures = [
            runner.submit(ExecutionRequest(language="python", code=f"print({i})")) for i in range(6)
        ]
        results = [future.result() for future in futures]

    assert engine.peak <= 2
    assert [r.stdout for r in results] == [f"print({i})" for i in range(6)]
    assert len({job.workspace.root for job in engine.jobs}) == 6
