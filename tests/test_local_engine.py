from __future__ import annotations

import shutil
import time
from pathlib import Path

import pytest

from safe_code_runner import (
    DEFAULT_REGISTRY,
    CodeRunner,
    ExecutionRequest,
    ExecutionStatus,
    LocalEngine,
    RunnerPolicy,
    run_code,
)

pytestmark = pytest.mark.skipif(shutil.which("python3") is None, reason="python3 not on PATH")

NATIVE = DEFAULT_REGISTRY.without_isolation()


def _run(tmp_path: Path, code: str, language: str = "python", **kwargs: object):
    policy = RunnerPolicy(scratch_root=str(tmp_path), timeout_seconds=kwargs.pop("timeout", 10))
    return run_code(code, language, LocalEngine(), policy=policy, registry=NATIVE, **kwargs)


def test_hello_world(tmp_path: Path) -> None:
    result = _run(tmp_path, "print('hello')")
    assert result.status is ExecutionStatus.COMPLETED
    assert result.stdout == "hello\n"
    assert result.exit_code == 0
    assert list(tmp_path.iterdir()) == []


def test_stdin_reaches_program(tmp_path: Path) -> None:
    result = _run(tmp_path, "print(input().upper())", stdin="abc\n")
    assert result.stdout == "ABC\n"


def test_runtime_error_keeps_stdout(tmp_path: Path) -> None:
    result = _run(tmp_path, "print('before')\nraise ValueError('bad')")
    assert result.status is ExecutionStatus.RUNTIME_ERROR
    assert result.stdout == "before\n"
    assert "ValueError: bad" in result.stderr
    assert result.exit_code == 1


def test_stderr_on_clean_exit_is_tolerated(tmp_path: Path) -> None:
    result = _run(tmp_path, "import sys\nsys.stderr.write('warn\\n')\nprint('ok')")
    assert result.status is ExecutionStatus.COMPLETED
    assert result.stderr == "warn\n"


def test_infinite_loop_times_out(tmp_path: Path) -> None:
    started = time.monotonic()
    result = _run(tmp_path, "print('spin', flush=True)\nwhile True:\n    pass", timeout=1.0)

    assert result.status is ExecutionStatus.TIMED_OUT
    assert result.timed_out is True
    assert result.exit_code is None
    assert result.stdout == ""
    assert time.monotonic() - started < 8
    assert list(tmp_path.iterdir()) == []


def test_program_does_not_see_host_secrets(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "hunter2")
    result = _run(tmp_path, "import os\nprint(os.environ.get('AWS_SECRET_ACCESS_KEY'))")
    assert result.stdout == "None\n"


@pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not on PATH")
def test_c_compile_error_never_runs(tmp_path: Path) -> None:
    result = _run(tmp_path, 'int main( { puts("ran"); return 0; }', language="c")
    assert result.status is ExecutionStatus.COMPILE_ERROR
    assert result.stdout == ""
    assert "error" in result.stderr


@pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not on PATH")
def test_c_program_reads_stdin(tmp_path: Path) -> None:
    code = '#include <stdio.h>\nint main(void){char s[32];if(scanf("%31s",s)!=1)return 1;printf("got %s\\n",s);return 0;}'
    result = _run(tmp_path, code, language="c", stdin="abc")
    assert result.status is ExecutionStatus.COMPLETED
    assert result.stdout == "got abc\n"


def test_concurrent_requests_are_isolated(tmp_path: Path) -> None:
    policy = RunnerPolicy(scratch_root=str(tmp_path), max_concurrency=4)
    code = "import os\nprint(input(), sorted(os.listdir('.')))"
    with CodeRunner(LocalEngine(), policy=policy, registry=NATIVE) as runner:
        futures = [
            runner.submit(ExecutionRequest(language="python", code=code, stdin=f"token-{i}\n"))
            for i in range(10)
        ]
        results = [future.result() for future in futures]

    for i, result in enumerate(results):
        assert result.ok is True
        assert result.stdout == f"token-{i} ['code.py']\n"
    assert list(tmp_path.iterdir()) == []
