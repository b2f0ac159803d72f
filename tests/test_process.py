import os
import sys
import time
from pathlib import Path

import pytest

from safe_code_runner.errors import InfrastructureError
from safe_code_runner.execution.process import run_process

pytestmark = pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX only")


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def _is_running(pid: int) -> bool:
    stat = Path(f"/proc/{pid}/stat")
    if Path("/proc/self").exists():
        try:
            text = stat.read_text()
        except FileNotFoundError:
            return False
        return text.rsplit(")", 1)[1].split()[0] != "Z"
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def test_captures_stdout_and_stderr(tmp_path: Path) -> None:
    out = run_process(
        _python("import sys; print('hello'); print('oops', file=sys.stderr)"),
        cwd=tmp_path,
        stdin=None,
        timeout_seconds=10,
        max_output_bytes=1024,
    )
    assert out.timed_out is False
    assert out.returncode == 0
    assert out.stdout == "hello\n"
    assert out.stderr == "oops\n"
    assert out.truncated is False


def test_pipes_stdin(tmp_path: Path) -> None:
    out = run_process(
        _python("print(input()[::-1])"),
        cwd=tmp_path,
        stdin="abc\n",
        timeout_seconds=10,
        max_output_bytes=1024,
    )
    assert out.stdout == "cba\n"


def test_stdin_is_not_inherited_when_absent(tmp_path: Path) -> None:
    out = run_process(
        _python("import sys; print(repr(sys.stdin.read()))"),
        cwd=tmp_path,
        stdin=None,
        timeout_seconds=10,
        max_output_bytes=1024,
    )
    assert out.stdout == "''\n"


def test_nonzero_exit_code_is_reported(tmp_path: Path) -> None:
    out = run_process(_python("raise SystemExit(3)"), cwd=tmp_path, stdin=None, timeout_seconds=10, max_output_bytes=1024)
    assert out.returncode == 3
    assert out.timed_out is False


def test_program_ignoring_stdin_does_not_break_launcher(tmp_path: Path) -> None:
    out = run_process(
        _python("print('done')"),
        cwd=tmp_path,
        stdin="x" * (1024 * 1024),
        timeout_seconds=10,
        max_output_bytes=1024,
    )
    assert out.returncode == 0
    assert out.stdout == "done\n"


def test_output_is_capped(tmp_path: Path) -> None:
    out = run_process(
        _python("import sys; sys.stdout.write('x' * 100000)"),
        cwd=tmp_path,
        stdin=None,
        timeout_seconds=10,
        max_output_bytes=1000,
    )
    assert out.returncode == 0
    assert len(out.stdout) == 1000
    assert out.truncated is True


def test_deadline_kills_whole_process_tree(tmp_path: Path) -> None:
    pid_file = tmp_path / "child.pid"
    code = (
        "import subprocess, sys, time\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time\\nwhile True: time.sleep(0.05)'])\n"
        f"open({str(pid_file)!r}, 'w').write(str(child.pid))\n"
        "print('partial', flush=True)\n"
        "while True:\n"
        "    pass\n"
    )
    hook_calls: list[str] = []
    started = time.monotonic()
    out = run_process(
        _python(code),
        cwd=tmp_path,
        stdin=None,
        timeout_seconds=3.0,
        max_output_bytes=1024,
        on_timeout=lambda: hook_calls.append("stop"),
    )
    elapsed = time.monotonic() - started

    assert out.timed_out is True
    assert out.returncode is None
    assert out.stdout == ""
    assert out.stderr == ""
    assert hook_calls == ["stop"]
    assert elapsed < 10

    child_pid = int(pid_file.read_text())
    deadline = time.monotonic() + 5
    while _is_running(child_pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _is_running(child_pid)


def test_missing_executable_is_infrastructure_error(tmp_path: Path) -> None:
    with pytest.raises(InfrastructureError, match="Failed to launch"):
        run_process(
            ["definitely-not-a-real-toolchain-binary"],
            cwd=tmp_path,
            stdin=None,
            timeout_seconds=1,
            max_output_bytes=1024,
        )
