from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Mapping, Sequence

from ..errors import InfrastructureError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_DRAIN_GRACE_SECONDS = 2.0


@dataclass(slots=True)
class ProcessOutcome:
    """Raw result of one child process run under a deadline.

    Output is discarded when the deadline fired, so `stdout`/`stderr` are empty then.

    Example:
        ```python
        out = ProcessOutcome(stdout="hi\\n", stderr="", returncode=0, timed_out=False)
        ```
    """

    stdout: str
    stderr: str
    returncode: int | None
    timed_out: bool
    truncated: bool = False
    duration_seconds: float = 0.0


class _BoundedReader:
    """Drain a pipe on a background thread, keeping at most `limit` bytes.

    Example:
        ```python
        reader = _BoundedReader(proc.stdout, limit=1024)
        reader.start()
        ```
    """

    def __init__(self, stream: IO[bytes], limit: int) -> None:
        """Prepare the reader thread for `stream`.

        Example:
            ```python
            reader = _BoundedReader(proc.stderr, limit=4096)
            ```
        """
        self._stream = stream
        self._limit = max(0, limit)
        self._chunks: list[bytes] = []
        self._size = 0
        self.truncated = False
        self._thread = threading.Thread(target=self._drain, daemon=True)

    def start(self) -> None:
        """Start draining.

        Example:
            ```python
            reader.start()
            ```
        """
        self._thread.start()

    def join(self, timeout: float) -> None:
        """Wait for the pipe to reach EOF.

        Example:
            ```python
            reader.join(timeout=2.0)
            ```
        """
        self._thread.join(timeout)

    def text(self) -> str:
        """Return captured bytes decoded as UTF-8.

        Example:
            ```python
            captured = reader.text()
            ```
        """
        return b"".join(self._chunks).decode("utf-8", errors="replace")

    def _drain(self) -> None:
        """Read until EOF; bytes past the limit are read and dropped.

        Example:
            ```python
            reader._drain()
            ```
        """
        with self._stream:
            while True:
                chunk = os.read(self._stream.fileno(), _CHUNK_SIZE)
                if not chunk:
                    return
                room = self._limit - self._size
                if room <= 0:
                    self.truncated = True
                    continue
                if len(chunk) > room:
                    chunk = chunk[:room]
                    self.truncated = True
                self._chunks.append(chunk)
                self._size += len(chunk)


def _feed_stdin(stream: IO[bytes], data: bytes) -> None:
    """Write program input and close the pipe.

    A program may exit without reading its input; the broken pipe is expected then.

    Example:
        ```python
        _feed_stdin(proc.stdin, b"abc\\n")
        ```
    """
    with contextlib.suppress(BrokenPipeError):
        with stream:
            stream.write(data)


def kill_process_tree(proc: subprocess.Popen[bytes]) -> None:
    """SIGKILL the child's whole process group.

    The child is started as a session leader, so its pid is also its group id.

    Example:
        ```python
        kill_process_tree(proc)
        ```
    """
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except PermissionError:
        proc.kill()


def run_process(
    argv: Sequence[str],
    *,
    cwd: str | Path,
    stdin: str | None,
    timeout_seconds: float,
    max_output_bytes: int,
    env: Mapping[str, str] | None = None,
    on_timeout: Callable[[], None] | None = None,
) -> ProcessOutcome:
    """Run `argv` without a shell, racing its exit against a deadline.

    When the deadline wins, `on_timeout` runs first (e.g. a container stop
    primitive) and then the whole process group is killed and reaped.

    Example:
        ```python
        out = run_process(["python3", "code.py"], cwd="/tmp/ws", stdin="abc", timeout_seconds=10, max_output_bytes=1 << 20)
        ```
    """
    logger.debug("Launching %s in %s", list(argv), cwd)
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(env) if env is not None else None,
            start_new_session=True,
        )
    except OSError as exc:
        raise InfrastructureError(f"Failed to launch {argv[0]!r}: {exc}") from exc

    assert proc.stdout is not None and proc.stderr is not None
    out_reader = _BoundedReader(proc.stdout, max_output_bytes)
    err_reader = _BoundedReader(proc.stderr, max_output_bytes)
    out_reader.start()
    err_reader.start()
    if stdin is not None:
        assert proc.stdin is not None
        threading.Thread(
            target=_feed_stdin,
            args=(proc.stdin, stdin.encode("utf-8")),
            daemon=True,
        ).start()

    timed_out = False
    try:
        proc.wait(timeout=max(0.0, timeout_seconds))
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.warning("Deadline of %ss exceeded by %s; killing process group", timeout_seconds, argv[0])
        if on_timeout is not None:
            on_timeout()
    finally:
        # Reached on normal exit too: kills any descendants left in the group.
        kill_process_tree(proc)
        proc.wait()
        out_reader.join(_DRAIN_GRACE_SECONDS)
        err_reader.join(_DRAIN_GRACE_SECONDS)

    duration = time.monotonic() - started
    if timed_out:
        return ProcessOutcome("", "", None, True, duration_seconds=duration)
    return ProcessOutcome(
        stdout=out_reader.text(),
        stderr=err_reader.text(),
        returncode=proc.returncode,
        timed_out=False,
        truncated=out_reader.truncated or err_reader.truncated,
        duration_seconds=duration,
    )
