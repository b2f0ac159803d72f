from __future__ import annotations

import os

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MEMORY_LIMIT_MB = 256
DEFAULT_MAX_OUTPUT_KB = 1024
DEFAULT_PIDS_LIMIT = 128
CONTAINER_WORKDIR = "/usr/src/app"
CONTAINER_NAME_PREFIX = "safe-code-runner-"
MANAGED_LABEL_VALUE = "true"
MANAGED_LABELS_BASE = {
    "safe_code_runner.managed": MANAGED_LABEL_VALUE,
    "safe_code_runner.engine": "docker",
    "safe_code_runner.project": "safe-code-runner",
}
# Exit code reserved by `docker run` for daemon-side failures.
DOCKER_RUN_FAILURE_EXIT = 125
OCI_RUNTIME_FAILURE = "OCI runtime create failed"
# `docker run` prefixes its own error lines with this.
DOCKER_CLI_ERROR_PREFIX = "docker:"
# `.State.StartedAt` of a container that was created but never started.
NEVER_STARTED_PREFIX = "0001-01-01"
SANITIZED_ENV_KEYS = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR")


def default_max_concurrency() -> int:
    """Return the default number of executions allowed to run at once.

    Example:
        ```python
        workers = default_max_concurrency()
        ```
    """
    return min(os.cpu_count() or 1, 4)


def sanitized_env(source: dict[str, str] | None = None) -> dict[str, str]:
    """Return a reduced environment for untrusted child processes.

    Example:
        ```python
        env = sanitized_env({"PATH": "/usr/bin", "AWS_SECRET_ACCESS_KEY": "x"})
        ```
    """
    origin = os.environ if source is None else source
    return {key: origin[key] for key in SANITIZED_ENV_KEYS if origin.get(key)}
