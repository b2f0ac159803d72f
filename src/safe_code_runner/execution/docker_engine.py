from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Mapping

from ..errors import InfrastructureError
from ..workspace import Workspace
from .config import (
    CONTAINER_NAME_PREFIX,
    CONTAINER_WORKDIR,
    DEFAULT_PIDS_LIMIT,
    DOCKER_CLI_ERROR_PREFIX,
    DOCKER_RUN_FAILURE_EXIT,
    MANAGED_LABELS_BASE,
    MANAGED_LABEL_VALUE,
    NEVER_STARTED_PREFIX,
    OCI_RUNTIME_FAILURE,
)
from .process import ProcessOutcome, run_process
from .types import ExecutionJob, ExecutionOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    """Snapshot of a managed container returned by DockerEngine.

    Example:
        ```python
        info = ContainerInfo("abc", "safe-code-runner-1a2b", "python:3.12-slim", "running", "Up 2s")
        ```
    """

    id: str
    name: str
    image: str
    state: str
    status: str


@dataclass(frozen=True, slots=True)
class CleanupSummary:
    """Result summary from reaper operations.

    Example:
        ```python
        summary = CleanupSummary(removed_containers=2, removed_workspaces=1)
        ```
    """

    removed_containers: int
    removed_workspaces: int = 0


def docker_is_available(*, docker_env: Mapping[str, str], docker_context: str | None) -> tuple[bool, str | None]:
    """Check Docker CLI and daemon accessibility for the selected target.

    Example:
        ```python
        ok, reason = docker_is_available(docker_env=os.environ, docker_context=None)
        ```
    """
    if shutil.which("docker") is None:
        return False, "Docker CLI was not found. Install Docker and ensure it is on PATH."
    cmd = ["docker"]
    if docker_context:
        cmd.extend(["--context", docker_context])
    cmd.append("info")
    info = subprocess.run(cmd, capture_output=True, text=True, check=False, env=dict(docker_env))
    if info.returncode != 0:
        return False, "Docker is installed but the daemon is not running or not accessible."
    return True, None


def container_name_for(workspace: Workspace) -> str:
    """Return the per-request container name derived from the workspace id.

    Example:
        ```python
        name = container_name_for(ws)  # "safe-code-runner-<hex>"
        ```
    """
    return f"{CONTAINER_NAME_PREFIX}{workspace.id.hex}"


def compile_marker_for(workspace: Workspace) -> str:
    """Return the file name written when the in-container compile step fails.

    Example:
        ```python
        marker = compile_marker_for(ws)
        ```
    """
    return f".compile-failed-{workspace.id.hex}"


def container_command(job: ExecutionJob) -> list[str]:
    """Build the argv executed inside the container for one job.

    Interpreted languages run directly. Compiled languages run a fixed `sh -c`
    script whose fragments are quoted constants from the profile; user input
    never reaches the shell and arrives on stdin instead.

    Example:
        ```python
        argv = container_command(job)  # ["python3", "-u", "code.py"]
        ```
    """
    run_argv = job.profile.run_argv()
    compile_argv = job.profile.compile_argv()
    if compile_argv is None:
        return run_argv
    marker = shlex.quote(compile_marker_for(job.workspace))
    script = f"{shlex.join(compile_argv)} || {{ : > {marker}; exit 1; }}; exec {shlex.join(run_argv)}"
    return ["sh", "-c", script]


class DockerEngine:
    """Execute each job in a fresh, locked-down Docker container.

    Example:
        ```python
        engine = DockerEngine(memory_limit_mb=256)
        ```
    """

    stderr_is_failure = True

    def __init__(
        self,
        *,
        memory_limit_mb: int | None = None,
        pids_limit: int = DEFAULT_PIDS_LIMIT,
        cpus: float | None = 1.0,
        docker_host: str | None = None,
        docker_context: str | None = None,
        ssh_host: str | None = None,
        ssh_user: str | None = None,
        ssh_port: int | None = None,
        ssh_key_path: str | None = None,
    ) -> None:
        """Initialize container limits and the Docker connection strategy.

        Example:
            ```python
            engine = DockerEngine(ssh_host="server", ssh_user="ubuntu", ssh_port=22)
            ```
        """
        self._memory_limit_mb = memory_limit_mb
        self._pids_limit = pids_limit
        self._cpus = cpus
        self._docker_host = docker_host
        self._docker_context = docker_context
        self._ssh_host = ssh_host
        self._ssh_user = ssh_user
        self._ssh_port = ssh_port
        self._ssh_key_path = ssh_key_path
        self._ready_images: set[str] = set()
        self._validate_connection_options()

    def execute(self, job: ExecutionJob) -> ExecutionOutcome:
        """Run one job in a container that mounts the job workspace.

        Example:
            ```python
            outcome = engine.execute(job)
            ```
        """
        image = job.profile.isolation_image
        if not image:
            return self._failure(f"No isolation image configured for {job.profile.language.value}")
        available, reason = docker_is_available(
            docker_env=self._docker_env(),
            docker_context=self._docker_context,
        )
        if not available:
            return self._failure(reason or "Docker is not available")
        if not self._ensure_image_available(image):
            return self._failure(f"Docker image {image!r} is not available and could not be pulled")

        name = container_name_for(job.workspace)
        try:
            try:
                step = run_process(
                    self._run_command(job, name),
                    cwd=job.workspace.root,
                    stdin=job.stdin,
                    timeout_seconds=job.timeout_seconds,
                    max_output_bytes=job.max_output_bytes,
                    env=self._docker_env(),
                    on_timeout=lambda: self._stop_container_quietly(name),
                )
            except InfrastructureError as exc:
                return self._failure(str(exc))
            if step.timed_out:
                logger.warning("Container %s timed out after %ss", name, job.timeout_seconds)
                return ExecutionOutcome("", "", None, True, stderr_is_failure=self.stderr_is_failure)
            if self._daemon_failed(step, name):
                logger.warning("Docker failed to start container %s: %s", name, step.stderr.strip())
                return self._failure(step.stderr.strip(), stderr=step.stderr)
        finally:
            self._remove_container_quietly(name)

        marker = job.workspace.path_for(compile_marker_for(job.workspace))
        phase = "compile" if marker.exists() else "run"
        return ExecutionOutcome(
            stdout=step.stdout,
            stderr=step.stderr,
            returncode=step.returncode,
            timed_out=False,
            phase=phase,
            truncated=step.truncated,
            stderr_is_failure=self.stderr_is_failure,
        )

    def list_containers(self, all_states: bool = False) -> list[ContainerInfo]:
        """List managed containers visible to this engine target.

        Example:
            ```python
            containers = engine.list_containers(all_states=True)
            ```
        """
        fmt = "{{.ID}}|{{.Names}}|{{.Image}}|{{.State}}|{{.Status}}"
        cmd = ["ps", "--filter", f"label=safe_code_runner.managed={MANAGED_LABEL_VALUE}", "--format", fmt]
        if all_states:
            cmd.insert(1, "-a")
        out = self._run_docker(cmd)
        if out.returncode != 0:
            raise RuntimeError(f"Failed to list containers: {out.stderr.strip()}")
        items: list[ContainerInfo] = []
        for line in out.stdout.splitlines():
            if not line.strip():
                continue
            c_id, name, image, state, status = line.split("|", 4)
            items.append(ContainerInfo(c_id, name, image, state, status))
        return items

    def stop_container(self, container_id: str, timeout_seconds: int = 10) -> None:
        """Gracefully stop a managed container.

        Example:
            ```python
            engine.stop_container("abc123", timeout_seconds=5)
            ```
        """
        self._ensure_managed_container(container_id)
        stopped = self._run_docker(["stop", "-t", str(timeout_seconds), container_id])
        if stopped.returncode != 0:
            raise RuntimeError(f"Failed to stop container: {stopped.stderr.strip()}")

    def kill_container(self, container_id: str) -> None:
        """Force-kill a managed container.

        Example:
            ```python
            engine.kill_container("abc123")
            ```
        """
        self._ensure_managed_container(container_id)
        killed = self._run_docker(["kill", container_id])
        if killed.returncode != 0:
            raise RuntimeError(f"Failed to kill container: {killed.stderr.strip()}")

    def cleanup_stale(self) -> CleanupSummary:
        """Force-remove every managed container that is no longer running.

        Example:
            ```python
            summary = engine.cleanup_stale()
            ```
        """
        removed_containers = 0
        for container in self.list_containers(all_states=True):
            if container.state != "running":
                removed = self._run_docker(["rm", "-f", container.id])
                if removed.returncode == 0:
                    removed_containers += 1
        return CleanupSummary(removed_containers=removed_containers)

    def _run_command(self, job: ExecutionJob, name: str) -> list[str]:
        """Build the full `docker run` argv for one job.

        Example:
            ```python
            cmd = engine._run_command(job, "safe-code-runner-abc")
            ```
        """
        cmd = ["docker"]
        if self._docker_context:
            cmd.extend(["--context", self._docker_context])
        cmd.append("run")
        if job.stdin is not None:
            cmd.append("-i")
        mem_mb = max(64, int(self._memory_limit_mb or job.memory_limit_mb))
        cmd.extend(
            [
                "--name",
                name,
                "--network",
                "none",
                "--cap-drop",
                "ALL",
                "--security-opt",
                "no-new-privileges",
                "--pids-limit",
                str(self._pids_limit),
                "--memory",
                f"{mem_mb}m",
                "--tmpfs",
                "/tmp:rw,exec,nosuid,size=64m",
                "-e",
                "HOME=/tmp",
            ]
        )
        if self._cpus:
            cmd.extend(["--cpus", str(self._cpus)])
        if hasattr(os, "getuid"):
            cmd.extend(["--user", f"{os.getuid()}:{os.getgid()}"])
        for key, value in MANAGED_LABELS_BASE.items():
            cmd.extend(["--label", f"{key}={value}"])
        cmd.extend(["--label", f"safe_code_runner.language={job.profile.language.value}"])
        cmd.extend(
            [
                "-v",
                f"{job.workspace.root}:{CONTAINER_WORKDIR}",
                "-w",
                CONTAINER_WORKDIR,
                str(job.profile.isolation_image),
            ]
        )
        cmd.extend(container_command(job))
        return cmd

    def _failure(self, message: str, *, stderr: str = "") -> ExecutionOutcome:
        """Return an infrastructure-failure outcome.

        Example:
            ```python
            outcome = engine._failure("Docker is not available")
            ```
        """
        return ExecutionOutcome("", stderr, None, False, message, stderr_is_failure=self.stderr_is_failure)

    def _daemon_failed(self, step: ProcessOutcome, name: str) -> bool:
        """Return True when Docker itself failed before the program ever ran.

        A container's own exit status passes through `docker run`, so exit 125 or
        an OCI message alone may come from the program. The failure is Docker's
        only when the CLI wrote the first stderr line and the container never started.

        Example:
            ```python
            if engine._daemon_failed(step, "safe-code-runner-abc"): ...
            ```
        """
        if step.returncode != DOCKER_RUN_FAILURE_EXIT and OCI_RUNTIME_FAILURE not in step.stderr:
            return False
        if step.stdout or not step.stderr.lstrip().startswith(DOCKER_CLI_ERROR_PREFIX):
            return False
        return not self._container_started(name)

    def _container_started(self, name: str) -> bool:
        """Return True when the named container reached the running state at least once.

        Example:
            ```python
            started = engine._container_started("safe-code-runner-abc")
            ```
        """
        inspected = self._run_docker(["inspect", "-f", "{{.State.StartedAt}}", name])
        if inspected.returncode != 0:
            return False
        started_at = inspected.stdout.strip()
        return bool(started_at) and not started_at.startswith(NEVER_STARTED_PREFIX)

    def _stop_container_quietly(self, name: str) -> None:
        """Kill a running container via the Docker stop primitive; failures are logged.

        Example:
            ```python
            engine._stop_container_quietly("safe-code-runner-abc")
            ```
        """
        killed = self._run_docker(["kill", name])
        if killed.returncode != 0:
            logger.warning("docker kill %s failed: %s", name, killed.stderr.strip())

    def _remove_container_quietly(self, name: str) -> None:
        """Force-remove a container if it still exists; failures are logged.

        Example:
            ```python
            engine._remove_container_quietly("safe-code-runner-abc")
            ```
        """
        removed = self._run_docker(["rm", "-f", name])
        if removed.returncode != 0 and "No such container" not in removed.stderr:
            logger.warning("docker rm -f %s failed: %s", name, removed.stderr.strip())

    def _ensure_managed_container(self, container_id: str) -> None:
        """Ensure a container is labeled as safe-code-runner managed.

        Example:
            ```python
            engine._ensure_managed_container("abc123")
            ```
        """
        check = self._run_docker(
            [
                "inspect",
                "-f",
                "{{ index .Config.Labels \"safe_code_runner.managed\" }}",
                container_id,
            ]
        )
        if check.returncode != 0 or check.stdout.strip() != MANAGED_LABEL_VALUE:
            raise ValueError(
                f"Container '{container_id}' is not managed by safe-code-runner and cannot be modified"
            )

    def _ensure_image_available(self, image: str) -> bool:
        """Ensure an image exists locally, pulling when needed.

        Example:
            ```python
            ok = engine._ensure_image_available("python:3.12-slim")
            ```
        """
        if image in self._ready_images:
            return True
        inspected = self._run_docker(["image", "inspect", image])
        if inspected.returncode != 0:
            logger.info("Pulling image %s", image)
            pulled = self._run_docker(["pull", image])
            if pulled.returncode != 0:
                logger.warning("Failed to pull %s: %s", image, pulled.stderr.strip())
                return False
        self._ready_images.add(image)
        return True

    def _run_docker(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        """Run a Docker CLI command against the configured target.

        Example:
            ```python
            completed = engine._run_docker(["ps"])
            ```
        """
        cmd = ["docker"]
        if self._docker_context:
            cmd.extend(["--context", self._docker_context])
        cmd.extend(args)
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=False,
            env=self._docker_env(),
        )

    def _docker_env(self) -> dict[str, str]:
        """Build environment variables for Docker CLI targeting.

        Example:
            ```python
            env = engine._docker_env()
            ```
        """
        env = dict(os.environ)
        docker_host = self._docker_host
        if self._ssh_host:
            user = f"{self._ssh_user}@" if self._ssh_user else ""
            docker_host = f"ssh://{user}{self._ssh_host}"
        if docker_host:
            env["DOCKER_HOST"] = docker_host
        if self._ssh_host:
            parts = ["ssh"]
            if self._ssh_port:
                parts.extend(["-p", str(self._ssh_port)])
            if self._ssh_key_path:
                parts.extend(["-i", self._ssh_key_path])
            env["DOCKER_SSH_COMMAND"] = " ".join(parts)
        return env

    def _validate_connection_options(self) -> None:
        """Validate mutually exclusive Docker connection settings.

        Example:
            ```python
            engine._validate_connection_options()
            ```
        """
        if self._docker_context and (self._docker_host or self._ssh_host):
            raise ValueError("Use either docker_context or docker_host/ssh settings, not both")
        if self._ssh_user and not self._ssh_host:
            raise ValueError("ssh_user requires ssh_host")
        if self._ssh_port and not self._ssh_host:
            raise ValueError("ssh_port requires ssh_host")
        if self._ssh_key_path and not self._ssh_host:
            raise ValueError("ssh_key_path requires ssh_host")
