from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .execution.config import (
    DEFAULT_MAX_OUTPUT_KB,
    DEFAULT_MEMORY_LIMIT_MB,
    DEFAULT_TIMEOUT_SECONDS,
    default_max_concurrency,
)


def _default_policy_path() -> Path:
    """Return bundled default policy TOML path.

    Example:
        ```python
        path = _default_policy_path()
        ```
    """
    return Path(__file__).with_name("default_policy.toml")


def _read_policy_toml(path: Path) -> dict[str, Any]:
    """Read policy TOML and return the normalized policy dictionary.

    Example:
        ```python
        raw = _read_policy_toml(Path("/tmp/policy.toml"))
        ```
    """
    if not path.exists():
        return {
            "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
            "memory_limit_mb": DEFAULT_MEMORY_LIMIT_MB,
            "max_output_kb": DEFAULT_MAX_OUTPUT_KB,
            "max_concurrency": 0,
            "scratch_root": "",
        }
    raw = tomllib.loads(path.read_text(encoding="utf-8"))
    policy_obj = raw.get("policy", raw)
    if not isinstance(policy_obj, dict):
        raise ValueError("Policy config must be a TOML table")
    policy_obj = dict(policy_obj)
    if "images" in raw and "images" not in policy_obj:
        policy_obj["images"] = raw["images"]
    return policy_obj


def _images(value: Any) -> dict[str, str]:
    """Validate the `[images]` table mapping language names to images.

    Example:
        ```python
        images = _images({"python": "sandbox-python"})
        ```
    """
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("'images' must be a table of language = image")
    out: dict[str, str] = {}
    for key, image in value.items():
        if not isinstance(image, str):
            raise ValueError("'images' values must be strings")
        out[str(key)] = image
    return out


_DEFAULT_POLICY_RAW = _read_policy_toml(_default_policy_path())
DEFAULT_POLICY_TIMEOUT = float(_DEFAULT_POLICY_RAW.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
DEFAULT_POLICY_MEMORY_MB = int(_DEFAULT_POLICY_RAW.get("memory_limit_mb", DEFAULT_MEMORY_LIMIT_MB))
DEFAULT_POLICY_OUTPUT_KB = int(_DEFAULT_POLICY_RAW.get("max_output_kb", DEFAULT_MAX_OUTPUT_KB))
DEFAULT_POLICY_CONCURRENCY = int(_DEFAULT_POLICY_RAW.get("max_concurrency", 0))


@dataclass(slots=True)
class RunnerPolicy:
    """Limits and settings applied to every execution.

    `max_concurrency = 0` picks `min(cpu_count, 4)`; an empty `scratch_root`
    uses the system temp directory.

    Example:
        ```python
        policy = RunnerPolicy(timeout_seconds=2.5, max_output_kb=64)
        ```
    """

    timeout_seconds: float = DEFAULT_POLICY_TIMEOUT
    memory_limit_mb: int = DEFAULT_POLICY_MEMORY_MB
    max_output_kb: int = DEFAULT_POLICY_OUTPUT_KB
    max_concurrency: int = DEFAULT_POLICY_CONCURRENCY
    scratch_root: str = ""
    images: dict[str, str] = field(default_factory=dict)
    config_path: str | None = None

    def __post_init__(self) -> None:
        """Validate numeric limits after dataclass initialization.

        Example:
            ```python
            RunnerPolicy(timeout_seconds=1)
            ```
        """
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.memory_limit_mb <= 0:
            raise ValueError("memory_limit_mb must be positive")
        if self.max_output_kb <= 0:
            raise ValueError("max_output_kb must be positive")
        if self.max_concurrency < 0:
            raise ValueError("max_concurrency must be zero (auto) or positive")

    @property
    def max_output_bytes(self) -> int:
        """Return the per-stream capture limit in bytes.

        Example:
            ```python
            limit = policy.max_output_bytes
            ```
        """
        return self.max_output_kb * 1024

    @property
    def effective_concurrency(self) -> int:
        """Return the concurrency bound with `0` resolved to the automatic default.

        Example:
            ```python
            workers = policy.effective_concurrency
            ```
        """
        return self.max_concurrency or default_max_concurrency()

    @classmethod
    def from_file(cls, config_path: str) -> "RunnerPolicy":
        """Create a policy instance from a TOML file.

        Example:
            ```python
            policy = RunnerPolicy.from_file("/etc/safe-code-runner/policy.toml")
            ```
        """
        raw = _read_policy_toml(Path(config_path))
        return cls(
            timeout_seconds=float(raw.get("timeout_seconds", DEFAULT_POLICY_TIMEOUT)),
            memory_limit_mb=int(raw.get("memory_limit_mb", DEFAULT_POLICY_MEMORY_MB)),
            max_output_kb=int(raw.get("max_output_kb", DEFAULT_POLICY_OUTPUT_KB)),
            max_concurrency=int(raw.get("max_concurrency", DEFAULT_POLICY_CONCURRENCY)),
            scratch_root=str(raw.get("scratch_root", "")),
            images=_images(raw.get("images")),
            config_path=config_path,
        )
