from __future__ import annotations

import contextlib
import logging
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import Iterator

from .errors import CleanupError

logger = logging.getLogger(__name__)

_WORKSPACE_PREFIX = "run-"


def default_scratch_root() -> Path:
    """Return the default parent directory for per-request workspaces.

    Example:
        ```python
        root = default_scratch_root()
        ```
    """
    return Path(tempfile.gettempdir()) / "safe-code-runner"


@dataclass(frozen=True, slots=True)
class Workspace:
    """Scratch directory owned by exactly one in-flight request.

    Example:
        ```python
        ws = Workspace(uuid.uuid4(), Path("/tmp/safe-code-runner/run-abc"), datetime.now(timezone.utc))
        ```
    """

    id: uuid.UUID
    root: Path
    created_at: datetime

    def path_for(self, filename: str) -> Path:
        """Return the absolute path of `filename` inside the workspace.

        Example:
            ```python
            target = ws.path_for("Main.java")
            ```
        """
        relative = PurePath(filename)
        if not filename or relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Workspace file name must be relative and stay inside the workspace: {filename!r}")
        return self.root / relative


class WorkspaceManager:
    """Allocate, populate, and destroy per-request workspaces under a scratch root.

    Example:
        ```python
        manager = WorkspaceManager("/tmp/scr")
        with manager.session() as ws:
            manager.write(ws, "code.py", "print(1)")
        ```
    """

    def __init__(self, scratch_root: str | Path | None = None) -> None:
        """Remember the scratch root; directories are created lazily.

        Example:
            ```python
            manager = WorkspaceManager()
            ```
        """
        self._scratch_root = Path(scratch_root).expanduser() if scratch_root else default_scratch_root()

    @property
    def scratch_root(self) -> Path:
        """Return the parent directory of all workspaces.

        Example:
            ```python
            root = manager.scratch_root
            ```
        """
        return self._scratch_root

    def create(self) -> Workspace:
        """Create a uniquely named, private workspace directory.

        Example:
            ```python
            ws = manager.create()
            ```
        """
        self._scratch_root.mkdir(parents=True, exist_ok=True)
        workspace_id = uuid.uuid4()
        root = self._scratch_root / f"{_WORKSPACE_PREFIX}{workspace_id.hex}"
        root.mkdir(mode=0o700, exist_ok=False)
        logger.debug("Created workspace %s", root)
        return Workspace(id=workspace_id, root=root, created_at=datetime.now(timezone.utc))

    def write(self, workspace: Workspace, filename: str, content: str) -> Path:
        """Write a source file into the workspace and return its path.

        Example:
            ```python
            path = manager.write(ws, "Main.java", "class Main {}")
            ```
        """
        target = workspace.path_for(filename)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return target

    def destroy(self, workspace: Workspace) -> bool:
        """Remove the workspace tree; safe to call repeatedly and never raises.

        Returns False when removal failed; the failure is logged instead.

        Example:
            ```python
            removed = manager.destroy(ws)
            ```
        """
        try:
            self._remove_tree(workspace.root)
        except CleanupError as exc:
            logger.warning("Workspace cleanup failed: %s", exc)
            return False
        return True

    @contextlib.contextmanager
    def session(self) -> Iterator[Workspace]:
        """Yield a fresh workspace and destroy it on every exit path.

        Example:
            ```python
            with manager.session() as ws:
                ...
            ```
        """
        workspace = self.create()
        try:
            yield workspace
        finally:
            self.destroy(workspace)

    def sweep(self, max_age_seconds: float) -> int:
        """Remove orphaned workspaces older than `max_age_seconds`.

        Example:
            ```python
            removed = manager.sweep(max_age_seconds=3600)
            ```
        """
        if not self._scratch_root.is_dir():
            return 0
        cutoff = time.time() - max_age_seconds
        removed = 0
        for entry in self._scratch_root.iterdir():
            if not entry.is_dir() or not entry.name.startswith(_WORKSPACE_PREFIX):
                continue
            try:
                if entry.stat().st_mtime > cutoff:
                    continue
                self._remove_tree(entry)
            except (OSError, CleanupError) as exc:
                logger.warning("Skipping stale workspace %s: %s", entry, exc)
                continue
            removed += 1
        return removed

    def _remove_tree(self, root: Path) -> None:
        """Recursively delete `root`, translating OS failures into `CleanupError`.

        Example:
            ```python
            manager._remove_tree(ws.root)
            ```
        """
        if not root.exists():
            return
        try:
            shutil.rmtree(root)
        except OSError as exc:
            raise CleanupError(f"Could not remove {root}: {exc}") from exc
        logger.debug("Removed workspace %s", root)
