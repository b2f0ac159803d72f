import logging
import os
import shutil
import time
from pathlib import Path

import pytest

from safe_code_runner import WorkspaceManager


def test_create_allocates_unique_private_directories(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path)
    first = manager.create()
    second = manager.create()

    assert first.id != second.id
    assert first.root != second.root
    assert first.root.parent == tmp_path
    assert first.root.is_dir()
    assert (first.root.stat().st_mode & 0o777) == 0o700


def test_write_places_file_inside_workspace(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path)
    ws = manager.create()
    path = manager.write(ws, "Main.java", "class Main {}")
    assert path == ws.root / "Main.java"
    assert path.read_text(encoding="utf-8") == "class Main {}"


@pytest.mark.parametrize("name", ["../escape.py", "/etc/passwd", ""])
def test_write_rejects_paths_outside_workspace(tmp_path: Path, name: str) -> None:
    manager = WorkspaceManager(tmp_path)
    ws = manager.create()
    with pytest.raises(ValueError):
        manager.write(ws, name, "x")


def test_destroy_is_idempotent(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path)
    ws = manager.create()
    manager.write(ws, "nested/dir/file.txt", "x")

    assert manager.destroy(ws) is True
    assert not ws.root.exists()
    assert manager.destroy(ws) is True


def test_destroy_logs_instead_of_raising(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    manager = WorkspaceManager(tmp_path)
    ws = manager.create()

    def _boom(path: object) -> None:
        raise PermissionError("denied")

    monkeypatch.setattr(shutil, "rmtree", _boom)
    with caplog.at_level(logging.WARNING, logger="safe_code_runner.workspace"):
        assert manager.destroy(ws) is False
    assert "Workspace cleanup failed" in caplog.text


def test_session_removes_workspace_when_body_raises(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path)
    with pytest.raises(RuntimeError):
        with manager.session() as ws:
            manager.write(ws, "code.py", "print(1)")
            raise RuntimeError("boom")
    assert not ws.root.exists()


def test_sweep_removes_only_stale_workspaces(tmp_path: Path) -> None:
    manager = WorkspaceManager(tmp_path)
    stale = manager.create()
    fresh = manager.create()
    unrelated = tmp_path / "keep-me"
    unrelated.mkdir()
    old = time.time() - 7200
    os.utime(stale.root, (old, old))
    os.utime(unrelated, (old, old))

    assert manager.sweep(max_age_seconds=3600) == 1
    assert not stale.root.exists()
    assert fresh.root.exists()
    assert unrelated.exists()


def test_sweep_without_scratch_root_is_noop(tmp_path: Path) -> None:
    assert WorkspaceManager(tmp_path / "missing").sweep(max_age_seconds=0) == 0
