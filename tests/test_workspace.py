"""Tests for per-submission workspaces.

Uses the real filesystem under tmp_path; cleanup failures are injected by
patching shutil.rmtree.
"""

import asyncio
import shutil
import stat
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import patch

import pytest

from code_judge.exceptions import WorkspaceError
from code_judge.workspace import WorkspaceManager, generate_workspace_id
from tests.conftest import skip_unless_posix

# ============================================================================
# Identifiers
# ============================================================================


class TestGenerateWorkspaceId:
    def test_format(self) -> None:
        label, seq, suffix = generate_workspace_id("sub-42").split("_")
        assert label == "sub-42"
        assert seq.isdigit()
        assert len(suffix) == 16
        int(suffix, 16)

    @pytest.mark.parametrize(
        ("submission_id", "label"),
        [(None, "anon"), ("", "anon"), ("../../etc", "etc"), ("a b/c", "abc"), ("x" * 80, "x" * 32)],
    )
    def test_label_sanitized(self, submission_id: str | None, label: str) -> None:
        assert generate_workspace_id(submission_id).rsplit("_", 2)[0] == label

    def test_unique_across_threads(self) -> None:
        """Same submission id from many threads at once never collides."""
        with ThreadPoolExecutor(max_workers=16) as pool:
            ids = list(pool.map(lambda _: generate_workspace_id("same"), range(2000)))
        assert len(set(ids)) == len(ids)


# ============================================================================
# Lifecycle
# ============================================================================


class TestWorkspaceManager:
    async def test_create_and_release(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        workspace = await manager.create("s1")

        assert workspace.root_path.is_dir()
        assert workspace.root_path.parent == workspace_dir
        assert workspace.id.startswith("judge_s1_")
        assert manager.active_count == 1

        assert await manager.release(workspace) is True
        assert not workspace.root_path.exists()
        assert manager.active_count == 0

    @skip_unless_posix
    async def test_directory_is_private(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        async with manager.acquire() as workspace:
            mode = stat.S_IMODE(workspace.root_path.stat().st_mode)
            assert mode & 0o077 == 0

    async def test_concurrent_workspaces_distinct(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        workspaces = await asyncio.gather(*(manager.create("dup") for _ in range(50)))
        assert len({w.root_path for w in workspaces}) == 50
        assert manager.active_count == 50
        await asyncio.gather(*(manager.release(w) for w in workspaces))
        assert list(workspace_dir.iterdir()) == []

    async def test_acquire_releases_on_exception(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        with pytest.raises(RuntimeError, match="boom"):
            async with manager.acquire() as workspace:
                await workspace.write_file("solution.py", "print(1)")
                raise RuntimeError("boom")
        assert not workspace.root_path.exists()
        assert manager.active_count == 0

    async def test_acquire_releases_on_cancel(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        entered = asyncio.Event()
        holder: list[Path] = []

        async def hold() -> None:
            async with manager.acquire() as workspace:
                holder.append(workspace.root_path)
                entered.set()
                await asyncio.sleep(60)

        task = asyncio.create_task(hold())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not holder[0].exists()
        assert manager.active_count == 0

    async def test_untracked_files_removed(self, workspace_dir: Path) -> None:
        """Files the program wrote itself go with the directory."""
        manager = WorkspaceManager(workspace_dir)
        async with manager.acquire() as workspace:
            (workspace.root_path / "scratch").mkdir()
            (workspace.root_path / "scratch" / "out.txt").write_text("x")
        assert list(workspace_dir.iterdir()) == []

    async def test_create_fails_when_base_is_file(self, tmp_path: Path) -> None:
        base = tmp_path / "not-a-dir"
        base.write_text("")
        manager = WorkspaceManager(base)
        with pytest.raises(WorkspaceError):
            await manager.create()
        assert manager.active_count == 0

    async def test_release_never_raises(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        workspace = await manager.create()

        with patch("code_judge.resource_cleanup.shutil.rmtree", side_effect=PermissionError("denied")):
            assert await manager.release(workspace) is False

        assert manager.active_count == 0
        shutil.rmtree(workspace.root_path)

    async def test_release_retries_transient_failure(self, workspace_dir: Path) -> None:
        """A removal racing with a dying process is retried, not leaked."""
        manager = WorkspaceManager(workspace_dir)
        workspace = await manager.create()
        real_rmtree = shutil.rmtree
        calls: list[Path] = []

        def flaky_rmtree(path: Path, *args: object, **kwargs: object) -> None:
            calls.append(path)
            if len(calls) == 1:
                raise OSError(39, "Directory not empty")
            real_rmtree(path)

        with patch("code_judge.resource_cleanup.shutil.rmtree", side_effect=flaky_rmtree):
            assert await manager.release(workspace) is True

        assert len(calls) == 2
        assert not workspace.root_path.exists()

    async def test_release_twice(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        workspace = await manager.create()
        assert await manager.release(workspace) is True
        assert await manager.release(workspace) is True


# ============================================================================
# Files
# ============================================================================


class TestWorkspaceFiles:
    async def test_write_file_tracks(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        async with manager.acquire() as workspace:
            path = await workspace.write_file("solution.py", "print('héllo')\n")
            assert path.read_text(encoding="utf-8") == "print('héllo')\n"
            assert path in workspace.created_files

    @pytest.mark.parametrize("name", ["../escape.py", "/etc/passwd", ".", "sub/../../x"])
    async def test_path_traversal_rejected(self, workspace_dir: Path, name: str) -> None:
        manager = WorkspaceManager(workspace_dir)
        async with manager.acquire() as workspace:
            with pytest.raises(WorkspaceError):
                workspace.path(name)
        assert not (workspace_dir / "escape.py").exists()

    async def test_write_failure_wrapped(self, workspace_dir: Path) -> None:
        manager = WorkspaceManager(workspace_dir)
        async with manager.acquire() as workspace:
            with pytest.raises(WorkspaceError, match="Failed to write"):
                await workspace.write_file("missing-dir/solution.py", "x")
