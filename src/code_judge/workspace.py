"""Per-submission filesystem workspaces.

Each judging run gets its own directory under the configured base directory.
Directory names combine a process-wide monotonic counter with a random
suffix, both drawn under one lock, so concurrent runs never collide even
within the same millisecond.

Example:
    ```python
    manager = WorkspaceManager(Path("/tmp/code-judge"))
    async with manager.acquire("sub-42") as workspace:
        source = await workspace.write_file("solution.py", code)
        ...
    # directory and every file in it are gone here, whatever happened inside
    ```
"""

from __future__ import annotations

import itertools
import re
import secrets
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

import aiofiles
import aiofiles.os

from code_judge._logging import get_logger
from code_judge.constants import WORKSPACE_PREFIX
from code_judge.exceptions import WorkspaceError
from code_judge.resource_cleanup import cleanup_directory, cleanup_file

logger = get_logger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_MAX_SUBMISSION_ID_LENGTH = 32

# Process-wide: every WorkspaceManager draws from the same sequence
_id_lock = threading.Lock()
_id_counter = itertools.count(1)


def generate_workspace_id(submission_id: str | None = None) -> str:
    """Collision-resistant workspace identifier.

    Format: ``<submission>_<counter>_<16 hex chars>``. Thread-safe.
    """
    label = _UNSAFE_ID_CHARS.sub("", submission_id or "")[:_MAX_SUBMISSION_ID_LENGTH] or "anon"
    with _id_lock:
        seq = next(_id_counter)
        suffix = secrets.token_hex(8)
    return f"{label}_{seq:06d}_{suffix}"


@dataclass
class Workspace:
    """Isolated directory owned by one in-flight judging run."""

    id: str
    root_path: Path
    created_files: set[Path] = field(default_factory=set)

    def path(self, name: str) -> Path:
        """Resolve a file name inside the workspace.

        Raises:
            WorkspaceError: name escapes the workspace root
        """
        candidate = (self.root_path / name).resolve()
        root = self.root_path.resolve()
        if candidate == root or root not in candidate.parents:
            raise WorkspaceError(
                f"Path escapes workspace: {name}",
                context={"workspace_id": self.id, "name": name},
            )
        return candidate

    def track(self, path: Path) -> Path:
        """Record a file produced inside the workspace (e.g. a compiled binary)."""
        self.created_files.add(path)
        return path

    async def write_file(self, name: str, content: str) -> Path:
        """Write a UTF-8 text file into the workspace and track it.

        Raises:
            WorkspaceError: the file could not be written
        """
        target = self.path(name)
        try:
            async with aiofiles.open(target, "w", encoding="utf-8") as f:
                await f.write(content)
        except OSError as e:
            raise WorkspaceError(
                f"Failed to write {name}: {e}",
                context={"workspace_id": self.id, "path": str(target)},
            ) from e
        return self.track(target)


class WorkspaceManager:
    """Allocates and destroys per-submission workspaces.

    Thread-safety: identifier generation and the active-workspace registry
    are protected by threading locks; the manager can be shared by judging
    runs on different event loops.
    """

    def __init__(self, base_dir: Path, prefix: str = WORKSPACE_PREFIX) -> None:
        self._base_dir = base_dir
        self._prefix = prefix
        self._active: dict[str, Workspace] = {}
        self._active_lock = threading.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def active_count(self) -> int:
        """Number of workspaces currently allocated."""
        with self._active_lock:
            return len(self._active)

    async def create(self, submission_id: str | None = None) -> Workspace:
        """Create a fresh workspace directory (mode 0700).

        Caller owns the result and must pass it to release().

        Raises:
            WorkspaceError: directory could not be created
        """
        workspace_id = f"{self._prefix}_{generate_workspace_id(submission_id)}"
        root = self._base_dir / workspace_id
        try:
            await aiofiles.os.makedirs(self._base_dir, exist_ok=True)
            await aiofiles.os.mkdir(root, mode=0o700)
        except OSError as e:
            raise WorkspaceError(
                f"Failed to create workspace: {e}",
                context={"workspace_id": workspace_id, "path": str(root)},
            ) from e

        workspace = Workspace(id=workspace_id, root_path=root)
        with self._active_lock:
            self._active[workspace_id] = workspace
        logger.debug("Workspace created", extra={"workspace_id": workspace_id, "path": str(root)})
        return workspace

    async def release(self, workspace: Workspace) -> bool:
        """Remove every file of the workspace and its directory.

        Never raises: cleanup failures are logged and reported as False so
        they can't change a judging verdict.
        """
        with self._active_lock:
            self._active.pop(workspace.id, None)

        ok = True
        for path in sorted(workspace.created_files):
            ok = await cleanup_file(path, context_id=workspace.id, description="workspace file") and ok
        ok = await cleanup_directory(workspace.root_path, context_id=workspace.id, description="workspace") and ok

        if not ok:
            logger.warning(
                "Workspace cleanup incomplete",
                extra={"workspace_id": workspace.id, "path": str(workspace.root_path)},
            )
        return ok

    @asynccontextmanager
    async def acquire(self, submission_id: str | None = None) -> AsyncIterator[Workspace]:
        """Scoped workspace: released on every exit path, cancellation included."""
        workspace = await self.create(submission_id)
        try:
            yield workspace
        finally:
            await self.release(workspace)
