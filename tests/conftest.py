"""Shared pytest fixtures for code-judge tests."""

import asyncio
import shutil
import sys
import time
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import psutil
import pytest

from code_judge.config import JudgeConfig
from code_judge.judge import Judge
from code_judge.platform_utils import HostOS, detect_host_os, supports_process_groups
from code_judge.settings import Settings
from code_judge.toolchains import ToolchainRegistry, build_default_registry

# ============================================================================
# Shared Skip Markers
# ============================================================================

skip_unless_linux = pytest.mark.skipif(
    detect_host_os() != HostOS.LINUX,
    reason="This test requires Linux (RLIMIT_AS semantics, process groups)",
)

skip_unless_posix = pytest.mark.skipif(
    not supports_process_groups(),
    reason="This test requires POSIX process groups",
)

skip_unless_gxx = pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")
skip_unless_gcc = pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not installed")
skip_unless_node = pytest.mark.skipif(shutil.which("node") is None, reason="node not installed")
skip_unless_java = pytest.mark.skipif(
    shutil.which("javac") is None or shutil.which("java") is None,
    reason="JDK (javac + java) not installed",
)

# Generous per-test budget for programs expected to finish: interpreter
# startup on a loaded CI runner can take hundreds of milliseconds.
RELAXED_TIME_LIMIT_MS = 10_000

# ============================================================================
# Process helpers
# ============================================================================


def pid_gone(pid: int) -> bool:
    """True when pid no longer exists or is only an unreaped zombie.

    Orphans are reparented to PID 1; inside minimal containers PID 1 may
    never reap them, which leaves a zombie that holds no resources.
    """
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


def wait_pid_gone(pid: int, timeout: float = 5.0) -> bool:
    """Poll until pid_gone(pid) or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pid_gone(pid):
            return True
        time.sleep(0.05)
    return pid_gone(pid)


async def wait_for_file(path: Path, timeout: float = 10.0) -> str:
    """Poll until path exists with content, return the content."""
    async with asyncio.timeout(timeout):
        while True:
            if path.exists():
                content = path.read_text().strip()
                if content:
                    return content
            await asyncio.sleep(0.02)


# ============================================================================
# Config Fixtures
# ============================================================================


@pytest.fixture
def workspace_dir(tmp_path: Path) -> Path:
    """Base directory for workspaces, unique per test."""
    return tmp_path / "workspaces"


@pytest.fixture
def settings(workspace_dir: Path) -> Settings:
    """Settings using the running interpreter as the Python toolchain."""
    return Settings(workspace_dir=workspace_dir, python_bin=sys.executable)


@pytest.fixture
def registry(settings: Settings) -> ToolchainRegistry:
    return build_default_registry(settings)


@pytest.fixture
def make_judge(workspace_dir: Path, registry: ToolchainRegistry) -> Callable[..., Judge]:
    """Factory for Judge instances with config overrides.

    Usage:
        def test_something(make_judge):
            judge = make_judge(stderr_is_fatal=False)
    """

    def _factory(registry_override: ToolchainRegistry | None = None, **overrides: Any) -> Judge:
        config = JudgeConfig(workspace_dir=workspace_dir, **overrides)
        return Judge(config, registry_override or registry)

    return _factory


@pytest.fixture
async def judge(make_judge: Callable[..., Judge]) -> AsyncGenerator[Judge, None]:
    """Judge instance for integration tests.

    Usage:
        async def test_something(judge: Judge) -> None:
            result = await judge.run(source_code="print(1)", language="python", test_cases=[...])
    """
    async with make_judge() as j:
        yield j


def leftover_entries(workspace_dir: Path) -> list[Path]:
    """Anything still present under the workspace base directory."""
    if not workspace_dir.exists():
        return []
    return list(workspace_dir.iterdir())
