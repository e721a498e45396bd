"""Tests for ProcessRunner: real child processes, no mocks.

Children are short Python scripts run with the current interpreter so the
suite needs no toolchain beyond Python itself.
"""

import asyncio
import signal
import sys
from pathlib import Path

import pytest

from code_judge.exceptions import ToolchainUnavailableError
from code_judge.runner import ProcessRunner
from tests.conftest import skip_unless_linux, skip_unless_posix, wait_for_file, wait_pid_gone


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


# ============================================================================
# Normal completion
# ============================================================================


class TestRunCompletes:
    async def test_stdin_echo(self) -> None:
        runner = ProcessRunner()
        code = "import sys; sys.stdout.write(sys.stdin.read().upper())"
        result = await runner.run(_py(code), stdin="abc\n", timeout_ms=10_000)
        assert result.stdout == "ABC\n"
        assert result.stderr == ""
        assert result.exit_code == 0
        assert result.timed_out is False
        assert result.succeeded
        assert result.wall_time_ms >= 0

    async def test_stdin_closed_when_empty(self) -> None:
        """Programs reading to EOF finish even when no input is given."""
        runner = ProcessRunner()
        result = await runner.run(_py("import sys; print(len(sys.stdin.read()))"), timeout_ms=10_000)
        assert result.stdout.strip() == "0"

    async def test_stderr_and_exit_code(self) -> None:
        runner = ProcessRunner()
        result = await runner.run(
            _py("import sys; print('out'); print('bad', file=sys.stderr); sys.exit(3)"),
            timeout_ms=10_000,
        )
        assert result.stdout == "out\n"
        assert result.stderr == "bad\n"
        assert result.exit_code == 3
        assert not result.succeeded

    @skip_unless_posix
    async def test_killed_by_signal(self) -> None:
        runner = ProcessRunner()
        result = await runner.run(_py("import os, signal; os.kill(os.getpid(), signal.SIGKILL)"), timeout_ms=10_000)
        assert result.exit_code == -signal.SIGKILL
        assert result.timed_out is False

    async def test_cwd(self, tmp_path: Path) -> None:
        runner = ProcessRunner()
        result = await runner.run(_py("import os; print(os.getcwd())"), timeout_ms=10_000, cwd=tmp_path)
        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    async def test_large_input_unread(self) -> None:
        """Child exits without reading 4MB of stdin: no BrokenPipe escapes."""
        runner = ProcessRunner()
        result = await runner.run(_py("print('done')"), stdin="x" * (4 * 1024 * 1024), timeout_ms=10_000)
        assert result.stdout == "done\n"
        assert result.exit_code == 0

    async def test_large_output_both_streams(self) -> None:
        """Both pipes far beyond the kernel buffer: concurrent draining avoids deadlock."""
        runner = ProcessRunner()
        code = "import sys; sys.stdout.write('o' * 300000); sys.stderr.write('e' * 300000)"
        result = await runner.run(_py(code), timeout_ms=10_000)
        assert len(result.stdout) == 300_000
        assert len(result.stderr) == 300_000
        assert result.output_truncated is False

    async def test_output_capped(self) -> None:
        runner = ProcessRunner(max_output_bytes=1024)
        result = await runner.run(_py("print('y' * 100000)"), timeout_ms=10_000)
        assert len(result.stdout) == 1024
        assert result.output_truncated is True
        assert result.exit_code == 0

    async def test_invalid_utf8_replaced(self) -> None:
        runner = ProcessRunner()
        result = await runner.run(_py("import sys; sys.stdout.buffer.write(b'ok\\xff\\n')"), timeout_ms=10_000)
        assert result.stdout.startswith("ok")
        assert "�" in result.stdout


# ============================================================================
# Failures to launch
# ============================================================================


class TestLaunchFailure:
    async def test_missing_binary(self, tmp_path: Path) -> None:
        runner = ProcessRunner()
        with pytest.raises(ToolchainUnavailableError) as exc_info:
            await runner.run([str(tmp_path / "no-such-compiler")], timeout_ms=1000)
        assert exc_info.value.executable.endswith("no-such-compiler")


# ============================================================================
# Deadline and cancellation
# ============================================================================


class TestDeadline:
    async def test_timeout_kills(self) -> None:
        runner = ProcessRunner()
        result = await runner.run(_py("import time; time.sleep(60)"), timeout_ms=300)
        assert result.timed_out is True
        assert result.exit_code is not None
        assert result.wall_time_ms < 10_000

    async def test_busy_loop_killed(self) -> None:
        runner = ProcessRunner()
        result = await runner.run(_py("while True: pass"), timeout_ms=300)
        assert result.timed_out is True

    async def test_partial_output_kept(self) -> None:
        runner = ProcessRunner()
        code = "import sys, time; print('early'); sys.stdout.flush(); time.sleep(60)"
        result = await runner.run(_py(code), timeout_ms=1000)
        assert result.timed_out is True
        assert result.stdout == "early\n"

    @skip_unless_posix
    async def test_timeout_kills_grandchildren(self, tmp_path: Path) -> None:
        pid_file = tmp_path / "grandchild.pid"
        code = (
            "import subprocess, sys, time\n"
            "p = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
            f"open({str(pid_file)!r}, 'w').write(str(p.pid))\n"
            "time.sleep(60)\n"
        )
        runner = ProcessRunner()
        result = await runner.run(_py(code), timeout_ms=2000)

        assert result.timed_out is True
        grandchild = int(pid_file.read_text())
        assert wait_pid_gone(grandchild)

    @skip_unless_posix
    async def test_cancel_kills_tree(self, tmp_path: Path) -> None:
        pid_file = tmp_path / "child.pid"
        code = f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); time.sleep(60)"
        runner = ProcessRunner()
        task = asyncio.create_task(runner.run(_py(code), timeout_ms=60_000))

        pid = int(await wait_for_file(pid_file))
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert wait_pid_gone(pid)

    @skip_unless_posix
    async def test_detached_background_swept(self, tmp_path: Path) -> None:
        """A background process that closed its pipes dies with the run."""
        code = (
            "import subprocess, sys\n"
            "p = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'],\n"
            "                     stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)\n"
            "print(p.pid)\n"
        )
        runner = ProcessRunner()
        result = await runner.run(_py(code), timeout_ms=10_000)

        assert result.timed_out is False
        assert wait_pid_gone(int(result.stdout.strip()))


# ============================================================================
# Memory limit
# ============================================================================


class TestMemoryLimit:
    @skip_unless_linux
    async def test_enforced(self) -> None:
        runner = ProcessRunner(enforce_memory_limit=True)
        result = await runner.run(_py("x = bytearray(1024 * 1024 * 1024)"), timeout_ms=10_000, memory_limit_mb=128)
        assert result.exit_code != 0
        assert "MemoryError" in result.stderr

    async def test_advisory_by_default(self) -> None:
        runner = ProcessRunner()
        code = "x = bytearray(64 * 1024 * 1024); print(len(x))"
        result = await runner.run(_py(code), timeout_ms=10_000, memory_limit_mb=16)
        assert result.exit_code == 0
