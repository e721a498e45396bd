"""Process runner: one child process, bounded wall-clock time.

- stdin is written in full and then closed so programs reading to EOF finish
- stdout/stderr are drained concurrently (prevents 64KB pipe deadlock) and
  each capped at max_output_bytes; the excess is read and discarded
- the deadline is enforced with asyncio.timeout; on expiry the whole process
  tree is SIGKILLed and reaped before run() returns
- cancellation of the calling task kills the tree too, then propagates
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from code_judge._logging import get_logger
from code_judge.constants import KILL_REAP_TIMEOUT_SECONDS, MAX_OUTPUT_BYTES, READ_CHUNK_BYTES
from code_judge.exceptions import ToolchainUnavailableError
from code_judge.models import ProcessResult
from code_judge.platform_utils import ProcessWrapper, supports_process_groups
from code_judge.resource_cleanup import cleanup_process

logger = get_logger(__name__)


class _CappedBuffer:
    """Byte sink that keeps the first ``limit`` bytes and counts the rest."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._data = bytearray()
        self.truncated = False

    def feed(self, chunk: bytes) -> None:
        room = self._limit - len(self._data)
        if room > 0:
            self._data += chunk[:room]
        if len(chunk) > room:
            self.truncated = True

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")


def _address_space_limit(memory_limit_mb: int) -> Callable[[], None]:
    """preexec_fn applying RLIMIT_AS in the child (POSIX only)."""
    limit = memory_limit_mb * 1024 * 1024

    def _apply() -> None:
        import resource  # noqa: PLC0415 - POSIX-only module

        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))

    return _apply


async def _feed_stdin(stream: asyncio.StreamWriter | None, data: bytes) -> None:
    if stream is None:
        return
    # Program may exit (or close stdin) without reading everything
    with contextlib.suppress(BrokenPipeError, ConnectionResetError):
        if data:
            stream.write(data)
            await stream.drain()
    stream.close()
    with contextlib.suppress(BrokenPipeError, ConnectionResetError):
        await stream.wait_closed()


async def _drain(stream: asyncio.StreamReader | None, sink: _CappedBuffer) -> None:
    if stream is None:
        return
    while chunk := await stream.read(READ_CHUNK_BYTES):
        sink.feed(chunk)


async def _kill_and_reap(proc: ProcessWrapper, name: str, context_id: str) -> None:
    """Kill the process tree; runs to completion even if the caller is cancelled meanwhile."""
    cleanup = asyncio.ensure_future(cleanup_process(proc, name, context_id, kill_timeout=KILL_REAP_TIMEOUT_SECONDS))
    try:
        await asyncio.shield(cleanup)
    except asyncio.CancelledError:
        # shield() raises as soon as we are cancelled; the kill is still running
        await cleanup
        raise


class ProcessRunner:
    """Spawns single child processes under a hard wall-clock deadline.

    Stateless apart from its settings; one instance is shared by all
    judging runs.

    Attributes:
        max_output_bytes: Per-stream capture cap
        enforce_memory_limit: Apply memory_limit_mb as RLIMIT_AS when given
    """

    def __init__(self, *, max_output_bytes: int = MAX_OUTPUT_BYTES, enforce_memory_limit: bool = False) -> None:
        self.max_output_bytes = max_output_bytes
        self.enforce_memory_limit = enforce_memory_limit

    async def run(
        self,
        argv: Sequence[str],
        *,
        stdin: str = "",
        timeout_ms: int,
        cwd: Path | None = None,
        memory_limit_mb: int | None = None,
        name: str = "process",
        context_id: str = "-",
    ) -> ProcessResult:
        """Run one command to completion or until the deadline.

        Args:
            argv: Command and arguments (no shell)
            stdin: Text written to the child's stdin, which is then closed
            timeout_ms: Hard wall-clock deadline
            cwd: Working directory of the child
            memory_limit_mb: Address space cap (only with enforce_memory_limit)
            name: Label for logs (e.g. "compile", "test 2")
            context_id: Workspace id for log correlation

        Returns:
            ProcessResult; timed_out=True means the tree was killed

        Raises:
            ToolchainUnavailableError: argv[0] could not be executed
            asyncio.CancelledError: caller cancelled (child tree already killed)
        """
        use_group = supports_process_groups()
        preexec_fn = None
        if self.enforce_memory_limit and memory_limit_mb and use_group:
            preexec_fn = _address_space_limit(memory_limit_mb)

        started = time.perf_counter()
        try:
            async_proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=use_group,  # own process group for tree kill
                preexec_fn=preexec_fn,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise ToolchainUnavailableError(
                f"Failed to launch {argv[0]}: {e}",
                executable=str(argv[0]),
                context={"context_id": context_id, "name": name},
            ) from e

        proc = ProcessWrapper(async_proc, own_process_group=use_group)
        logger.debug(f"{name} started", extra={"context_id": context_id, "pid": proc.pid, "argv": list(argv)})

        stdout = _CappedBuffer(self.max_output_bytes)
        stderr = _CappedBuffer(self.max_output_bytes)
        timed_out = False

        try:
            async with asyncio.timeout(timeout_ms / 1000):
                async with asyncio.TaskGroup() as tg:
                    tg.create_task(_feed_stdin(proc.stdin, stdin.encode("utf-8")))
                    tg.create_task(_drain(proc.stdout, stdout))
                    tg.create_task(_drain(proc.stderr, stderr))
                await proc.wait()
        except TimeoutError:
            timed_out = True
            logger.info(
                f"{name} exceeded {timeout_ms}ms, killing process tree",
                extra={"context_id": context_id, "pid": proc.pid, "timeout_ms": timeout_ms},
            )
            await _kill_and_reap(proc, name, context_id)
        except BaseException:
            # Cancellation or an unexpected failure: never leave the child behind
            await _kill_and_reap(proc, name, context_id)
            raise
        else:
            await proc.sweep_group()

        wall_time_ms = int((time.perf_counter() - started) * 1000)
        result = ProcessResult(
            stdout=stdout.text(),
            stderr=stderr.text(),
            exit_code=proc.returncode,
            wall_time_ms=wall_time_ms,
            timed_out=timed_out,
            output_truncated=stdout.truncated or stderr.truncated,
        )
        logger.debug(
            f"{name} finished",
            extra={
                "context_id": context_id,
                "exit_code": result.exit_code,
                "wall_time_ms": wall_time_ms,
                "timed_out": timed_out,
            },
        )
        return result
