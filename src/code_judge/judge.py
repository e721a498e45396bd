"""Judge - the judging engine facade.

The only entry point external collaborators call. Orchestrates
toolchain lookup -> workspace -> source write -> compile -> test loop ->
workspace cleanup and always returns a well-formed JudgingResult, except for
an unsupported language, which is rejected before anything is allocated.

Example:
    ```python
    async with Judge() as judge:
        result = await judge.run(
            source_code="a, b = map(int, input().split())\\nprint(a + b)",
            language="python",
            test_cases=[TestCase(input="1 2", expected_output="3")],
            time_limit_ms=1000,
        )
        assert result.verdict == Verdict.ACCEPTED

        output = await judge.execute("print(input()[::-1])", "python", stdin="abc")
        assert output.stdout == "cba\\n"
    ```
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any, Self

from code_judge._logging import get_logger
from code_judge.aggregator import VerdictAggregator, compile_failure_message
from code_judge.config import JudgeConfig
from code_judge.constants import (
    DEADLINE_EXCEEDED_MESSAGE,
    DEFAULT_MEMORY_LIMIT_MB,
    DEFAULT_TIME_LIMIT_MS,
    INTERNAL_ERROR_MESSAGE,
    KILL_REAP_BUDGET_SECONDS,
    TIME_LIMIT_EXCEEDED_MARKER,
)
from code_judge.evaluator import TestCaseEvaluator, normalize_input
from code_judge.exceptions import CodeValidationError, CompilationError
from code_judge.models import ExecutionOutput, ExecutionRequest, JudgingResult, TestCase, Verdict
from code_judge.runner import ProcessRunner
from code_judge.toolchains import ToolchainRegistry, ToolchainSpec, build_default_registry
from code_judge.workspace import Workspace, WorkspaceManager

logger = get_logger(__name__)


class Judge:
    """Judging engine facade.

    Each judge() or execute() call occupies one asyncio task for its whole
    duration and one of ``config.max_concurrent_runs`` slots. Test cases of a
    run are never parallelized. Cancelling the calling task kills the running
    child process tree and removes the workspace before the cancellation
    propagates.

    Attributes:
        config: Engine configuration
        registry: Read-only toolchain registry shared by all runs
    """

    def __init__(
        self,
        config: JudgeConfig | None = None,
        registry: ToolchainRegistry | None = None,
    ) -> None:
        self.config = config or JudgeConfig()
        self.registry = registry or build_default_registry()
        self._workspaces = WorkspaceManager(self.config.get_workspace_dir())
        self._runner = ProcessRunner(
            max_output_bytes=self.config.max_output_bytes,
            enforce_memory_limit=self.config.enforce_memory_limit,
        )
        self._evaluator = TestCaseEvaluator(self._runner, stderr_is_fatal=self.config.stderr_is_fatal)
        # asyncio.Semaphore binds to the loop it first blocks on; keep one per loop
        self._slots: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore] = (
            weakref.WeakKeyDictionary()
        )
        self._inflight: set[asyncio.Task[Any]] = set()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def workspaces(self) -> WorkspaceManager:
        return self._workspaces

    async def close(self) -> None:
        """Cancel in-flight runs on the current loop and wait for their cleanup."""
        current = asyncio.current_task()
        loop = asyncio.get_running_loop()
        tasks = [t for t in self._inflight if t is not current and not t.done() and t.get_loop() is loop]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("Cancelling in-flight judging runs", extra={"count": len(tasks)})
            await asyncio.gather(*tasks, return_exceptions=True)

    @asynccontextmanager
    async def _occupy_slot(self) -> AsyncIterator[None]:
        """Register the calling task for close() and hold a concurrency slot."""
        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
        try:
            loop = asyncio.get_running_loop()
            semaphore = self._slots.get(loop)
            if semaphore is None:
                semaphore = self._slots[loop] = asyncio.Semaphore(self.config.max_concurrent_runs)
            async with semaphore:
                yield
        finally:
            if task is not None:
                self._inflight.discard(task)

    def _deadline_seconds(self, request: ExecutionRequest, toolchain: ToolchainSpec) -> float:
        """Overall bound on one run.

        Every test case gets its time limit, the configured slack and one
        worst-case process tree kill; compilation gets its budget and a kill.
        """
        slack = self.config.per_test_slack_ms / 1000
        per_test = request.time_limit_ms / 1000 + slack + KILL_REAP_BUDGET_SECONDS
        total = len(request.test_cases) * per_test + slack
        if toolchain.requires_compilation:
            total += self.config.compile_timeout_seconds + KILL_REAP_BUDGET_SECONDS
        return total

    def _log_internal_failure(self, error: Exception, toolchain: ToolchainSpec, submission_id: str | None) -> None:
        logger.error(
            "Internal failure during judging",
            extra={
                "submission_id": submission_id,
                "language": toolchain.language.value,
                "error": str(error),
                "error_type": type(error).__name__,
                "context": getattr(error, "context", None),
            },
            exc_info=error,
        )

    # -------------------------------------------------------------------------
    # Graded runs
    # -------------------------------------------------------------------------

    async def judge(self, request: ExecutionRequest, *, submission_id: str | None = None) -> JudgingResult:
        """Judge one submission.

        Args:
            request: Source, language, test cases and limits
            submission_id: Optional caller id, used in workspace names and logs

        Returns:
            JudgingResult for every request that names a supported language

        Raises:
            UnsupportedLanguageError: language not in the registry (nothing allocated)
            asyncio.CancelledError: caller cancelled (child killed, workspace removed)
        """
        toolchain = self.registry.resolve(request.language)

        async with self._occupy_slot():
            try:
                # Workspace release stays outside the deadline
                async with self._workspaces.acquire(submission_id) as workspace:
                    return await self._judge_in_workspace(request, toolchain, workspace)
            except Exception as e:
                self._log_internal_failure(e, toolchain, submission_id)
                return JudgingResult(
                    verdict=Verdict.RUNTIME_ERROR,
                    test_cases_passed=0,
                    total_test_cases=len(request.test_cases),
                    error_message=INTERNAL_ERROR_MESSAGE,
                )

    async def _judge_in_workspace(
        self,
        request: ExecutionRequest,
        toolchain: ToolchainSpec,
        workspace: Workspace,
    ) -> JudgingResult:
        logger.info(
            "Judging submission",
            extra={
                "workspace_id": workspace.id,
                "language": toolchain.language.value,
                "test_cases": len(request.test_cases),
                "time_limit_ms": request.time_limit_ms,
            },
        )
        aggregator = VerdictAggregator(
            self._runner,
            self._evaluator,
            request.test_cases,
            context_id=workspace.id,
        )
        deadline = self._deadline_seconds(request, toolchain)
        timer = asyncio.timeout(deadline)
        try:
            async with timer:
                return await self._compile_and_run(request, toolchain, workspace, aggregator)
        except TimeoutError:
            if not timer.expired():
                raise
            logger.error(
                "Judging deadline exceeded",
                extra={"workspace_id": workspace.id, "deadline_s": deadline, "state": aggregator.state.value},
            )
            settled = aggregator.interrupted()
            if settled is not None:
                return settled
            return JudgingResult(
                verdict=Verdict.RUNTIME_ERROR,
                test_cases_passed=0,
                total_test_cases=len(request.test_cases),
                error_message=DEADLINE_EXCEEDED_MESSAGE,
            )

    async def _compile_and_run(
        self,
        request: ExecutionRequest,
        toolchain: ToolchainSpec,
        workspace: Workspace,
        aggregator: VerdictAggregator,
    ) -> JudgingResult:
        try:
            values = await self._prepare_sources(workspace, toolchain, request.source_code)
        except (CodeValidationError, CompilationError) as e:
            return aggregator.compilation_failed(e.message)

        if toolchain.compile_cmd is not None:
            failed = await aggregator.compile(
                toolchain.render(toolchain.compile_cmd, **values),
                cwd=workspace.root_path,
                timeout_seconds=self.config.compile_timeout_seconds,
            )
            if failed is not None:
                return failed

        return await aggregator.run_tests(
            toolchain.render(toolchain.run_cmd, **values),
            time_limit_ms=request.time_limit_ms,
            cwd=workspace.root_path,
            memory_limit_mb=request.memory_limit_mb,
        )

    async def _prepare_sources(
        self,
        workspace: Workspace,
        toolchain: ToolchainSpec,
        source_code: str,
    ) -> dict[str, str]:
        """Sanitize and write the source file, then compute the command template values.

        Raises:
            CodeValidationError: denylisted construct (denylist enabled)
            CompilationError: the toolchain's entry symbol is missing
        """
        source = toolchain.sanitize(source_code, enforce_denylist=self.config.enable_source_denylist)
        entry = toolchain.extract_entry(source)
        source_path = await workspace.write_file(toolchain.source_filename(entry), source)
        executable = ""
        if toolchain.executable_name:
            executable = str(workspace.track(workspace.path(toolchain.executable_name)))
        return {
            "source": str(source_path),
            "executable": executable,
            "workdir": str(workspace.root_path.resolve()),
            "entry": entry or "",
        }

    async def run(
        self,
        source_code: str,
        language: str,
        test_cases: Iterable[TestCase | Mapping[str, Any]],
        time_limit_ms: int = DEFAULT_TIME_LIMIT_MS,
        memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB,
        *,
        submission_id: str | None = None,
    ) -> JudgingResult:
        """Build an ExecutionRequest and judge it.

        Raises:
            pydantic.ValidationError: malformed request fields
            UnsupportedLanguageError: language not in the registry
        """
        request = ExecutionRequest(
            source_code=source_code,
            language=language,
            test_cases=tuple(tc if isinstance(tc, TestCase) else TestCase.model_validate(tc) for tc in test_cases),
            time_limit_ms=time_limit_ms,
            memory_limit_mb=memory_limit_mb,
        )
        return await self.judge(request, submission_id=submission_id)

    def judge_sync(self, request: ExecutionRequest, *, submission_id: str | None = None) -> JudgingResult:
        """Blocking variant of judge() for callers without an event loop.

        Runs a private event loop for the duration of the call; the
        concurrency cap applies per event loop.
        """
        return asyncio.run(self.judge(request, submission_id=submission_id))

    # -------------------------------------------------------------------------
    # Ungraded runs
    # -------------------------------------------------------------------------

    async def execute(
        self,
        source_code: str,
        language: str,
        stdin: str = "",
        time_limit_ms: int = DEFAULT_TIME_LIMIT_MS,
        memory_limit_mb: int = DEFAULT_MEMORY_LIMIT_MB,
        *,
        submission_id: str | None = None,
    ) -> ExecutionOutput:
        """Compile and run a program once on custom input, without grading.

        Goes through the same toolchain, workspace, compile and runner path
        as judge() and shares its concurrency slots. stdin gets the same
        normalization as test case input.

        Raises:
            pydantic.ValidationError: malformed source or limits
            UnsupportedLanguageError: language not in the registry
        """
        request = ExecutionRequest(
            source_code=source_code,
            language=language,
            test_cases=(TestCase(input=stdin, expected_output=""),),
            time_limit_ms=time_limit_ms,
            memory_limit_mb=memory_limit_mb,
        )
        toolchain = self.registry.resolve(request.language)

        async with self._occupy_slot():
            try:
                async with self._workspaces.acquire(submission_id) as workspace:
                    return await self._execute_in_workspace(request, toolchain, workspace)
            except Exception as e:
                self._log_internal_failure(e, toolchain, submission_id)
                return ExecutionOutput(error_message=INTERNAL_ERROR_MESSAGE)

    async def _execute_in_workspace(
        self,
        request: ExecutionRequest,
        toolchain: ToolchainSpec,
        workspace: Workspace,
    ) -> ExecutionOutput:
        logger.info(
            "Executing program",
            extra={"workspace_id": workspace.id, "language": toolchain.language.value},
        )
        deadline = self._deadline_seconds(request, toolchain)
        timer = asyncio.timeout(deadline)
        try:
            async with timer:
                try:
                    values = await self._prepare_sources(workspace, toolchain, request.source_code)
                except (CodeValidationError, CompilationError) as e:
                    return ExecutionOutput(compiled=False, error_message=e.message)

                if toolchain.compile_cmd is not None:
                    compile_seconds = self.config.compile_timeout_seconds
                    build = await self._runner.run(
                        toolchain.render(toolchain.compile_cmd, **values),
                        timeout_ms=compile_seconds * 1000,
                        cwd=workspace.root_path,
                        name="compile",
                        context_id=workspace.id,
                    )
                    if not build.succeeded:
                        return ExecutionOutput(
                            compiled=False,
                            error_message=compile_failure_message(build, compile_seconds),
                        )

                process = await self._runner.run(
                    toolchain.render(toolchain.run_cmd, **values),
                    stdin=normalize_input(request.test_cases[0].input),
                    timeout_ms=request.time_limit_ms,
                    cwd=workspace.root_path,
                    memory_limit_mb=request.memory_limit_mb,
                    name="run",
                    context_id=workspace.id,
                )
        except TimeoutError:
            if not timer.expired():
                raise
            logger.error("Execution deadline exceeded", extra={"workspace_id": workspace.id, "deadline_s": deadline})
            return ExecutionOutput(timed_out=True, error_message=TIME_LIMIT_EXCEEDED_MARKER)

        return ExecutionOutput(
            stdout=process.stdout,
            stderr=process.stderr,
            exit_code=process.exit_code,
            runtime_ms=process.wall_time_ms,
            timed_out=process.timed_out,
            output_truncated=process.output_truncated,
            error_message=TIME_LIMIT_EXCEEDED_MARKER if process.timed_out else None,
        )
