"""Verdict aggregator: the per-submission judging state machine.

    COMPILING ──(compile failed)──────────────────────────► DONE  COMPILATION_ERROR
        │
        └──► RUNNING(0) ─► RUNNING(1) ─► ... ─► RUNNING(N-1) ─► DONE  ACCEPTED / WRONG_ANSWER
                 │              │                    │
                 └──────────────┴─(timeout)──────────┴────────► DONE  TIME_LIMIT_EXCEEDED
                 └──────────────┴─(runtime error)────┴────────► DONE  RUNTIME_ERROR

Test cases run strictly in order, one at a time. A wrong answer is a normal
outcome and the run continues; a timeout or runtime error means the program
is unusable and the remaining test cases are skipped.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from code_judge._logging import get_logger
from code_judge.constants import COMPILATION_ERROR_MARKER, MAX_COMPILER_OUTPUT_CHARS, TIME_LIMIT_EXCEEDED_MARKER
from code_judge.evaluator import Outcome, TestCaseEvaluator
from code_judge.exceptions import InternalError
from code_judge.models import JudgingResult, ProcessResult, TestCase, TestCaseResult, Verdict
from code_judge.runner import ProcessRunner

logger = get_logger(__name__)


class JudgeState(str, Enum):
    COMPILING = "compiling"
    RUNNING = "running"
    DONE = "done"


_ALLOWED_TRANSITIONS: dict[JudgeState, frozenset[JudgeState]] = {
    JudgeState.COMPILING: frozenset({JudgeState.RUNNING, JudgeState.DONE}),
    JudgeState.RUNNING: frozenset({JudgeState.RUNNING, JudgeState.DONE}),
    JudgeState.DONE: frozenset(),
}


def compile_failure_message(process: ProcessResult, timeout_seconds: int) -> str:
    """Compiler diagnostics for error_message, capped."""
    if process.timed_out:
        message = f"Compilation timed out after {timeout_seconds}s"
    else:
        message = (process.stderr or process.stdout).strip() or "Compilation failed"
    return message[:MAX_COMPILER_OUTPUT_CHARS]


class VerdictAggregator:
    """Drives one submission from compilation to a final JudgingResult.

    One instance per judging run; not reusable once DONE.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        evaluator: TestCaseEvaluator,
        test_cases: Sequence[TestCase],
        *,
        context_id: str = "-",
    ) -> None:
        self._runner = runner
        self._evaluator = evaluator
        self._test_cases = tuple(test_cases)
        self._context_id = context_id
        self._state = JudgeState.COMPILING
        self._current_index: int | None = None
        self._results: list[TestCaseResult] = []
        self._first_wrong: int | None = None

    @property
    def state(self) -> JudgeState:
        return self._state

    @property
    def current_index(self) -> int | None:
        """Test case being run while RUNNING, else None."""
        return self._current_index if self._state == JudgeState.RUNNING else None

    def _transition(self, target: JudgeState, index: int | None = None) -> None:
        if target not in _ALLOWED_TRANSITIONS[self._state]:
            raise InternalError(
                f"Invalid judging state transition {self._state.value} -> {target.value}",
                context={"context_id": self._context_id},
            )
        logger.debug(
            f"{self._state.value} -> {target.value}",
            extra={"context_id": self._context_id, "index": index},
        )
        self._state = target
        self._current_index = index

    # -------------------------------------------------------------------------
    # COMPILING
    # -------------------------------------------------------------------------

    async def compile(self, argv: Sequence[str], *, cwd: Path, timeout_seconds: int) -> JudgingResult | None:
        """Run the compiler under its fixed budget.

        Returns:
            None on success (ready to run tests), else the final
            COMPILATION_ERROR result
        """
        process = await self._runner.run(
            argv,
            timeout_ms=timeout_seconds * 1000,
            cwd=cwd,
            name="compile",
            context_id=self._context_id,
        )
        if process.succeeded:
            return None
        return self.compilation_failed(compile_failure_message(process, timeout_seconds))

    def compilation_failed(self, message: str) -> JudgingResult:
        """Final result for a submission that never compiled.

        One unexecuted, failed entry per test case; no process is spawned.
        """
        self._transition(JudgeState.DONE)
        logger.info("Compilation failed", extra={"context_id": self._context_id})
        results = tuple(
            TestCaseResult(
                index=i,
                passed=False,
                input=tc.input,
                expected_output=tc.expected_output,
                error=COMPILATION_ERROR_MARKER,
                is_hidden=tc.is_hidden,
                executed=False,
            )
            for i, tc in enumerate(self._test_cases)
        )
        return JudgingResult(
            verdict=Verdict.COMPILATION_ERROR,
            total_runtime_ms=0,
            test_cases_passed=0,
            total_test_cases=len(self._test_cases),
            results=results,
            error_message=message,
        )

    # -------------------------------------------------------------------------
    # RUNNING
    # -------------------------------------------------------------------------

    async def run_tests(
        self,
        run_cmd: Sequence[str],
        *,
        time_limit_ms: int,
        cwd: Path,
        memory_limit_mb: int | None = None,
    ) -> JudgingResult:
        """Evaluate every test case in order, stopping on the first fatal outcome."""
        for index, test_case in enumerate(self._test_cases):
            self._transition(JudgeState.RUNNING, index)
            evaluation = await self._evaluator.evaluate(
                run_cmd,
                test_case,
                index,
                time_limit_ms,
                cwd=cwd,
                memory_limit_mb=memory_limit_mb,
                context_id=self._context_id,
            )
            self._results.append(evaluation.result)

            if evaluation.outcome == Outcome.TIMED_OUT:
                return self._finish(Verdict.TIME_LIMIT_EXCEEDED, f"Time limit exceeded on test case {index + 1}")
            if evaluation.outcome == Outcome.RUNTIME_ERROR:
                return self._finish(Verdict.RUNTIME_ERROR, evaluation.result.error)
            if evaluation.outcome == Outcome.WRONG_ANSWER and self._first_wrong is None:
                self._first_wrong = index

        if self._first_wrong is None:
            return self._finish(Verdict.ACCEPTED, None)
        return self._finish(Verdict.WRONG_ANSWER, f"Wrong answer on test case {self._first_wrong + 1}")

    def interrupted(self) -> JudgingResult | None:
        """Settle a run cut short by the overall deadline.

        A test case still running when the deadline expires has used up its
        time budget and is reported as TIME_LIMIT_EXCEEDED, like one the
        runner timed out itself.

        Returns:
            The final result when a test case was in flight, else None
        """
        index = self.current_index
        if index is None:
            return None
        test_case = self._test_cases[index]
        self._results.append(
            TestCaseResult(
                index=index,
                passed=False,
                input=test_case.input,
                expected_output=test_case.expected_output,
                error=TIME_LIMIT_EXCEEDED_MARKER,
                is_hidden=test_case.is_hidden,
            )
        )
        return self._finish(Verdict.TIME_LIMIT_EXCEEDED, f"Time limit exceeded on test case {index + 1}")

    def _finish(self, verdict: Verdict, message: str | None) -> JudgingResult:
        self._transition(JudgeState.DONE)
        results = self._results
        result = JudgingResult(
            verdict=verdict,
            total_runtime_ms=sum(r.runtime_ms for r in results),
            test_cases_passed=sum(1 for r in results if r.passed),
            total_test_cases=len(self._test_cases),
            results=tuple(results),
            error_message=message,
        )
        logger.info(
            f"Verdict {verdict.value}",
            extra={
                "context_id": self._context_id,
                "passed": result.test_cases_passed,
                "total": result.total_test_cases,
                "executed": len(results),
            },
        )
        return result
