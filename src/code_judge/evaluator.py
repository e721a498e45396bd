"""Test case evaluator: run the program once and classify the outcome."""

from __future__ import annotations

import signal
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from code_judge._logging import get_logger
from code_judge.constants import TIME_LIMIT_EXCEEDED_MARKER
from code_judge.models import ProcessResult, TestCase, TestCaseResult
from code_judge.runner import ProcessRunner

logger = get_logger(__name__)


class Outcome(str, Enum):
    """Per-test classification handed to the aggregator."""

    PASSED = "passed"
    WRONG_ANSWER = "wrong-answer"
    TIMED_OUT = "timed-out"
    RUNTIME_ERROR = "runtime-error"

    @property
    def fatal(self) -> bool:
        """Stops the remaining test cases."""
        return self in (Outcome.TIMED_OUT, Outcome.RUNTIME_ERROR)


@dataclass(frozen=True)
class Evaluation:
    result: TestCaseResult
    outcome: Outcome
    process: ProcessResult


def normalize_input(raw: str) -> str:
    """Prepare stored test input for a program's stdin.

    Inputs entered through web forms often carry literal ``\\n`` escape
    sequences instead of newlines; those are expanded. A trailing newline is
    added because line-oriented readers expect one.
    """
    text = raw.replace("\\n", "\n") if "\\n" in raw else raw
    if not text.endswith("\n"):
        text += "\n"
    return text


def outputs_match(actual: str, expected: str) -> bool:
    """Exact comparison after trimming leading/trailing whitespace only."""
    return actual.strip() == expected.strip()


def describe_failure(process: ProcessResult) -> str:
    """Runtime error text: stderr verbatim, else the exit status."""
    if process.stderr:
        return process.stderr
    code = process.exit_code
    if code is not None and code < 0:
        try:
            return f"Process terminated by signal {signal.Signals(-code).name}"
        except ValueError:
            return f"Process terminated by signal {-code}"
    return f"Process exited with code {code}"


class TestCaseEvaluator:
    """Runs one test case through the ProcessRunner and grades it."""

    __test__ = False  # not a pytest class

    def __init__(self, runner: ProcessRunner, *, stderr_is_fatal: bool = True) -> None:
        self._runner = runner
        self._stderr_is_fatal = stderr_is_fatal

    async def evaluate(
        self,
        run_cmd: Sequence[str],
        test_case: TestCase,
        index: int,
        timeout_ms: int,
        *,
        cwd: Path | None = None,
        memory_limit_mb: int | None = None,
        context_id: str = "-",
    ) -> Evaluation:
        process = await self._runner.run(
            run_cmd,
            stdin=normalize_input(test_case.input),
            timeout_ms=timeout_ms,
            cwd=cwd,
            memory_limit_mb=memory_limit_mb,
            name=f"test {index}",
            context_id=context_id,
        )
        actual = process.stdout.strip()

        if process.timed_out:
            outcome = Outcome.TIMED_OUT
            passed = False
            error: str | None = TIME_LIMIT_EXCEEDED_MARKER
        elif process.exit_code != 0 or (self._stderr_is_fatal and process.stderr):
            outcome = Outcome.RUNTIME_ERROR
            passed = False
            error = describe_failure(process)
        else:
            passed = outputs_match(process.stdout, test_case.expected_output)
            outcome = Outcome.PASSED if passed else Outcome.WRONG_ANSWER
            error = process.stderr or None

        logger.debug(
            f"test {index}: {outcome.value}",
            extra={"context_id": context_id, "index": index, "runtime_ms": process.wall_time_ms},
        )
        result = TestCaseResult(
            index=index,
            passed=passed,
            input=test_case.input,
            expected_output=test_case.expected_output,
            actual_output=actual,
            runtime_ms=process.wall_time_ms,
            error=error,
            is_hidden=test_case.is_hidden,
        )
        return Evaluation(result=result, outcome=outcome, process=process)
