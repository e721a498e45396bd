"""Data models for code-judge."""

from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from code_judge import constants


class Language(str, Enum):
    """Supported programming languages."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    CPP = "cpp"
    C = "c"
    JAVA = "java"


class Verdict(str, Enum):
    """Final classification of a submission."""

    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong-answer"
    TIME_LIMIT_EXCEEDED = "time-limit-exceeded"
    RUNTIME_ERROR = "runtime-error"
    COMPILATION_ERROR = "compilation-error"


class TestCase(BaseModel):
    """One (input, expected output) pair, borrowed read-only for a judging run."""

    __test__ = False  # not a pytest class

    model_config = ConfigDict(frozen=True)

    input: str = Field(default="", description="Text fed to the program's stdin")
    expected_output: str = Field(description="Expected stdout (compared whitespace-trimmed)")
    is_hidden: bool = Field(default=False, description="Hidden from the learner in redacted results")


class ExecutionRequest(BaseModel):
    """A submission to judge. Immutable once created.

    ``language`` is kept as a plain string so that an unknown identifier
    reaches the toolchain registry and fails with UnsupportedLanguageError
    instead of a schema error.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_code: str = Field(max_length=constants.MAX_CODE_SIZE, description="Untrusted source code")
    language: str = Field(description="Language identifier (see Language)")
    test_cases: tuple[TestCase, ...] = Field(min_length=1, description="Ordered test cases")
    time_limit_ms: int = Field(
        default=constants.DEFAULT_TIME_LIMIT_MS,
        ge=constants.MIN_TIME_LIMIT_MS,
        le=constants.MAX_TIME_LIMIT_MS,
        description="Per-test-case wall-clock budget",
    )
    memory_limit_mb: int = Field(
        default=constants.DEFAULT_MEMORY_LIMIT_MB,
        ge=constants.MIN_MEMORY_LIMIT_MB,
        le=constants.MAX_MEMORY_LIMIT_MB,
        description="Memory limit (advisory unless JudgeConfig.enforce_memory_limit)",
    )

    @field_validator("source_code")
    @classmethod
    def _source_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("source_code must not be empty")
        return value

    @field_validator("language", mode="before")
    @classmethod
    def _normalize_language(cls, value: object) -> object:
        if isinstance(value, Language):
            return value.value
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ProcessResult(BaseModel):
    """Outcome of a single child process run."""

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = Field(default=None, description="Exit code (negative signal number when killed on POSIX)")
    wall_time_ms: int = Field(default=0, ge=0)
    timed_out: bool = False
    output_truncated: bool = Field(default=False, description="stdout or stderr exceeded the capture cap")

    @property
    def succeeded(self) -> bool:
        """Exited on its own with status 0."""
        return not self.timed_out and self.exit_code == 0


class ExecutionOutput(BaseModel):
    """The return value of Judge.execute(): one ungraded run on custom input.

    Compile failures and engine failures carry no process output; the reason
    is in error_message.
    """

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    runtime_ms: int = Field(default=0, ge=0)
    timed_out: bool = False
    output_truncated: bool = False
    compiled: bool = Field(default=True, description="False when the program failed to compile and never ran")
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.compiled and self.error_message is None and self.exit_code == 0


class TestCaseResult(BaseModel):
    """Outcome of one test case. Never mutated after creation."""

    __test__ = False  # not a pytest class

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    passed: bool
    input: str
    expected_output: str
    actual_output: str = ""
    runtime_ms: int = Field(default=0, ge=0)
    error: str | None = None
    is_hidden: bool = False
    executed: bool = Field(default=True, description="False for entries synthesized after a compile failure")


class JudgingResult(BaseModel):
    """The single return value of Judge.judge()."""

    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    total_runtime_ms: int = Field(default=0, ge=0)
    test_cases_passed: int = Field(ge=0)
    total_test_cases: int = Field(ge=0)
    results: tuple[TestCaseResult, ...] = ()
    error_message: str | None = None

    @model_validator(mode="after")
    def _check_invariants(self) -> Self:
        passed = sum(1 for r in self.results if r.passed)
        if passed != self.test_cases_passed:
            raise ValueError(f"test_cases_passed={self.test_cases_passed} but {passed} results passed")
        if len(self.results) > self.total_test_cases:
            raise ValueError("more results than test cases")
        fully_passed = (
            self.test_cases_passed == self.total_test_cases
            and len(self.results) == self.total_test_cases
            and all(r.executed for r in self.results)
        )
        if (self.verdict == Verdict.ACCEPTED) != fully_passed:
            raise ValueError(f"verdict {self.verdict.value} inconsistent with {passed}/{self.total_test_cases} passed")
        return self

    @property
    def accepted(self) -> bool:
        return self.verdict == Verdict.ACCEPTED

    @property
    def failed_case(self) -> int | None:
        """Index of the first executed test case that failed, or None."""
        for result in self.results:
            if result.executed and not result.passed:
                return result.index
        return None

    def redacted(self) -> "JudgingResult":
        """Copy with the data of hidden test cases blanked out.

        Pass/fail, runtime and error of hidden cases are kept so a learner
        still sees where the submission failed.
        """
        results = tuple(
            r.model_copy(update={"input": "", "expected_output": "", "actual_output": ""}) if r.is_hidden else r
            for r in self.results
        )
        return self.model_copy(update={"results": results})
