"""code-judge: Code execution and judging engine.

A standalone Python library that compiles and runs untrusted submissions
against ordered test cases and reduces the runs to a single verdict
(accepted, wrong answer, time limit exceeded, runtime error, compilation
error) with per-test diagnostics.

Quick Start:
    ```python
    from code_judge import Judge, TestCase

    async with Judge() as judge:
        result = await judge.run(
            source_code="print(sum(map(int, input().split())))",
            language="python",
            test_cases=[TestCase(input="1 2", expected_output="3")],
            time_limit_ms=1000,
        )
        print(result.verdict)  # Verdict.ACCEPTED
    ```

With Configuration:
    ```python
    from code_judge import Judge, JudgeConfig

    config = JudgeConfig(max_concurrent_runs=8, enforce_memory_limit=True)
    async with Judge(config) as judge:
        ...
    ```

Guarantees:
    - One isolated workspace per submission, removed on every exit path
    - Hard wall-clock limit per test case; the whole process tree is killed
    - Test cases run in order; a timeout or runtime error stops the run
    - Only UnsupportedLanguageError is raised; everything else is a verdict

Not a sandbox: run it inside OS-level isolation (containers, VMs, seccomp)
when judging untrusted code in production.
"""

from code_judge._logging import configure_logging
from code_judge.config import JudgeConfig
from code_judge.exceptions import (
    CodeValidationError,
    CompilationError,
    InputValidationError,
    InternalError,
    JudgeError,
    ToolchainConfigError,
    ToolchainUnavailableError,
    UnsupportedLanguageError,
    WorkspaceError,
)
from code_judge.judge import Judge
from code_judge.models import (
    ExecutionOutput,
    ExecutionRequest,
    JudgingResult,
    Language,
    ProcessResult,
    TestCase,
    TestCaseResult,
    Verdict,
)
from code_judge.toolchains import ToolchainRegistry, ToolchainSpec, build_default_registry

__all__ = [
    "CodeValidationError",
    "CompilationError",
    "ExecutionOutput",
    "ExecutionRequest",
    "InputValidationError",
    "InternalError",
    "Judge",
    "JudgeConfig",
    "JudgeError",
    "JudgingResult",
    "Language",
    "ProcessResult",
    "TestCase",
    "TestCaseResult",
    "ToolchainConfigError",
    "ToolchainRegistry",
    "ToolchainSpec",
    "ToolchainUnavailableError",
    "UnsupportedLanguageError",
    "Verdict",
    "WorkspaceError",
    "build_default_registry",
    "configure_logging",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("code-judge")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
