"""Judge configuration for code-judge.

JudgeConfig provides all configuration options for the Judge facade:
workspace location, compile budget, concurrency, output caps and the
optional strictness switches.

Example:
    ```python
    from code_judge import Judge, JudgeConfig

    # Default configuration
    async with Judge() as judge:
        result = await judge.run(source_code="print(input())", language="python", test_cases=[...])

    # Custom configuration
    config = JudgeConfig(
        max_concurrent_runs=8,
        compile_timeout_seconds=20,
        enforce_memory_limit=True,
    )
    async with Judge(config) as judge:
        ...
    ```
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from code_judge import constants


class JudgeConfig(BaseModel):
    """Configuration for Judge.

    All fields have sensible defaults for local development.

    Attributes:
        workspace_dir: Base directory for per-submission workspaces.
            If None, uses Settings.workspace_dir (CODE_JUDGE_WORKSPACE_DIR).
        compile_timeout_seconds: Compile budget, independent of the
            per-test time limit. Range: 1-120. Default: 10.
        max_concurrent_runs: Judging runs executing at once; further calls
            wait for a slot. Range: 1-256. Default: 4.
        max_output_bytes: Per-stream cap on captured stdout/stderr. Default: 1MB.
        per_test_slack_ms: Per-test overhead allowance in the overall run
            deadline. Default: 1000.
        enforce_memory_limit: Apply memory_limit_mb as RLIMIT_AS to child
            processes (POSIX only). When False the limit is advisory.
        stderr_is_fatal: Treat any stderr output from a test run as a
            runtime error even when the exit code is 0. Default: True.
        enable_source_denylist: Reject source containing the toolchain's
            denied patterns. Default: False.
    """

    model_config = ConfigDict(
        frozen=True,  # Immutable after creation
        extra="forbid",  # Reject unknown fields
    )

    workspace_dir: Path | None = Field(
        default=None,
        description="Base directory for workspaces (Settings.workspace_dir if None)",
    )
    compile_timeout_seconds: int = Field(
        default=constants.COMPILE_TIMEOUT_SECONDS,
        ge=1,
        le=constants.MAX_COMPILE_TIMEOUT_SECONDS,
        description="Compile budget in seconds",
    )
    max_concurrent_runs: int = Field(
        default=constants.DEFAULT_MAX_CONCURRENT_RUNS,
        ge=1,
        le=256,
        description="Maximum concurrent judging runs",
    )
    max_output_bytes: int = Field(
        default=constants.MAX_OUTPUT_BYTES,
        ge=1024,
        description="Per-stream stdout/stderr capture cap",
    )
    per_test_slack_ms: int = Field(
        default=constants.PER_TEST_SLACK_MS,
        ge=0,
        description="Per-test overhead allowance in the overall deadline",
    )
    enforce_memory_limit: bool = Field(
        default=False,
        description="Apply memory_limit_mb via RLIMIT_AS (POSIX only)",
    )
    stderr_is_fatal: bool = Field(
        default=True,
        description="Non-empty stderr is a runtime error",
    )
    enable_source_denylist: bool = Field(
        default=False,
        description="Reject source matching toolchain denied patterns",
    )

    def get_workspace_dir(self) -> Path:
        """Get workspace base directory, falling back to environment settings.

        Detection order:
        1. Explicit workspace_dir from config
        2. CODE_JUDGE_WORKSPACE_DIR environment variable
        3. <system temp dir>/code-judge
        """
        if self.workspace_dir is not None:
            return self.workspace_dir

        from code_judge.settings import Settings  # noqa: PLC0415

        return Settings().workspace_dir
