"""Constants for code-judge configuration and limits."""

from typing import Final

# ============================================================================
# Request Limits
# ============================================================================

MAX_CODE_SIZE: Final[int] = 10_000
"""Maximum source code length in characters."""

MIN_TIME_LIMIT_MS: Final[int] = 1
"""Minimum per-test-case wall-clock budget in ms."""

MAX_TIME_LIMIT_MS: Final[int] = 60_000
"""Maximum per-test-case wall-clock budget in ms."""

DEFAULT_TIME_LIMIT_MS: Final[int] = 2_000
"""Default per-test-case wall-clock budget in ms."""

MIN_MEMORY_LIMIT_MB: Final[int] = 16
"""Minimum memory limit accepted on a request."""

MAX_MEMORY_LIMIT_MB: Final[int] = 4096
"""Maximum memory limit accepted on a request."""

DEFAULT_MEMORY_LIMIT_MB: Final[int] = 256
"""Default memory limit in MB (advisory unless enforcement is enabled)."""

# ============================================================================
# Compilation
# ============================================================================

COMPILE_TIMEOUT_SECONDS: Final[int] = 10
"""Fixed compile budget, independent of the per-test time limit."""

MAX_COMPILE_TIMEOUT_SECONDS: Final[int] = 120
"""Upper bound for a configured compile budget."""

MAX_COMPILER_OUTPUT_CHARS: Final[int] = 2_000
"""Compiler stderr kept in error_message."""

# ============================================================================
# Process Runner
# ============================================================================

MAX_OUTPUT_BYTES: Final[int] = 1024 * 1024  # 1MB
"""Per-stream cap on captured stdout/stderr; excess output is drained and discarded."""

READ_CHUNK_BYTES: Final[int] = 64 * 1024
"""Pipe read size (one Linux pipe buffer)."""

KILL_REAP_TIMEOUT_SECONDS: Final[float] = 2.0
"""Time allowed for a SIGKILLed process to be reaped."""

KILL_REAP_BUDGET_SECONDS: Final[float] = 2 * KILL_REAP_TIMEOUT_SECONDS
"""Worst case for one tree kill: the direct child, then its descendants, each up to KILL_REAP_TIMEOUT_SECONDS."""

WORKSPACE_REMOVE_MAX_ATTEMPTS: Final[int] = 3
"""rmtree attempts before a workspace is reported as leaked."""

WORKSPACE_REMOVE_RETRY_MIN_SECONDS: Final[float] = 0.01
WORKSPACE_REMOVE_RETRY_MAX_SECONDS: Final[float] = 0.2

# ============================================================================
# Judging
# ============================================================================

DEFAULT_MAX_CONCURRENT_RUNS: Final[int] = 4
"""Default number of judging runs executing at once."""

PER_TEST_SLACK_MS: Final[int] = 1_000
"""Overhead allowed per test case (spawn, reap, compare) in the overall deadline."""

WORKSPACE_PREFIX: Final[str] = "judge"
"""Directory name prefix for workspaces."""

INTERNAL_ERROR_MESSAGE: Final[str] = "Internal error during judging"
"""Generic message reported for engine failures."""

COMPILATION_ERROR_MARKER: Final[str] = "Compilation Error"
"""Error text on test-case entries synthesized after a compile failure."""

TIME_LIMIT_EXCEEDED_MARKER: Final[str] = "Time limit exceeded"
"""Error text on a test-case result that timed out."""

DEADLINE_EXCEEDED_MESSAGE: Final[str] = "Judging deadline exceeded"
"""Reported when the overall deadline expires outside any test case."""
