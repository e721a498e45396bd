"""Exception hierarchy for code-judge.

All exceptions inherit from JudgeError base class.

Hierarchy:
    JudgeError (base)
    ├── InputValidationError (caller-bug marker base)
    │   ├── UnsupportedLanguageError  ← language not in the registry
    │   └── CodeValidationError       ← source rejected by sanitizer rules
    ├── CompilationError              ← compiler failed / entry symbol missing
    └── InternalError (operator-facing marker base)
        ├── WorkspaceError            ← workspace I/O failure
        ├── ToolchainConfigError      ← malformed toolchain template
        └── ToolchainUnavailableError ← compiler/interpreter binary missing

Only UnsupportedLanguageError escapes Judge.judge(). Everything else is
folded into the JudgingResult verdict.
"""

from __future__ import annotations

from typing import Any


class JudgeError(Exception):
    """Base exception for all judging errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InputValidationError(JudgeError):
    """Base for input validation errors (caller bugs, not judging failures).

    No resources are allocated before these are raised.
    """


class UnsupportedLanguageError(InputValidationError):
    """Language identifier is not served by the toolchain registry.

    Raised before any workspace is acquired and surfaced to the caller verbatim.

    Attributes:
        language: The rejected language identifier
        supported: Identifiers the registry does serve
    """

    def __init__(
        self,
        language: str,
        supported: list[str] | tuple[str, ...] = (),
        context: dict[str, Any] | None = None,
    ):
        ctx = context or {}
        ctx.update({"language": language, "supported": list(supported)})
        message = f"Unsupported language: {language}"
        if supported:
            message += f" (supported: {', '.join(supported)})"
        super().__init__(message, ctx)
        self.language = language
        self.supported = tuple(supported)


class CodeValidationError(InputValidationError):
    """Source code rejected by the toolchain's sanitizer rules.

    Attributes:
        pattern: The denied pattern that matched (if any)
    """

    def __init__(self, message: str, pattern: str | None = None, context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.pattern = pattern


class CompilationError(JudgeError):
    """Compilation failed before any test case could run.

    Raised when the entry symbol cannot be found in the source or the
    compiler exits non-zero.

    Attributes:
        stderr: Compiler diagnostics (empty when the compiler never ran)
    """

    def __init__(self, message: str, stderr: str = "", context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.stderr = stderr


class InternalError(JudgeError):
    """Base for failures of the engine itself rather than the submission.

    Logged with full detail and reported to callers as a generic
    runtime-error verdict.
    """


class WorkspaceError(InternalError):
    """Workspace directory or file could not be created or written."""


class ToolchainConfigError(InternalError):
    """Toolchain command template is malformed (unknown placeholder, empty argv)."""


class ToolchainUnavailableError(InternalError):
    """Compiler or interpreter binary could not be launched.

    Attributes:
        executable: argv[0] of the command that failed to start
    """

    def __init__(self, message: str, executable: str, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx.update({"executable": executable})
        super().__init__(message, ctx)
        self.executable = executable
