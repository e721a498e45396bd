"""Language toolchain registry.

Maps a language identifier to a plain data record describing how to lay
out, compile and run a submission. The registry is built once and is
read-only afterwards, so it is shared by all judging runs without locking.

Command templates are argv tuples (no shell). Placeholders:
    {source}      absolute path of the written source file
    {executable}  absolute path of the compiled binary (compiled toolchains)
    {workdir}     absolute path of the workspace directory
    {entry}       entry symbol extracted from the source (e.g. Java class)
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from code_judge._logging import get_logger
from code_judge.exceptions import CodeValidationError, CompilationError, ToolchainConfigError, UnsupportedLanguageError
from code_judge.models import Language

if TYPE_CHECKING:
    from code_judge.settings import Settings

logger = get_logger(__name__)

# NUL and C0 control characters except tab, LF and CR
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

PYTHON_DENYLIST: tuple[str, ...] = (
    "import os",
    "import sys",
    "import subprocess",
    "from os import",
    "from sys import",
    "from subprocess import",
    "__import__",
    "eval(",
    "exec(",
    "compile(",
)

NATIVE_DENYLIST: tuple[str, ...] = (
    "system(",
    "Runtime.getRuntime().exec(",
    "ProcessBuilder",
    "fork(",
    "exec(",
    "popen(",
    "unistd.h",
    "windows.h",
)

JAVASCRIPT_DENYLIST: tuple[str, ...] = (
    "eval(",
    "Function(",
    "setTimeout(",
    "setInterval(",
    "execScript",
    "document.write",
    "window.open",
    "require(",
    "import(",
    "process.",
)

JAVA_ENTRY_PATTERNS: tuple[str, ...] = (
    r"\bpublic\s+(?:(?:final|abstract|static)\s+)*class\s+([A-Za-z_$][\w$]*)",
    r"\bclass\s+([A-Za-z_$][\w$]*)",
)

# Leftmost match wins, so a "//" inside a string stays part of the string
JAVA_COMMENTS_AND_LITERALS: str = "|".join(
    (
        r'"""[\s\S]*?"""',  # text block
        r'"(?:\\.|[^"\\\n])*"',  # string literal
        r"'(?:\\.|[^'\\\n])*'",  # char literal
        r"//[^\n]*",
        r"/\*[\s\S]*?\*/",
    )
)


class ToolchainSpec(BaseModel):
    """How to build and run one language. Plain, immutable data."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    language: Language
    source_ext: str = Field(pattern=r"^\.[A-Za-z0-9]+$")
    source_name: str = Field(default="solution{ext}", description="File name template ({ext}, {entry})")
    compile_cmd: tuple[str, ...] | None = Field(default=None, description="argv template, None = interpreted")
    run_cmd: tuple[str, ...] = Field(min_length=1, description="argv template")
    executable_name: str | None = Field(default=None, description="Compiled binary name inside the workspace")
    entry_patterns: tuple[str, ...] = Field(default=(), description="Regexes locating the entry symbol, in priority order")
    entry_mask_pattern: str | None = Field(
        default=None, description="Regex for comments and literals blanked before the entry search"
    )
    denied_patterns: tuple[str, ...] = Field(default=(), description="Case-insensitive substrings rejected by sanitize()")

    @property
    def requires_compilation(self) -> bool:
        return self.compile_cmd is not None

    def extract_entry(self, source: str) -> str | None:
        """Find the entry symbol the run command needs (e.g. Java public class).

        Returns:
            The symbol, or None for toolchains that don't need one

        Raises:
            CompilationError: toolchain needs an entry symbol and the source has none
        """
        if not self.entry_patterns:
            return None
        code = re.sub(self.entry_mask_pattern, " ", source) if self.entry_mask_pattern else source
        for pattern in self.entry_patterns:
            match = re.search(pattern, code)
            if match:
                return match.group(1)
        raise CompilationError(
            f"No class declaration found in {self.language.value} source",
            context={"language": self.language.value},
        )

    def source_filename(self, entry: str | None = None) -> str:
        return self.source_name.format(ext=self.source_ext, entry=entry or "")

    def sanitize(self, source: str, *, enforce_denylist: bool = False) -> str:
        """Strip control characters and optionally apply the denylist.

        Raises:
            CodeValidationError: enforce_denylist and a denied pattern matched
        """
        cleaned = _CONTROL_CHARS.sub("", source)
        if enforce_denylist:
            lowered = cleaned.lower()
            for pattern in self.denied_patterns:
                if pattern.lower() in lowered:
                    raise CodeValidationError(
                        f"Disallowed construct in {self.language.value} source: {pattern}",
                        pattern=pattern,
                        context={"language": self.language.value},
                    )
        return cleaned

    def render(self, template: tuple[str, ...], **values: str) -> list[str]:
        """Expand an argv template.

        Raises:
            ToolchainConfigError: unknown placeholder or empty command
        """
        try:
            argv = [arg.format_map(values) for arg in template]
        except (KeyError, IndexError, ValueError) as e:
            raise ToolchainConfigError(
                f"Bad {self.language.value} command template {template!r}: {e}",
                context={"language": self.language.value, "template": list(template)},
            ) from e
        if not argv or not argv[0]:
            raise ToolchainConfigError(f"Empty {self.language.value} command", context={"language": self.language.value})
        return argv


class ToolchainRegistry(Mapping[Language, ToolchainSpec]):
    """Read-only mapping from Language to ToolchainSpec."""

    def __init__(self, specs: Iterable[ToolchainSpec]) -> None:
        table: dict[Language, ToolchainSpec] = {}
        for spec in specs:
            if spec.language in table:
                raise ToolchainConfigError(
                    f"Duplicate toolchain for {spec.language.value}",
                    context={"language": spec.language.value},
                )
            table[spec.language] = spec
        self._specs = MappingProxyType(table)
        logger.debug("Toolchain registry built", extra={"languages": self.supported_languages})

    def __getitem__(self, language: Language) -> ToolchainSpec:
        return self._specs[language]

    def __iter__(self) -> Iterator[Language]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def supported_languages(self) -> tuple[str, ...]:
        return tuple(language.value for language in self._specs)

    def resolve(self, language: str | Language) -> ToolchainSpec:
        """Look up the toolchain for a language identifier.

        Raises:
            UnsupportedLanguageError: identifier unknown or not configured
        """
        raw = language.value if isinstance(language, Language) else str(language).strip().lower()
        try:
            return self._specs[Language(raw)]
        except (ValueError, KeyError):
            raise UnsupportedLanguageError(raw, self.supported_languages) from None


def build_default_registry(settings: Settings | None = None) -> ToolchainRegistry:
    """Registry with the five stock toolchains, binaries taken from Settings."""
    if settings is None:
        from code_judge.settings import Settings  # noqa: PLC0415

        settings = Settings()

    return ToolchainRegistry(
        [
            ToolchainSpec(
                language=Language.PYTHON,
                source_ext=".py",
                run_cmd=(settings.python_bin, "{source}"),
                denied_patterns=PYTHON_DENYLIST,
            ),
            ToolchainSpec(
                language=Language.JAVASCRIPT,
                source_ext=".js",
                run_cmd=(settings.node_bin, "{source}"),
                denied_patterns=JAVASCRIPT_DENYLIST,
            ),
            ToolchainSpec(
                language=Language.CPP,
                source_ext=".cpp",
                compile_cmd=(settings.gxx_bin, f"-std={settings.cpp_standard}", "-O2", "-o", "{executable}", "{source}"),
                run_cmd=("{executable}",),
                executable_name="solution",
                denied_patterns=NATIVE_DENYLIST,
            ),
            ToolchainSpec(
                language=Language.C,
                source_ext=".c",
                compile_cmd=(
                    settings.gcc_bin,
                    f"-std={settings.c_standard}",
                    "-O2",
                    "-o",
                    "{executable}",
                    "{source}",
                    "-lm",
                ),
                run_cmd=("{executable}",),
                executable_name="solution",
                denied_patterns=NATIVE_DENYLIST,
            ),
            ToolchainSpec(
                language=Language.JAVA,
                source_ext=".java",
                source_name="{entry}{ext}",
                compile_cmd=(settings.javac_bin, "-encoding", "UTF-8", "-d", "{workdir}", "{source}"),
                run_cmd=(settings.java_bin, "-cp", "{workdir}", "{entry}"),
                entry_patterns=JAVA_ENTRY_PATTERNS,
                entry_mask_pattern=JAVA_COMMENTS_AND_LITERALS,
                denied_patterns=NATIVE_DENYLIST,
            ),
        ]
    )
