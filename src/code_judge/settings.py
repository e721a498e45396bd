"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from code_judge.platform_utils import get_workspace_base_dir


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with CODE_JUDGE_ prefix.
    Example: CODE_JUDGE_PYTHON_BIN=/usr/local/bin/python3.13
    """

    model_config = SettingsConfigDict(
        env_prefix="CODE_JUDGE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Workspaces live under this directory, one subdirectory per submission
    workspace_dir: Path = Field(default_factory=get_workspace_base_dir)

    # Toolchain binaries (resolved through PATH when not absolute)
    python_bin: str = "python3"
    node_bin: str = "node"
    gxx_bin: str = "g++"
    gcc_bin: str = "gcc"
    javac_bin: str = "javac"
    java_bin: str = "java"

    # Language standards for compiled toolchains
    cpp_standard: str = "c++17"
    c_standard: str = "c11"
