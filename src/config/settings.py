from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.constants import (
    DEFAULT_CONFIG_DIR_NAME,
    DEFAULT_CONTEXT_FILENAME,
    DEFAULT_TOOL_IGNORE_FILENAME,
)

# Load .env once at module import; every BaseSettings subclass sees the env vars
load_dotenv()

TRUNCATE_MODES = ("warn", "truncate", "sample")
IMPORT_FORMATS = ("tree", "flat")

# Ephemeral (per-session, user-adjustable) keys → ToolOutputSettings fields
EPHEMERAL_OUTPUT_KEYS = {
    "tool-output-max-items": "max_items",
    "tool-output-max-tokens": "max_tokens",
    "tool-output-item-size-limit": "item_size_limit",
    "tool-output-truncate-mode": "truncate_mode",
}


class ToolOutputSettings(BaseSettings):
    """Limits applied to every multi-item tool result. Env vars prefixed with TOOL_OUTPUT_."""

    model_config = SettingsConfigDict(env_prefix="TOOL_OUTPUT_")

    max_items: int = Field(50, gt=0)
    max_tokens: int = Field(50_000, gt=0)
    item_size_limit: int = Field(524_288, gt=0)  # 512KB per item
    truncate_mode: str = "warn"

    @field_validator("truncate_mode")
    @classmethod
    def _validate_truncate_mode(cls, v: str) -> str:
        if v not in TRUNCATE_MODES:
            raise ValueError(
                f"TOOL_OUTPUT_TRUNCATE_MODE must be one of {TRUNCATE_MODES} (got '{v}')"
            )
        return v

    @classmethod
    def from_ephemeral(cls, ephemeral: Mapping[str, object]) -> Self:
        """Build from ephemeral settings keyed like 'tool-output-max-items'.

        Absent keys keep their defaults; unknown keys are ignored.
        """
        values = {
            field: ephemeral[key]
            for key, field in EPHEMERAL_OUTPUT_KEYS.items()
            if ephemeral.get(key) is not None
        }
        return cls(**values)


class FileFilteringSettings(BaseSettings):
    """Which ignore sources tools respect by default. Env vars prefixed with FILE_FILTERING_."""

    model_config = SettingsConfigDict(env_prefix="FILE_FILTERING_")

    respect_git_ignore: bool = True
    respect_tool_ignore: bool = True
    tool_ignore_filename: str = DEFAULT_TOOL_IGNORE_FILENAME


class ContextSettings(BaseSettings):
    """Hierarchical context discovery settings. Env vars prefixed with CONTEXT_."""

    model_config = SettingsConfigDict(env_prefix="CONTEXT_")

    filenames: list[str] = Field(default_factory=lambda: [DEFAULT_CONTEXT_FILENAME])
    config_dir_name: str = DEFAULT_CONFIG_DIR_NAME
    import_format: str = "tree"
    max_dirs: int = Field(200, gt=0)  # downward scan directory budget
    max_import_depth: int = Field(5, gt=0)
    # Context discovery ignores .gitignore by default; generated docs are often ignored
    respect_git_ignore: bool = False
    respect_tool_ignore: bool = True
    include_directories: list[Path] = Field(default_factory=list)

    @field_validator("filenames")
    @classmethod
    def _validate_filenames(cls, v: list[str]) -> list[str]:
        cleaned = [name.strip() for name in v if name.strip()]
        if not cleaned:
            raise ValueError("CONTEXT_FILENAMES must name at least one file")
        return cleaned

    @field_validator("import_format")
    @classmethod
    def _validate_import_format(cls, v: str) -> str:
        if v not in IMPORT_FORMATS:
            raise ValueError(
                f"CONTEXT_IMPORT_FORMAT must be one of {IMPORT_FORMATS} (got '{v}')"
            )
        return v


class ShellSettings(BaseSettings):
    """Shell tool settings. Env vars prefixed with SHELL_."""

    model_config = SettingsConfigDict(env_prefix="SHELL_")

    executable: str = "/bin/bash"
    allowed_commands: list[str] = Field(default_factory=list)  # empty = no restriction
    denied_commands: list[str] = Field(default_factory=list)


class WebFetchSettings(BaseSettings):
    """Web fetch tool settings. Env vars prefixed with WEB_FETCH_."""

    model_config = SettingsConfigDict(env_prefix="WEB_FETCH_")

    timeout_s: float = Field(10.0, gt=0)
    max_content_bytes: int = Field(100_000, gt=0)
    user_agent: str = "toolsmith/0.1 (+web_fetch)"


class Settings(BaseSettings):
    """Root settings composing all sub-configurations.

    This is the only place process state (env, cwd, home) is read; every
    component receives what it needs from here via its constructor.
    """

    model_config = SettingsConfigDict(extra="ignore")

    tool_output: ToolOutputSettings = Field(default_factory=ToolOutputSettings)
    file_filtering: FileFilteringSettings = Field(default_factory=FileFilteringSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    shell: ShellSettings = Field(default_factory=ShellSettings)
    web_fetch: WebFetchSettings = Field(default_factory=WebFetchSettings)
    target_dir: Path = Path(".")
    workspace_dirs: list[Path] = Field(default_factory=list)  # extra roots beyond target_dir
    home_dir: Path = Field(default_factory=Path.home)
    log_level: str = "INFO"
    log_json: bool = True


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
