"""Application state and configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import platformdirs
import yaml
from pydantic import (
    AliasChoices,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from buildbouncer.core.base import BaseConfig
from buildbouncer.core.errors import ConfigError
from buildbouncer.core.log import Logger
from buildbouncer.core.yaml_settings import YamlWithIncludesSettingsSource
from buildbouncer.runner.skip import normalize_os_value

SUPPORTED_VERSION = 1


def _as_list(value: Any) -> list:
    """YAML lets a single item stand in for a one-item list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def validate_shell_spec(spec: str) -> None:
    """Reject shell specs that cannot be a single command line.

    A spec is an executable name or path, optionally quoted, followed by
    arguments: ``bash``, ``cmd /D``,
    ``"C:\\Program Files\\PowerShell\\7\\pwsh.exe" -NoProfile``.

    Raises:
        ValueError: Describing what is wrong with spec
    """
    trimmed = spec.strip()
    if not trimmed:
        return
    if any(ch in trimmed for ch in "\x00\r\n\t"):
        raise ValueError("must be a single line (no NUL/newlines/tabs)")

    if trimmed[0] in ('"', "'"):
        closing = trimmed.find(trimmed[0], 1)
        if closing == -1:
            raise ValueError("unterminated quoted executable path")
        executable = trimmed[1:closing]
    else:
        executable = trimmed.split(" ", 1)[0]

    if not executable.strip():
        raise ValueError("must include an executable name or path")
    if executable.startswith("-"):
        raise ValueError("executable must not start with '-'")


# ============================================================
# CONFIG MODELS (loaded from YAML/env/CLI)
# ============================================================

class CheckSpec(BaseConfig):
    """One configured check. Immutable once loaded."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(description="Unique check name")
    run: str = Field(description="Command text to execute")
    shell: str | None = Field(
        default=None,
        description=(
            "Shell to run the command with: a name (bash, pwsh, cmd), a "
            "path, or a quoted path followed by extra arguments"
        ),
    )
    cwd: str | None = Field(
        default=None,
        description="Working directory relative to the repository root",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Environment variables set on top of the inherited ones",
    )
    os: tuple[str, ...] = Field(
        default=(),
        description=(
            "Operating systems the check applies to (windows, macos, "
            "linux); empty means all. 'platforms' is accepted as an alias."
        ),
    )
    requires: tuple[str, ...] = Field(
        default=(),
        description="Tools that must be installed, checked by first word",
    )

    @model_validator(mode="before")
    @classmethod
    def _merge_platforms(cls, data: Any) -> Any:
        if isinstance(data, dict) and "platforms" in data:
            data = dict(data)
            platforms = data.pop("platforms")
            data["os"] = _as_list(data.get("os")) + _as_list(platforms)
        return data

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        name = value.strip()
        if not name:
            raise ValueError("missing name")
        return name

    @field_validator("run")
    @classmethod
    def _check_run(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("missing run")
        return value

    @field_validator("shell")
    @classmethod
    def _check_shell(cls, value: str | None) -> str | None:
        if value is None:
            return None
        validate_shell_spec(value)
        return value.strip() or None

    @field_validator("env", mode="before")
    @classmethod
    def _check_env(cls, value: Any) -> Any:
        if not value:
            return {}
        if not isinstance(value, dict):
            return value
        checked = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if not key.strip():
                raise ValueError("env contains an empty key")
            if any(ch in key for ch in "\x00\r\n"):
                raise ValueError(f"env key {key!r} contains invalid characters")
            if "=" in key:
                raise ValueError(f"env key {key!r} must not contain '='")
            checked[key] = "" if raw_value is None else str(raw_value)
        return checked

    @field_validator("os", "requires", mode="before")
    @classmethod
    def _clean_list(cls, value: Any) -> tuple[str, ...]:
        cleaned: list[str] = []
        for item in _as_list(value):
            text = str(item).strip()
            if text and text not in cleaned:
                cleaned.append(text)
        return tuple(cleaned)


class RunnerConfig(BaseConfig):
    """How checks are scheduled."""

    max_parallel: int = Field(
        default=1,
        ge=0,
        validation_alias=AliasChoices("max_parallel", "maxParallel"),
        description="Checks run at once (0 or 1 means sequential)",
    )
    fail_fast: bool = Field(
        default=False,
        validation_alias=AliasChoices("fail_fast", "failFast"),
        description="Stop starting new checks after the first failure",
    )


class Config(BaseConfig):
    """Application configuration loaded from YAML/env/CLI.

    Inherits from BaseConfig so close() cascades into the logger.
    """

    logger: Logger = Field(
        default_factory=Logger,
        description="Logger configuration and runtime instance",
    )
    version: int = Field(
        default=SUPPORTED_VERSION,
        description="Config file format version",
    )
    checks: list[CheckSpec] = Field(
        default_factory=list,
        description="Checks to run, in order",
    )
    runner: RunnerConfig = Field(
        default_factory=RunnerConfig,
        description="Scheduling options",
    )
    log_root: Path = Field(
        default_factory=(
            lambda: Path(platformdirs.user_state_dir()) / "build-bouncer"
        ),
        description="Root directory for build-bouncer's own log files",
    )

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        if value == 0:
            return SUPPORTED_VERSION
        if value != SUPPORTED_VERSION:
            raise ValueError(f"unsupported version {value}")
        return value

    @model_validator(mode="after")
    def _check_checks(self) -> Config:
        """Names must be unique and OS tags recognizable."""
        seen: dict[str, int] = {}
        for index, check in enumerate(self.checks):
            if check.name in seen:
                raise ValueError(
                    f"checks[{index}] name {check.name!r} duplicates "
                    f"checks[{seen[check.name]}] "
                    "(check names must be unique)"
                )
            seen[check.name] = index

            for value in check.os:
                if normalize_os_value(value) is None:
                    raise ValueError(
                        f"checks[{index}] os: unknown value {value!r}"
                    )
        return self

    @model_validator(mode="after")
    def _setup_logger(self) -> Config:
        """Initialize the global logger once config has validated."""
        from buildbouncer.core.log import setup_logger

        setup_logger(
            log_root=self.log_root,
            run_name="check",
            console=self.logger.console,
            file=self.logger.file,
            logfire=self.logger.logfire,
            level=self.logger.level,
        )

        from buildbouncer.core.yaml_settings import _cleanup_bootstrap_logger
        _cleanup_bootstrap_logger()

        return self

    def close(self):
        """Close config and the global logger."""
        from buildbouncer.core.log import close_logger
        close_logger()

        super().close()


# ============================================================
# STATE
# ============================================================

class State(BaseSettings):
    """Complete application state.

    Loads from YAML files, .env and environment variables
    (``BUILDBOUNCER_CONFIG__RUNNER__FAIL_FAST=true``), and from the
    command line when run through CliApp.
    """

    config: Config = Field(
        default_factory=Config,
        description="Application configuration (from YAML/env/CLI)",
    )
    include: list[str] | None = Field(
        default=None,
        description=(
            "Additional YAML files to include and merge. "
            "Use --include on CLI or include: in YAML files."
        ),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BUILDBOUNCER_",
        env_nested_delimiter="__",
        cli_implicit_flags=True,
        cli_use_class_docs_for_groups=True,
        arbitrary_types_allowed=True,
        # Disregard .env variables that don't match config
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings source priority.

        Priority order (highest to lowest):
        1. init_settings (direct instantiation arguments)
        2. YAML files with include support
        3. .env file
        4. Environment variables
        5. File secrets
        """
        return (
            init_settings,
            YamlWithIncludesSettingsSource(settings_cls),
            dotenv_settings,
            env_settings,
            file_secret_settings,
        )


def load_config(path: Path) -> Config:
    """Load and validate the configuration a run from ``path`` would see.

    Package defaults and the user config are layered underneath, and
    ``--include`` files on top, exactly as when State loads.

    Args:
        path: Project config file

    Returns:
        The validated Config

    Raises:
        ConfigError: The file is missing or does not load as a valid
            configuration
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"config not found: {path}")
    try:
        source = YamlWithIncludesSettingsSource(State, project_config=path)
        return Config.model_validate(source().get("config", {}))
    except (OSError, yaml.YAMLError, ValueError) as e:
        raise ConfigError(f"{path}: {e}") from e
