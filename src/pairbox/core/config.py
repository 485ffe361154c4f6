"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (PAIRBOX_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model
    - CapabilityConfig: frozen policy snapshot read by every capability call
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from pairbox.core.result import ConfigurationError, Err
from pairbox.core.security import validate_workspace_root

CONFIG_ENV_VAR = "PAIRBOX_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".pairbox.toml"

MAX_FILE_SIZE = 10 * 1024 * 1024


# -----------------------------------------------------------------------------
# Capability policy
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CapabilityConfig:
    """Process-wide capability policy.

    Replaced wholesale (never mutated) by an explicit configuration action
    between invocations.
    """

    workspace_root: Path
    writes_enabled: bool = False
    http_timeout: float = 30.0
    command_timeout: float = 20.0
    max_file_size: int = MAX_FILE_SIZE

    def with_writes(self, enabled: bool) -> CapabilityConfig:
        return replace(self, writes_enabled=enabled)


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class ToolsConfig(BaseModel):
    """Sandboxed script execution settings."""

    workspace_root: Path = Field(
        default_factory=Path.cwd, description="Directory every capability path must stay inside."
    )
    allow_writes: bool = Field(
        default=False, description="Enable write_file/patch_file for scripts."
    )
    script_timeout: float = Field(
        default=10.0, gt=0, description="Wall-time limit in seconds for one script invocation."
    )
    http_timeout: float = Field(
        default=30.0, gt=0, description="Timeout in seconds for http_request calls."
    )
    command_timeout: float = Field(
        default=20.0, gt=0, description="Timeout in seconds for run_command calls."
    )
    max_file_size: int = Field(
        default=MAX_FILE_SIZE, gt=0, description="Largest file read_file will return, in bytes."
    )
    max_pending: int = Field(
        default=32, ge=1, description="Maximum queued model-issued scripts awaiting approval."
    )
    max_output_chars: int = Field(
        default=20000, ge=100, description="Maximum characters of rendered tool output."
    )

    @field_validator("workspace_root", mode="after")
    @classmethod
    def expand_root(cls, v: Path) -> Path:
        return v.expanduser()


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="PAIRBOX_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    log_level: str = Field(default="INFO", description="Log level for pairbox output.")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)

    def capability_config(self) -> CapabilityConfig:
        """Build the capability policy the runtime starts with."""
        tools = self.tools
        return CapabilityConfig(
            workspace_root=tools.workspace_root,
            writes_enabled=tools.allow_writes,
            http_timeout=tools.http_timeout,
            command_timeout=tools.command_timeout,
            max_file_size=tools.max_file_size,
        )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = config_path or env_vars.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    parser = json.loads if path.suffix.lower() == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    Nested fields use the delimiter, e.g. PAIRBOX_TOOLS__ALLOW_WRITES.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    for field in ToolsConfig.model_fields:
        env_key = f"{prefix}tools{delimiter}{field}".upper()
        if env_key in env_vars:
            overrides.add(f"tools.{field}")

    if f"{prefix}log_level".upper() in env_vars:
        overrides.add("log_level")

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigurationError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig()

    root_result = validate_workspace_root(config.tools.workspace_root)
    if isinstance(root_result, Err):
        message = str(root_result.error)
        error = f"{error}; {message}" if error else message
    else:
        updated_tools = config.tools.model_copy(update={"workspace_root": root_result.value})
        config = config.model_copy(update={"tools": updated_tools})

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result


__all__ = [
    "CONFIG_ENV_VAR",
    "AppConfig",
    "CapabilityConfig",
    "ConfigLoadResult",
    "ToolsConfig",
    "load_config",
]
