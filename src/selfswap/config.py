"""
Configuration management for the selfswap updater.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/selfswap/config.yml or --config path)
3. Environment variables (SELFSWAP_* prefix, __ for nesting)
4. Command-line overrides (highest precedence)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/selfswap/config.yml")
DEFAULT_ENV_PREFIX = "SELFSWAP_"

# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether informational records go to stdout.
        json_format: Whether stdout records are JSON objects.
        app_log_path: Application log file handed to the relaunched
            application. Empty means a fresh temporary file per run.
        debug_mode: Enable extra diagnostic logging.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log informational records to stdout",
    )
    json_format: bool = Field(
        default=False,
        description="Whether to format stdout records as JSON",
    )
    app_log_path: str = Field(
        default="",
        description="Application log file path (empty: temporary file per run)",
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable extra diagnostic logging",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        # Normalize 'warn' to 'warning'
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Process Configuration
# =============================================================================


class ProcessConfig(BaseModel):
    """Blocking process wait configuration.

    Attributes:
        exit_timeout_seconds: How long to wait for a graceful exit.
        kill_timeout_seconds: How long to wait for a killed process to go away.
    """

    exit_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for the blocking process to exit gracefully",
    )
    kill_timeout_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait for the process to disappear after a kill",
    )


# =============================================================================
# Transaction Configuration
# =============================================================================


class TransactionConfig(BaseModel):
    """Directory transaction configuration.

    Attributes:
        backup_suffix: Suffix appended to the install path for the backup.
        working_directory: Directory to run the transaction from (empty
            means the system temporary directory).
        state_file: File recording the progress of a running transaction
            (empty means next to the backup path).
    """

    backup_suffix: str = Field(
        default="_backup",
        description="Suffix appended to the install path to build the backup path",
    )
    working_directory: str = Field(
        default="",
        description="Working directory during the transaction (empty: temp dir)",
    )
    state_file: str = Field(
        default="",
        description="Transaction state file (empty: next to the backup path)",
    )

    @field_validator("backup_suffix")
    @classmethod
    def validate_backup_suffix(cls, v: str) -> str:
        """The backup must be a sibling of the install path."""
        if not v:
            raise ValueError("backup_suffix must not be empty")
        if "/" in v or "\\" in v:
            raise ValueError(f"backup_suffix must not contain path separators: {v}")
        return v


# =============================================================================
# Launcher Configuration
# =============================================================================


class LauncherConfig(BaseModel):
    """Relaunch configuration.

    Attributes:
        enabled: Whether to relaunch the application after the update.
        executable_name: File name of the application executable.
        result_switch: Switch carrying the outcome code.
        log_switch: Switch carrying the application log path.
    """

    enabled: bool = Field(
        default=True,
        description="Relaunch the application after the update",
    )
    executable_name: str = Field(
        default="launcher",
        description="Application executable file name inside the install directory",
    )
    result_switch: str = Field(
        default="--patch-result",
        description="Switch used to pass the outcome code",
    )
    log_switch: str = Field(
        default="--application-log",
        description="Switch used to pass the application log path",
    )

    @field_validator("executable_name")
    @classmethod
    def validate_executable_name(cls, v: str) -> str:
        """Validate the executable name is a plain file name."""
        if not v or v != Path(v).name:
            raise ValueError(f"executable_name must be a plain file name: {v!r}")
        return v


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        logging: Logging configuration.
        process: Blocking process wait configuration.
        transaction: Directory transaction configuration.
        launcher: Relaunch configuration.
    """

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    process: ProcessConfig = Field(
        default_factory=ProcessConfig,
        description="Blocking process wait configuration",
    )
    transaction: TransactionConfig = Field(
        default_factory=TransactionConfig,
        description="Directory transaction configuration",
    )
    launcher: LauncherConfig = Field(
        default_factory=LauncherConfig,
        description="Relaunch configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary with configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Environment variables are parsed with the following rules:
    - Prefix: SELFSWAP_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: SELFSWAP_PROCESS__EXIT_TIMEOUT_SECONDS=30

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        current[parts[-1]] = _parse_env_value(value)

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Configuration is loaded from multiple sources in order:
    1. Built-in defaults (from AppConfig model)
    2. YAML config file (if specified or default exists)
    3. Environment variables (SELFSWAP_* prefix)
    4. Overrides (normally built from command-line arguments)

    Later sources override earlier ones.

    Args:
        config_path: Path to YAML configuration file. If None, the default
            path is used when it exists.
        env_prefix: Prefix for environment variables.
        overrides: Nested dictionary applied last.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(overrides={"process": {"exit_timeout_seconds": 30}})
        >>> config.process.exit_timeout_seconds
        30.0
    """
    config_dict: dict[str, Any] = {}

    if config_path is None:
        if DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)

    return AppConfig(**config_dict)
