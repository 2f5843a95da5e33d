"""Settings management using Pydantic for type validation and configuration."""

import logging
import os
from pathlib import Path
from typing import Any, Optional, cast

import yaml
from pydantic import BaseModel, Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    # Console Logging
    console_enabled: bool = Field(default=True, description="Enable console logging")
    console_level: str = Field(
        default="INFO",
        description="Console log level: DEBUG, VERBOSE, INFO, WARNING, ERROR, CRITICAL",
    )
    console_colors: bool = Field(
        default=True, description="Enable colored console output (auto-detected)"
    )

    # File Logging
    file_enabled: bool = Field(default=False, description="Enable file logging")
    file_level: str = Field(
        default="DEBUG",
        description="File log level: DEBUG, VERBOSE, INFO, WARNING, ERROR, CRITICAL",
    )
    file_directory: Optional[str] = Field(
        default=None, description="Custom log directory (defaults to data_dir/logs)"
    )
    file_prefix: str = Field(default="taskcalendar", description="Log file prefix")
    max_log_files: int = Field(default=5, description="Maximum number of log files to keep")

    # Third-party Libraries
    third_party_level: str = Field(
        default="WARNING", description="Log level for third-party libraries"
    )


class TaskCalendarSettings(BaseSettings):
    """Application settings with environment variable support."""

    _explicit_args: set = PrivateAttr(default_factory=set)
    _env_vars_set: set = PrivateAttr(default_factory=set)

    app_name: str = Field(default="TaskCalendar", description="Application name")

    # File Paths
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".config" / "taskcalendar")
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".local" / "share" / "taskcalendar"
    )
    database_file: Optional[Path] = Field(
        default=None, description="SQLite database path (defaults to data_dir/tasks.db)"
    )

    # Recurrence Expansion
    rrule_max_occurrences: int = Field(
        default=2000,
        description="Maximum occurrences of one series a query may produce (at least max_query_days)",
    )
    max_query_days: int = Field(
        default=1830, description="Widest range (in days) a single range query may span"
    )

    # Logging Configuration
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings, description="Logging settings"
    )

    model_config = SettingsConfigDict(
        env_prefix="TASKCALENDAR_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    def __init__(self, **kwargs: Any) -> None:
        env_vars_set = {
            key.replace("TASKCALENDAR_", "").lower()
            for key in os.environ
            if key.startswith("TASKCALENDAR_")
        }

        super().__init__(**kwargs)

        self._explicit_args = set(kwargs.keys())
        self._env_vars_set = env_vars_set

        self._load_yaml_config()

    def _find_config_file(self) -> Optional[Path]:
        """Find config file, checking project directory first, then user home."""
        project_root = Path(__file__).parent.parent.parent
        project_config = project_root / "config" / "config.yaml"
        if project_config.exists():
            return project_config

        user_config = self.config_dir / "config.yaml"
        if user_config.exists():
            return user_config

        return None

    def _is_overridable(self, setting: str) -> bool:
        return setting not in self._explicit_args and setting not in self._env_vars_set

    def _load_basic_settings(self, config_data: dict) -> None:
        """Load top-level settings from YAML data."""
        basic_settings = ["app_name", "rrule_max_occurrences", "max_query_days"]

        for setting in basic_settings:
            if setting in config_data and self._is_overridable(setting):
                setattr(self, setting, config_data[setting])

        for path_setting in ["data_dir", "database_file"]:
            if config_data.get(path_setting) and self._is_overridable(path_setting):
                setattr(self, path_setting, Path(config_data[path_setting]).expanduser())

    def _load_logging_config(self, config_data: dict) -> None:
        """Load logging configuration from YAML data."""
        if "logging" not in config_data or "logging" in self._explicit_args:
            return

        logging_config = config_data["logging"] or {}
        for setting in LoggingSettings.model_fields:
            if setting in logging_config:
                setattr(self.logging, setting, logging_config[setting])

    def _load_yaml_config(self) -> None:
        """Load configuration from YAML file if it exists."""
        config_file = self._find_config_file()
        if not config_file:
            return

        try:
            with config_file.open() as f:
                config_data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            # Don't fail if YAML loading fails, just continue with defaults/env vars
            logging.getLogger(__name__).warning(
                "Could not load YAML config from %s: %s", config_file, e
            )
            return

        if not config_data:
            return

        self._load_basic_settings(config_data)
        self._load_logging_config(config_data)

    @property
    def database_path(self) -> Path:
        """Path to the SQLite database file."""
        if self.database_file is not None:
            return self.database_file
        return self.data_dir / "tasks.db"

    @property
    def config_file(self) -> Path:
        """Path to YAML configuration file."""
        return self.config_dir / "config.yaml"


# Global settings management
_settings_instance: Optional[TaskCalendarSettings] = None


def get_settings() -> TaskCalendarSettings:
    """Get the global settings instance, creating it lazily if needed."""
    if globals()["_settings_instance"] is None:
        globals()["_settings_instance"] = TaskCalendarSettings()
    return cast(TaskCalendarSettings, globals()["_settings_instance"])


def reset_settings() -> None:
    """Reset the global settings instance (primarily for testing)."""
    globals()["_settings_instance"] = None
