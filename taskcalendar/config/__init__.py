"""Configuration package."""

from .settings import LoggingSettings, TaskCalendarSettings, get_settings, reset_settings

__all__ = ["LoggingSettings", "TaskCalendarSettings", "get_settings", "reset_settings"]
