"""
Configuration management for qingcycle.

This module provides centralized configuration management using Pydantic
for type safety, validation, and environment-based settings.
"""

from .settings import (
    AppSettings,
    LifecycleSettings,
    MonitoringSettings,
    QingCloudSettings,
    get_settings,
    reload_settings,
)

__all__ = [
    "AppSettings",
    "LifecycleSettings",
    "MonitoringSettings",
    "QingCloudSettings",
    "get_settings",
    "reload_settings",
]
