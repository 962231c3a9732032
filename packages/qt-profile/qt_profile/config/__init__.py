"""Configuration module for the profile diagnostic engine."""

from .settings import ProfileSettings, get_settings, DEFAULT_SCAN_TIME_THRESHOLDS_MS

__all__ = ["ProfileSettings", "get_settings", "DEFAULT_SCAN_TIME_THRESHOLDS_MS"]
