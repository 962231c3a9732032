"""Tests for environment-driven settings."""

from qt_profile.config import DEFAULT_SCAN_TIME_THRESHOLDS_MS, ProfileSettings, get_settings


def test_defaults(monkeypatch) -> None:
    monkeypatch.delenv("QT_PROFILE_BASELINE_TTL_SECONDS", raising=False)
    settings = ProfileSettings()
    assert settings.baseline_ttl_seconds == 3600
    assert settings.regression_factor == 2.0
    assert settings.regression_min_samples == 3
    assert settings.max_diagnostics == 100
    assert settings.scan_time_threshold_ms == DEFAULT_SCAN_TIME_THRESHOLDS_MS


def test_env_prefix(monkeypatch) -> None:
    monkeypatch.setenv("QT_PROFILE_BASELINE_TTL_SECONDS", "60")
    monkeypatch.setenv("QT_PROFILE_REGRESSION_ENABLED", "false")
    settings = ProfileSettings()
    assert settings.baseline_ttl_seconds == 60
    assert settings.regression_enabled is False


def test_scan_threshold_per_storage() -> None:
    settings = ProfileSettings()
    assert settings.scan_time_threshold_for("local") == 5_000.0
    assert settings.scan_time_threshold_for("HDFS") == 10_000.0
    assert settings.scan_time_threshold_for("s3") == 15_000.0
    assert settings.scan_time_threshold_for("unknown") == 5_000.0
    assert settings.scan_time_threshold_for("") == 5_000.0


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
