"""Configuration for the QueryTorque profile diagnostic engine."""

from functools import lru_cache
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings


DEFAULT_SCAN_TIME_THRESHOLDS_MS: Dict[str, float] = {
    "local": 5_000.0,
    "hdfs": 10_000.0,
    "s3": 15_000.0,
    "oss": 15_000.0,
    "cos": 15_000.0,
    "gcs": 15_000.0,
}


class ProfileSettings(BaseSettings):
    """Engine settings loaded from environment.

    The host process owns these values; the engine only reads them.
    """

    # Baseline cache
    baseline_ttl_seconds: int = 3600
    baseline_refresh_interval_seconds: int = 3600
    baseline_refresh_timeout_seconds: float = 30.0
    baseline_refresh_margin_seconds: int = 300
    baseline_fetch_workers: int = 4
    baseline_min_sample_size: int = 30
    baseline_window_hours: int = 168

    # Regression cache (REG001)
    regression_enabled: bool = True
    regression_cache_size: int = 10_000
    regression_factor: float = 2.0
    regression_severe_factor: float = 5.0
    regression_min_samples: int = 3
    regression_history_size: int = 100
    regression_min_record_time_ms: float = 0.0

    # Root cause analysis
    causal_min_overlap_ratio: float = 0.5
    causal_row_match_tolerance: float = 0.1

    # Rule engine
    max_diagnostics: int = 100
    scan_time_threshold_ms: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SCAN_TIME_THRESHOLDS_MS)
    )

    class Config:
        env_prefix = "QT_PROFILE_"
        env_file = ".env"

    def scan_time_threshold_for(self, storage: str) -> float:
        """Default slow-scan cutoff for a storage backend, in milliseconds."""
        key = (storage or "local").lower()
        if key in self.scan_time_threshold_ms:
            return self.scan_time_threshold_ms[key]
        return self.scan_time_threshold_ms.get("local", DEFAULT_SCAN_TIME_THRESHOLDS_MS["local"])


@lru_cache
def get_settings() -> ProfileSettings:
    """Get cached settings instance."""
    return ProfileSettings()
