"""Historical baselines: complexity classification, calculation, caching, refresh."""

from .cache import BaselineCacheEntry, BaselineCacheManager, BaselineDrift, DriftDirection
from .calculator import (
    DEFAULT_BASELINES,
    AuditLogRecord,
    BaselineCalculator,
    BaselineSource,
    BaselineStats,
    PerformanceBaseline,
)
from .complexity import ComplexityFeatures, QueryComplexity, classify_complexity, extract_features
from .refresh import AuditLogSource, BaselineRefreshTask

__all__ = [
    "AuditLogRecord",
    "AuditLogSource",
    "BaselineCacheEntry",
    "BaselineCacheManager",
    "BaselineCalculator",
    "BaselineDrift",
    "BaselineRefreshTask",
    "BaselineSource",
    "BaselineStats",
    "ComplexityFeatures",
    "DEFAULT_BASELINES",
    "DriftDirection",
    "PerformanceBaseline",
    "QueryComplexity",
    "classify_complexity",
    "extract_features",
]
