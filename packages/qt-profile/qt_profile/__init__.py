"""QueryTorque Profile - query profile diagnostic engine.

Pipeline:
1. Parse:      profile text -> sections -> operator tree (deterministic)
2. Threshold:  cluster shape + query type + storage + complexity + baseline
3. Diagnose:   per-category rules emit Diagnostics
4. Correlate:  causal DAG over findings -> root causes and symptoms
5. Regress:    query history flags runs far slower than their median

Usage:
    from qt_profile import ProfileDiagnoser, ClusterInfo

    diagnoser = ProfileDiagnoser()
    result = diagnoser.diagnose(profile_text, ClusterInfo(backend_num=3))
    for diagnostic in result.diagnostics:
        print(diagnostic.rule_id, diagnostic.message)
    print(result.root_cause_analysis.summary)
"""

__version__ = "0.1.0"

from .analyzer import (
    Diagnostic,
    QueryHistoryCache,
    QueryType,
    RootCauseAnalysis,
    RootCauseAnalyzer,
    RuleEngine,
    Severity,
    StorageBackend,
    ThresholdSet,
    compute_thresholds,
)
from .baseline import BaselineCacheManager, BaselineCalculator, BaselineRefreshTask, QueryComplexity
from .diagnose import DiagnosisResult, ProfileDiagnoser
from .errors import ProfileError, ProfileParseError
from .models import ClusterInfo, OperatorNode, OperatorTree, ProfileDocument
from .parser import parse_profile

__all__ = [
    "__version__",
    "BaselineCacheManager",
    "BaselineCalculator",
    "BaselineRefreshTask",
    "ClusterInfo",
    "Diagnostic",
    "DiagnosisResult",
    "OperatorNode",
    "OperatorTree",
    "ProfileDiagnoser",
    "ProfileDocument",
    "ProfileError",
    "ProfileParseError",
    "QueryComplexity",
    "QueryHistoryCache",
    "QueryType",
    "RootCauseAnalysis",
    "RootCauseAnalyzer",
    "RuleEngine",
    "Severity",
    "StorageBackend",
    "ThresholdSet",
    "compute_thresholds",
    "parse_profile",
]
