"""End-to-end diagnosis of a single query profile.

Wires the pieces together:
    raw text -> parse_profile -> thresholds (via the baseline cache)
    -> RuleEngine -> (+ REG001 from query history) -> RootCauseAnalyzer

The hot path is synchronous and does no I/O: baselines are read from the
cache, which a BaselineRefreshTask keeps warm in the background.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .analyzer import (
    Diagnostic,
    QueryHistoryCache,
    QueryType,
    RootCauseAnalysis,
    RootCauseAnalyzer,
    RuleEngine,
    StorageBackend,
    ThresholdSet,
    compute_thresholds,
    performance_score,
)
from .baseline import BaselineCacheManager, BaselineSource, classify_complexity
from .config import ProfileSettings, get_settings
from .models import ClusterInfo, ProfileDocument
from .parser import parse_profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosisResult:
    """Everything one analysis produces."""
    document: ProfileDocument
    diagnostics: List[Diagnostic]
    root_cause_analysis: RootCauseAnalysis
    performance_score: float
    thresholds: ThresholdSet
    baseline_source: BaselineSource
    regression: Optional[Diagnostic] = None

    def summary(self) -> Dict[str, Any]:
        summary = self.document.summary
        return {
            "query_id": summary.query_id,
            "query_state": summary.query_state,
            "query_type": self.thresholds.query_type.value,
            "complexity": self.thresholds.complexity.label,
            "total_time_ms": self.document.total_time_ms,
            "user": summary.user,
            "default_db": summary.default_db,
            "operator_count": len(self.document.tree),
            "fragment_count": len(self.document.fragments),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "performance_score": self.performance_score,
            "baseline_source": self.baseline_source.value,
            "thresholds": self.thresholds.to_dict(),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "root_cause_analysis": self.root_cause_analysis.to_dict(),
        }


class ProfileDiagnoser:
    """Runs the full diagnosis pipeline for one profile at a time.

    Safe to share between threads: the baseline cache and query history
    are thread-safe and everything else is rebuilt per call.

    Example:
        diagnoser = ProfileDiagnoser(BaselineCacheManager())
        result = diagnoser.diagnose(profile_text, ClusterInfo(backend_num=3))
        print(result.root_cause_analysis.summary)
    """

    def __init__(
        self,
        baseline_cache: Optional[BaselineCacheManager] = None,
        history: Optional[QueryHistoryCache] = None,
        settings: Optional[ProfileSettings] = None,
    ):
        self.settings = settings or get_settings()
        self.baseline_cache = baseline_cache or BaselineCacheManager(ttl_seconds=self.settings.baseline_ttl_seconds)
        self.history = history
        self.engine = RuleEngine(max_diagnostics=self.settings.max_diagnostics)
        self.root_cause = RootCauseAnalyzer(
            min_overlap_ratio=self.settings.causal_min_overlap_ratio,
            row_match_tolerance=self.settings.causal_row_match_tolerance,
        )

    def diagnose(
        self,
        raw_text: str,
        cluster_info: Optional[ClusterInfo] = None,
        sql: Optional[str] = None,
        cluster_id: str = "default",
        storage: Optional[str] = None,
    ) -> DiagnosisResult:
        """Diagnose one profile.

        Args:
            raw_text: Profile text
            cluster_info: Cluster shape; inferred from the profile when omitted
            sql: Statement text; defaults to the profile's Sql Statement
            cluster_id: Key into the baseline cache
            storage: Storage backend tag; defaults to cluster_info.storage

        Returns:
            DiagnosisResult

        Raises:
            ProfileParseError: the profile is structurally broken. No partial
                result is returned.
        """
        document = parse_profile(raw_text)
        sql = sql if sql is not None else document.sql
        cluster = cluster_info or document.cluster_info()
        backend = StorageBackend.from_tag(storage or cluster.storage)
        query_type = QueryType.from_profile(sql, document.summary.query_type)
        complexity = classify_complexity(sql)

        baseline = self.baseline_cache.get(cluster_id)
        thresholds = compute_thresholds(
            cluster, query_type, backend, complexity, baseline=baseline, settings=self.settings
        )
        diagnostics = self.engine.evaluate(document, thresholds)

        regression = self._check_regression(sql, document, query_type)
        if regression is not None:
            diagnostics = self.engine.rank(diagnostics + [regression])

        analysis = self.root_cause.analyze(diagnostics, document.tree)
        score = performance_score(diagnostics, document.total_time_ms)
        logger.info(
            "Diagnosed query %s: %d findings, %d root causes, score %.0f",
            document.summary.query_id or "<unknown>", len(diagnostics), len(analysis.root_causes), score,
        )
        return DiagnosisResult(
            document=document,
            diagnostics=diagnostics,
            root_cause_analysis=analysis,
            performance_score=score,
            thresholds=thresholds,
            baseline_source=baseline.source,
            regression=regression,
        )

    def _check_regression(
        self, sql: str, document: ProfileDocument, query_type: QueryType
    ) -> Optional[Diagnostic]:
        if self.history is None or not self.settings.regression_enabled:
            return None
        total = document.total_time_ms
        if not sql or total is None or not query_type.allows("REG001"):
            return None
        return self.history.record_and_detect(sql, total)
