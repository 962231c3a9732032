"""Process-local query history for regression detection (REG001).

Each execution is keyed by a fingerprint of the statement's shape (literals
replaced, whitespace and case normalized) and appended to a bounded
history. A new execution is compared against the rolling median of the
executions seen before it; the comparison happens before the new sample is
recorded, so a slow run never hides itself.

History lives only as long as the process. It is a fast complement to the
audit-log baseline, not a replacement for it, and starts empty after a
restart.
"""

from __future__ import annotations

import hashlib
import logging
import re
import statistics
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError
from sqlglot.tokens import TokenType

from ..config import get_settings
from ..parser.values import format_duration_ms
from .diagnostics import Diagnostic, Severity
from .thresholds import QueryType

logger = logging.getLogger(__name__)

REGRESSION_RULE_ID = "REG001"

_LITERAL_TOKENS = frozenset(
    getattr(TokenType, name)
    for name in ("STRING", "NUMBER", "HEX_STRING", "BIT_STRING", "NATIONAL_STRING", "RAW_STRING", "BYTE_STRING")
    if hasattr(TokenType, name)
)

_IN_LIST = re.compile(r"\(\s*\?(?:\s*,\s*\?)*\s*\)")
_WHITESPACE = re.compile(r"\s+")
# Used only when sqlglot cannot tokenize the statement
_STRING_LITERAL = re.compile(r"'(?:[^'\\]|\\.|'')*'|\"(?:[^\"\\]|\\.)*\"")
_NUMBER_LITERAL = re.compile(r"\b\d+(?:\.\d+)?(?:[eE][-+]?\d+)?\b")
_TABLE_AFTER_KEYWORD = re.compile(r"\b(?:FROM|JOIN|INTO|UPDATE|TABLE)\s+([`\"\w.]+)", re.IGNORECASE)


@dataclass(frozen=True)
class QueryFingerprint:
    """Normalized shape of a statement."""
    digest: str
    template: str
    tables: Tuple[str, ...]
    query_type: QueryType

    def to_dict(self) -> Dict[str, Any]:
        return {
            "digest": self.digest,
            "template": self.template,
            "tables": list(self.tables),
            "query_type": self.query_type.value,
        }


def _template(sql: str) -> str:
    try:
        tokens = sqlglot.tokenize(sql, read="starrocks")
    except SqlglotError as e:
        logger.debug("Tokenizer failed (%s); normalizing literals with regex", e)
        text = _STRING_LITERAL.sub("?", sql)
        text = _NUMBER_LITERAL.sub("?", text)
        text = _WHITESPACE.sub(" ", text).strip().lower()
    else:
        parts = ["?" if token.token_type in _LITERAL_TOKENS else token.text.lower() for token in tokens]
        text = " ".join(parts)
    return _IN_LIST.sub("(?)", text)


def _tables(sql: str) -> Tuple[str, ...]:
    try:
        parsed = sqlglot.parse(sql, read="starrocks")
    except SqlglotError:
        names = {m.group(1).strip('`"').lower() for m in _TABLE_AFTER_KEYWORD.finditer(sql)}
        return tuple(sorted(names))
    names = set()
    for statement in parsed:
        if statement is None:
            continue
        for table in statement.find_all(exp.Table):
            parts = [p for p in (table.catalog, table.db, table.name) if p]
            if parts:
                names.add(".".join(parts).lower())
    return tuple(sorted(names))


def fingerprint(sql: str) -> QueryFingerprint:
    """Fingerprint a statement by its shape.

    Two statements that differ only in literal values, whitespace or
    keyword case get the same digest.
    """
    template = _template(sql or "")
    tables = _tables(sql or "")
    query_type = QueryType.from_sql(sql or "")
    payload = "|".join((template, ",".join(tables), query_type.value))
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return QueryFingerprint(digest=digest, template=template, tables=tables, query_type=query_type)


@dataclass
class _HistoryEntry:
    fingerprint: QueryFingerprint
    samples: Deque[float]
    executions: int = 0
    regressions: int = 0


@dataclass(frozen=True)
class QueryHistoryStats:
    """Snapshot of one fingerprint's history."""
    digest: str
    executions: int
    regressions: int
    samples: Tuple[float, ...] = field(default_factory=tuple)

    @property
    def median_ms(self) -> Optional[float]:
        return statistics.median(self.samples) if self.samples else None

    @property
    def mean_ms(self) -> Optional[float]:
        return statistics.fmean(self.samples) if self.samples else None

    @property
    def last_ms(self) -> Optional[float]:
        return self.samples[-1] if self.samples else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "digest": self.digest,
            "executions": self.executions,
            "regressions": self.regressions,
            "sample_count": len(self.samples),
            "median_ms": self.median_ms,
            "mean_ms": self.mean_ms,
            "min_ms": min(self.samples) if self.samples else None,
            "max_ms": max(self.samples) if self.samples else None,
            "last_ms": self.last_ms,
        }


class QueryHistoryCache:
    """Thread-safe LRU of fingerprint -> bounded execution-time history."""

    def __init__(
        self,
        max_entries: Optional[int] = None,
        regression_factor: Optional[float] = None,
        severe_factor: Optional[float] = None,
        min_samples: Optional[int] = None,
        history_size: Optional[int] = None,
        min_record_time_ms: Optional[float] = None,
    ):
        settings = get_settings()
        self.max_entries = max_entries if max_entries is not None else settings.regression_cache_size
        self.regression_factor = (
            regression_factor if regression_factor is not None else settings.regression_factor
        )
        self.severe_factor = severe_factor if severe_factor is not None else settings.regression_severe_factor
        self.min_samples = min_samples if min_samples is not None else settings.regression_min_samples
        self.history_size = history_size if history_size is not None else settings.regression_history_size
        self.min_record_time_ms = (
            min_record_time_ms if min_record_time_ms is not None else settings.regression_min_record_time_ms
        )
        self._entries: "OrderedDict[str, _HistoryEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, sql: object) -> bool:
        if not isinstance(sql, str):
            return False
        digest = fingerprint(sql).digest
        with self._lock:
            return digest in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def record_and_detect(self, sql: str, time_ms: float) -> Optional[Diagnostic]:
        """Check one execution against its history, then record it.

        Returns:
            A REG001 diagnostic when time_ms exceeds the rolling median of
            prior executions by regression_factor, else None.
        """
        if time_ms < self.min_record_time_ms:
            return None
        fp = fingerprint(sql)

        with self._lock:
            entry = self._entries.get(fp.digest)
            if entry is None:
                entry = _HistoryEntry(fingerprint=fp, samples=deque(maxlen=self.history_size))
                self._entries[fp.digest] = entry
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("Evicted query history for %s", evicted[:12])
            else:
                self._entries.move_to_end(fp.digest)

            prior = tuple(entry.samples)
            diagnostic = self._detect(fp, prior, time_ms)
            entry.samples.append(time_ms)
            entry.executions += 1
            if diagnostic is not None:
                entry.regressions += 1

        if diagnostic is not None:
            logger.info("Regression on %s: %s", fp.digest[:12], diagnostic.message)
        return diagnostic

    def _detect(self, fp: QueryFingerprint, prior: Tuple[float, ...], time_ms: float) -> Optional[Diagnostic]:
        if len(prior) < self.min_samples:
            return None
        baseline = statistics.median(prior)
        if baseline <= 0:
            return None
        threshold = baseline * self.regression_factor
        if time_ms <= threshold:
            return None
        ratio = time_ms / baseline
        severity = Severity.CRITICAL if ratio >= self.severe_factor else Severity.WARNING
        return Diagnostic(
            rule_id=REGRESSION_RULE_ID,
            rule_name="Performance Regression",
            severity=severity,
            category="query",
            node_path="Query",
            measured_value=time_ms,
            threshold=threshold,
            message=(
                f"Query took {format_duration_ms(time_ms)}, {ratio:.1f}x its rolling median of "
                f"{format_duration_ms(baseline)} over {len(prior)} prior runs"
            ),
            reason="The same query shape ran much faster in recent executions",
            suggestions=(
                "Compare the plan with a recent fast execution",
                "Check for data growth or stale table statistics",
                "Check concurrent load on the cluster",
            ),
            threshold_source="history",
        )

    def stats(self, sql: str) -> Optional[QueryHistoryStats]:
        """History snapshot for a statement's fingerprint, or None if unseen."""
        digest = fingerprint(sql).digest
        with self._lock:
            entry = self._entries.get(digest)
            if entry is None:
                return None
            return QueryHistoryStats(
                digest=digest,
                executions=entry.executions,
                regressions=entry.regressions,
                samples=tuple(entry.samples),
            )
