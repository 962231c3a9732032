"""Static query-shape complexity classification.

QueryComplexity is the grouping key for baselines and thresholds. The
score is computed from shape features:

- joins: 1 -> 3, 2-3 -> 2n+1, more -> 2n+2
- each subquery +2, nesting deeper than two levels +1 per level
- window functions +4, CTEs +3, set operations +2, DISTINCT aggregates +3
- ORDER BY without LIMIT +2, LATERAL/EXPLODE/UNNEST +3, EXISTS +2
- REGEXP/RLIKE +1, GROUP BY with HAVING +1, aggregates +1 per two (max 2)

Buckets: 0-2 Simple, 3-7 Medium, 8-15 Complex, 16+ VeryComplex.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from enum import IntEnum
from typing import Any, Dict, List

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

logger = logging.getLogger(__name__)


class QueryComplexity(IntEnum):
    """Ordered query complexity buckets."""
    SIMPLE = 0
    MEDIUM = 1
    COMPLEX = 2
    VERY_COMPLEX = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_score(cls, score: int) -> "QueryComplexity":
        if score <= 2:
            return cls.SIMPLE
        if score <= 7:
            return cls.MEDIUM
        if score <= 15:
            return cls.COMPLEX
        return cls.VERY_COMPLEX

    @classmethod
    def from_label(cls, label: str) -> "QueryComplexity":
        return cls[label.strip().upper().replace(" ", "_")]


@dataclass
class ComplexityFeatures:
    """Shape features extracted from one SQL statement."""
    join_count: int = 0
    table_count: int = 0
    subquery_count: int = 0
    subquery_depth: int = 0
    has_window: bool = False
    has_cte: bool = False
    has_set_op: bool = False
    has_distinct_agg: bool = False
    has_expensive_sort: bool = False
    has_lateral: bool = False
    has_exists: bool = False
    has_regex: bool = False
    has_group_having: bool = False
    agg_count: int = 0
    parsed: bool = True

    @property
    def score(self) -> int:
        score = 0
        if self.join_count == 1:
            score += 3
        elif 2 <= self.join_count <= 3:
            score += self.join_count * 2 + 1
        elif self.join_count > 3:
            score += self.join_count * 2 + 2

        score += self.subquery_count * 2
        if self.subquery_depth > 2:
            score += self.subquery_depth - 2
        if self.has_window:
            score += 4
        if self.has_cte:
            score += 3
        if self.has_set_op:
            score += 2
        if self.has_distinct_agg:
            score += 3
        if self.has_expensive_sort:
            score += 2
        if self.has_lateral:
            score += 3
        if self.has_exists:
            score += 2
        if self.has_regex:
            score += 1
        if self.has_group_having:
            score += 1
        score += min(self.agg_count // 2, 2)
        return score

    @property
    def complexity(self) -> QueryComplexity:
        return QueryComplexity.from_score(self.score)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["score"] = self.score
        data["complexity"] = self.complexity.label
        return data


_STRING_LITERAL = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"")
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_LATERAL_WORDS = {"LATERAL", "EXPLODE", "UNNEST", "POSEXPLODE"}
_REGEX_WORDS = {"REGEXP", "RLIKE", "REGEXP_LIKE"}
_AGG_WORDS = {
    "COUNT", "SUM", "AVG", "MAX", "MIN", "GROUP_CONCAT",
    "APPROX_COUNT_DISTINCT", "HLL_UNION_AGG", "BITMAP_UNION",
}
_DISTINCT_AGG = re.compile(r"\b(?:COUNT|SUM|AVG)\s*\(\s*DISTINCT\b")


def strip_strings_and_comments(sql: str) -> str:
    """Remove literals and comments so keywords inside them are ignored."""
    cleaned = _BLOCK_COMMENT.sub(" ", sql)
    cleaned = _LINE_COMMENT.sub(" ", cleaned)
    return _STRING_LITERAL.sub("''", cleaned)


def _tokens(cleaned: str) -> List[str]:
    return [t.upper() for t in _WORD.findall(cleaned)]


def _select_depth(select: exp.Expression) -> int:
    depth = 0
    parent = select.find_ancestor(exp.Select)
    while parent is not None:
        depth += 1
        parent = parent.find_ancestor(exp.Select)
    return depth


def _features_from_ast(tree: exp.Expression, tokens: List[str]) -> ComplexityFeatures:
    selects = list(tree.find_all(exp.Select))
    aggs = list(tree.find_all(exp.AggFunc))
    token_set = set(tokens)
    return ComplexityFeatures(
        join_count=len(list(tree.find_all(exp.Join))),
        table_count=len({t.sql() for t in tree.find_all(exp.Table)}),
        subquery_count=max(len(selects) - 1, 0),
        subquery_depth=max((_select_depth(s) for s in selects), default=0),
        has_window=any(True for _ in tree.find_all(exp.Window)),
        has_cte=any(True for _ in tree.find_all(exp.CTE)),
        has_set_op=any(True for _ in tree.find_all(exp.Union, exp.Intersect, exp.Except)),
        has_distinct_agg=any(isinstance(a.this, exp.Distinct) for a in aggs),
        has_expensive_sort=(
            any(True for _ in tree.find_all(exp.Order))
            and not any(True for _ in tree.find_all(exp.Limit))
        ),
        has_lateral=bool(token_set & _LATERAL_WORDS),
        has_exists=any(True for _ in tree.find_all(exp.Exists)),
        has_regex=bool(token_set & _REGEX_WORDS),
        has_group_having=(
            any(True for _ in tree.find_all(exp.Group))
            and any(True for _ in tree.find_all(exp.Having))
        ),
        agg_count=len(aggs),
        parsed=True,
    )


def _features_from_tokens(cleaned: str, tokens: List[str]) -> ComplexityFeatures:
    select_count = tokens.count("SELECT")
    has_cte = False
    if "WITH" in tokens:
        start = tokens.index("WITH")
        has_cte = "AS" in tokens[start:start + 15] and select_count > 1
    return ComplexityFeatures(
        join_count=tokens.count("JOIN"),
        table_count=tokens.count("FROM") + tokens.count("JOIN"),
        subquery_count=max(select_count - 1, 0),
        subquery_depth=0,
        has_window="OVER" in tokens,
        has_cte=has_cte,
        has_set_op=any(t in tokens for t in ("UNION", "INTERSECT", "EXCEPT")),
        has_distinct_agg=bool(_DISTINCT_AGG.search(cleaned.upper())),
        has_expensive_sort="ORDER" in tokens and "LIMIT" not in tokens,
        has_lateral=bool(set(tokens) & _LATERAL_WORDS),
        has_exists="EXISTS" in tokens,
        has_regex=bool(set(tokens) & _REGEX_WORDS),
        has_group_having="GROUP" in tokens and "HAVING" in tokens,
        agg_count=sum(1 for t in tokens if t in _AGG_WORDS),
        parsed=False,
    )


def extract_features(sql: str, dialect: str = "starrocks") -> ComplexityFeatures:
    """Extract shape features, falling back to a keyword scan if sqlglot cannot parse."""
    if not sql or not sql.strip():
        return ComplexityFeatures()

    cleaned = strip_strings_and_comments(sql)
    tokens = _tokens(cleaned)
    try:
        tree = sqlglot.parse_one(sql, read=dialect)
    except SqlglotError as e:
        logger.debug("sqlglot could not parse statement, using keyword scan: %s", e)
        return _features_from_tokens(cleaned, tokens)
    if tree is None:
        return _features_from_tokens(cleaned, tokens)
    return _features_from_ast(tree, tokens)


def classify_complexity(sql: str, dialect: str = "starrocks") -> QueryComplexity:
    """Classify a statement into a QueryComplexity bucket."""
    return extract_features(sql, dialect).complexity
