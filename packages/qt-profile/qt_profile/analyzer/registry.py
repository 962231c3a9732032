"""Rule registry.

Instantiates every rule once at import time and groups them into ordered
per-category collections. Evaluation order within a collection is the
order below.
"""

from typing import Dict, List, Optional, Sequence

from ..models import OperatorCategory
from .rules import (
    AGGREGATE_RULES,
    COMMON_RULES,
    EXCHANGE_RULES,
    FRAGMENT_RULES,
    JOIN_RULES,
    PLANNER_RULES,
    PROJECT_RULES,
    QUERY_RULES,
    SCAN_RULES,
    SINK_RULES,
    SORT_RULES,
    ProfileRule,
    RuleCategory,
)

_RULE_CLASSES = (
    PLANNER_RULES
    + QUERY_RULES
    + SCAN_RULES
    + JOIN_RULES
    + AGGREGATE_RULES
    + EXCHANGE_RULES
    + FRAGMENT_RULES
    + SINK_RULES
    + SORT_RULES
    + PROJECT_RULES
    + COMMON_RULES
)

_ALL_RULES: List[ProfileRule] = [rule_class() for rule_class in _RULE_CLASSES]

# Rule lookup by ID
_RULES_BY_ID: Dict[str, ProfileRule] = {rule.rule_id: rule for rule in _ALL_RULES}

# Rules by category
_RULES_BY_CATEGORY: Dict[RuleCategory, List[ProfileRule]] = {category: [] for category in RuleCategory}
for _rule in _ALL_RULES:
    _RULES_BY_CATEGORY[_rule.category].append(_rule)

# Operator category -> rule collection; OTHER operators only get common rules
_OPERATOR_COLLECTIONS: Dict[OperatorCategory, RuleCategory] = {
    OperatorCategory.SCAN: RuleCategory.SCAN,
    OperatorCategory.JOIN: RuleCategory.JOIN,
    OperatorCategory.AGGREGATE: RuleCategory.AGGREGATE,
    OperatorCategory.EXCHANGE: RuleCategory.EXCHANGE,
    OperatorCategory.SINK: RuleCategory.SINK,
    OperatorCategory.SORT: RuleCategory.SORT,
    OperatorCategory.PROJECT: RuleCategory.PROJECT,
}


def get_all_rules() -> List[ProfileRule]:
    """Get all registered diagnostic rules."""
    return list(_ALL_RULES)


def get_rule_by_id(rule_id: str) -> Optional[ProfileRule]:
    """Get a specific rule by its ID."""
    return _RULES_BY_ID.get(rule_id)


def get_rules_by_category(category: RuleCategory, rules: Optional[Sequence[ProfileRule]] = None) -> List[ProfileRule]:
    """Get the ordered rule collection for a category."""
    if rules is None:
        return list(_RULES_BY_CATEGORY.get(category, []))
    return [r for r in rules if r.category is category]


def get_rules_for_operator(
    category: OperatorCategory, rules: Optional[Sequence[ProfileRule]] = None
) -> List[ProfileRule]:
    """Rules evaluated on a node: its category collection, then the common rules."""
    collection = _OPERATOR_COLLECTIONS.get(category)
    own = get_rules_by_category(collection, rules) if collection is not None else []
    return own + get_rules_by_category(RuleCategory.COMMON, rules)


def get_rule_count() -> int:
    """Get total number of registered rules."""
    return len(_ALL_RULES)
