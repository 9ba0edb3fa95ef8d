"""Include/exclude targeting evaluation for plugins and experiments.

A rule set is a mapping from dimension name to one of:

- a list of allowed (include) or blocked (exclude) values,
- the wildcard ``"all"`` (bare or inside the list),
- under the reserved key ``special``, a zero-argument predicate.

Evaluation is pure apart from calling the ``special`` predicates, which run
inside an error boundary: a predicate that raises is logged and counts as
``False``.

Dimension values are compared case-insensitively after ``str()``. Domains
are compared verbatim, so ``"Example.com"`` and ``"example.com"`` are
different hosts.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

WILDCARD = "all"
SPECIAL = "special"

MATCH_EXACT = "exact"
MATCH_STARTS_WITH = "startsWith"
MATCH_INCLUDES = "includes"
MATCH_TYPES = (MATCH_EXACT, MATCH_STARTS_WITH, MATCH_INCLUDES)

Rules = Mapping[str, Any]
DimensionConfig = Mapping[str, Mapping[str, Any]]


@dataclass(frozen=True)
class TargetingResult:
    """Outcome of a targeting evaluation."""

    matched: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"matched": self.matched, "reason": self.reason}


def as_rule_list(rules: Any) -> list:
    """Coerce a rule value into a list (``None`` → ``[]``, ``"all"`` → ``["all"]``)."""
    if rules is None:
        return []
    if isinstance(rules, (str, int, float)):
        return [rules]
    return list(rules)


def _normalize(value: Any) -> str:
    return str(value).lower()


def _any_match(value: Any, rules: Iterable[Any], match_type: str) -> bool:
    normalized_value = _normalize(value)
    normalized_rules = [_normalize(rule) for rule in rules]

    if match_type == MATCH_STARTS_WITH:
        return any(normalized_value.startswith(rule) for rule in normalized_rules)
    if match_type == MATCH_INCLUDES:
        return any(rule in normalized_value for rule in normalized_rules)
    return any(normalized_value == rule for rule in normalized_rules)


def matches_rule(value: Any, rules: Any, match_type: str = MATCH_EXACT) -> bool:
    """Return True if ``value`` is allowed by an include rule list.

    An empty or missing list allows everything, as does a list containing
    ``"all"`` anywhere.

    Args:
        value: Current dimension value.
        rules: Allowed values, ``"all"``, or None.
        match_type: ``exact`` (default), ``startsWith`` or ``includes``.
    """
    rules = as_rule_list(rules)
    if not rules or WILDCARD in rules:
        return True
    return _any_match(value, rules, match_type)


def is_excluded(value: Any, rules: Any, match_type: str = MATCH_EXACT) -> bool:
    """Return True if ``value`` is blocked by an exclude rule list.

    An empty or missing list blocks nothing; a list containing ``"all"``
    blocks everything.
    """
    rules = as_rule_list(rules)
    if not rules:
        return False
    if WILDCARD in rules:
        return True
    return _any_match(value, rules, match_type)


def matches_domain(domains: Any, current_domain: Optional[str]) -> bool:
    """Return True if ``current_domain`` is one of the allowed hosts.

    Comparison is exact and case-sensitive. An empty list or ``"all"``
    allows any host.
    """
    domains = as_rule_list(domains)
    if not domains or WILDCARD in domains:
        return True
    return (current_domain or "") in domains


def _never() -> bool:
    return False


def normalize_targeting_config(
    include: Optional[Rules] = None, exclude: Optional[Rules] = None
) -> Dict[str, Dict[str, Any]]:
    """Return copies of ``include``/``exclude`` with a default ``special``.

    Rule values other than ``special`` are coerced to lists.
    """
    normalized = {}
    for key, rules in (("include", include), ("exclude", exclude)):
        rule_set: Dict[str, Any] = {SPECIAL: _never}
        for dimension, value in (rules or {}).items():
            if dimension == SPECIAL:
                if callable(value):
                    rule_set[SPECIAL] = value
                continue
            rule_set[dimension] = as_rule_list(value)
        normalized[key] = rule_set
    return normalized


def _run_special(predicate: Optional[Callable[[], Any]], label: str) -> bool:
    if not callable(predicate):
        return False
    try:
        return predicate() is True
    except Exception as e:
        logger.error(f"{label}.special() threw error: {e}")
        return False


def evaluate_targeting(
    include: Optional[Rules] = None,
    exclude: Optional[Rules] = None,
    context: Optional[Mapping[str, Any]] = None,
    dimension_config: Optional[DimensionConfig] = None,
) -> TargetingResult:
    """Evaluate include/exclude rules against a context snapshot.

    Order of evaluation, first decisive rule wins:

    1. ``exclude.special()`` returning True → not matched.
    2. ``include.special()`` returning True → matched, overriding every
       per-dimension rule.
    3. For each dimension in the context's own order: a matching exclude
       list → not matched; a non-matching include list → not matched.
    4. Otherwise matched.

    Args:
        include: Include rules by dimension.
        exclude: Exclude rules by dimension.
        context: Current dimension values.
        dimension_config: Per-dimension ``{"matchType": ...}``; missing
            entries use exact matching.

    Returns:
        TargetingResult: Match flag and a human-readable reason.

    Example:
        >>> evaluate_targeting(
        ...     {"zone": ["sport", "news"], "pagetype": ["all"]},
        ...     {"zone": ["puzzles"]},
        ...     {"zone": "sport.football", "pagetype": "article"},
        ...     {"zone": {"matchType": "startsWith"}},
        ... ).matched
        True
    """
    include = include or {}
    exclude = exclude or {}
    context = context or {}
    dimension_config = dimension_config or {}

    if _run_special(exclude.get(SPECIAL), "exclude"):
        return TargetingResult(False, "Excluded by special function")

    if _run_special(include.get(SPECIAL), "include"):
        return TargetingResult(True, "Included by special function")

    for dimension, current_value in context.items():
        match_type = (dimension_config.get(dimension) or {}).get(
            "matchType", MATCH_EXACT
        )

        exclude_rules = as_rule_list(exclude.get(dimension))
        if exclude_rules and is_excluded(current_value, exclude_rules, match_type):
            return TargetingResult(
                False, f"Excluded by {dimension}: {current_value}"
            )

        include_rules = as_rule_list(include.get(dimension))
        if include_rules and not matches_rule(
            current_value, include_rules, match_type
        ):
            return TargetingResult(
                False, f"Not included by {dimension}: {current_value}"
            )

    return TargetingResult(True, "All targeting rules passed")
