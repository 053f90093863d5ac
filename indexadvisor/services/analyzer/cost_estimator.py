"""Heuristic scoring and cost estimation for candidate indexes."""

import logging

from indexadvisor.core.models import (
    CandidateIndex,
    Cardinality,
    ConditionKind,
    CostClass,
    StorageKind,
)

logger = logging.getLogger(__name__)

MAX_SCORE = 110

# Base relative cost by leading key kind, a full scan is 100
_BASE_COST = {
    ConditionKind.EQUALITY: 20,
    ConditionKind.JOIN_KEY: 25,
    ConditionKind.IN: 30,
    ConditionKind.GROUP_BY_KEY: 45,
    ConditionKind.ORDER_BY_KEY: 45,
    ConditionKind.LIKE: 50,
    ConditionKind.INEQUALITY: 70,
    ConditionKind.NOT_LIKE: 90,
}

_TIMESTAMP_SUFFIXES = ("_at", "timestamp", "_time", "_date")
_DOCUMENT_MARKERS = ("json", "array", "data")


def score_candidate(candidate: CandidateIndex) -> int:
    """
    Effectiveness score, higher is better.

    Starts at 100 and moves with uniqueness, key width, pattern and range
    predicates and OR/grouping complexity. Clamped to 0..110.
    """
    score = 100

    if candidate.uniqueness:
        score += 10
    if len(candidate.key_columns) > 1:
        score += 5
    if ConditionKind.LIKE in candidate.key_kinds:
        score -= 10
    if ConditionKind.RANGE in candidate.key_kinds:
        score -= 5
    if candidate.traits.is_complex:
        score -= 20

    return max(0, min(MAX_SCORE, score))


def _cost_class(cost: float) -> CostClass:
    if cost < 20:
        return CostClass.VERY_LOW
    elif cost < 50:
        return CostClass.LOW
    elif cost < 80:
        return CostClass.MEDIUM
    elif cost < 100:
        return CostClass.MODERATE
    return CostClass.HIGH


def estimate_cost(candidate: CandidateIndex) -> tuple[int, CostClass]:
    """
    Estimate relative query cost with the index in place.

    Returns:
        (relative_cost, cost_class) where 100 is the cost of a full table scan
    """
    leader = candidate.key_kinds[0] if candidate.key_kinds else ConditionKind.EQUALITY
    traits = candidate.traits

    if candidate.uniqueness and leader in (ConditionKind.EQUALITY, ConditionKind.JOIN_KEY):
        cost = 5.0
    elif leader == ConditionKind.EQUALITY and candidate.key_cardinality[0] == Cardinality.VERY_HIGH:
        cost = 10.0
    elif leader == ConditionKind.RANGE:
        cost = 40.0 if len(candidate.key_columns) == 1 else 60.0
    elif leader == ConditionKind.LIKE and candidate.leading_wildcard:
        cost = 80.0
    else:
        cost = float(_BASE_COST[leader])

    if traits.has_or:
        cost *= 1.5
    if traits.has_subquery:
        cost *= 1.3
    if traits.has_join:
        cost *= 1.2
    if traits.has_group_by:
        cost *= 1.1

    # early termination
    if traits.has_limit and traits.limit_value is not None:
        if traits.limit_value <= 100:
            cost *= 0.3
        elif traits.limit_value <= 1000:
            cost *= 0.6

    if candidate.key_cardinality:
        if Cardinality.VERY_HIGH in candidate.key_cardinality:
            cost *= 0.9
        if candidate.key_cardinality[0] <= Cardinality.LOW:
            cost *= 1.2

    relative_cost = int(round(cost))
    return relative_cost, _cost_class(relative_cost)


def choose_storage_kind(candidate: CandidateIndex) -> StorageKind:
    """GIN for leading-wildcard patterns, HASH for pure high-cardinality lookups, else B-tree."""
    if candidate.leading_wildcard:
        return StorageKind.GIN
    if (
        len(candidate.key_columns) == 1
        and candidate.key_kinds == [ConditionKind.EQUALITY]
        and candidate.key_cardinality[0] == Cardinality.VERY_HIGH
        and not candidate.uniqueness
        and not candidate.include_columns
        and not candidate.partial_predicate
    ):
        return StorageKind.HASH
    return StorageKind.BTREE


def index_hints(candidate: CandidateIndex) -> list[str]:
    """Database-specific suggestions that complement the index itself."""
    hints = []
    columns = [c.lower() for c in candidate.key_columns]

    if any(c.endswith(_TIMESTAMP_SUFFIXES) for c in columns):
        hints.append(
            "Consider a BRIN index for timestamp columns if the table is large "
            "and rows are inserted in time order"
        )
    if ConditionKind.LIKE in candidate.key_kinds or ConditionKind.NOT_LIKE in candidate.key_kinds:
        hints.append("For text patterns, consider trigram GIN/GiST indexes with the pg_trgm extension (PostgreSQL)")

    for column in candidate.key_columns:
        if any(marker in column.lower() for marker in _DOCUMENT_MARKERS):
            hints.append(f"Consider a GIN index for {column} to support JSON/array operators")
            break

    expressions = [column for column in candidate.key_columns if "(" in column]
    if expressions:
        hints.append(f"Queries must filter on exactly {', '.join(expressions)} for the planner to match this index")

    if len(candidate.key_columns) > 4:
        hints.append("Wide composite index (>4 columns) may have diminishing returns, consider separate indexes")
    if candidate.traits.having:
        hints.append(f"HAVING {candidate.traits.having} is applied after grouping and cannot use this index")

    return hints


def estimate_gain(candidate: CandidateIndex) -> str:
    """Expected speed-up over a full scan as a percentage range."""
    if candidate.uniqueness:
        return "95-99%"

    gain = 80
    if candidate.key_cardinality and candidate.key_cardinality[0] == Cardinality.VERY_HIGH:
        gain += 15
    if len(candidate.key_columns) > 1:
        gain += 5
    if ConditionKind.LIKE in candidate.key_kinds:
        gain -= 15
    if candidate.traits.has_or:
        gain -= 25
    if ConditionKind.RANGE in candidate.key_kinds:
        gain -= 5
    if candidate.partial_predicate:
        gain += 10

    gain = max(20, min(99, gain))
    return f"{gain}-{min(gain + 10, 100)}%"


def estimate_size_bytes(candidate: CandidateIndex) -> int:
    """Rough per-entry index size in bytes."""
    width = len(candidate.key_columns) + len(candidate.include_columns)
    multiplier = {1: 1.0, 2: 1.5, 3: 1.8}.get(width, 2.0)
    return int(100 * multiplier)


def alternative_strategies(candidate: CandidateIndex, storage_kind: StorageKind) -> list[str]:
    """Other ways to serve the same access pattern, worth weighing against the index."""
    alternatives = []
    columns = candidate.key_columns

    if len(columns) > 3:
        alternatives.append(
            f"Consider index intersection with separate indexes on {', '.join(columns[:2])} "
            "instead of a wide composite index"
        )
    if candidate.partial_predicate:
        alternatives.append(
            "If most queries target the filtered subset a partial index is optimal, otherwise use a full index"
        )
    if candidate.traits.has_or:
        alternatives.append("Rewrite the OR branches as UNION ALL so each branch uses its own index")
    if storage_kind == StorageKind.HASH:
        alternatives.append(f"Keep a B-tree on {columns[0]} if range scans or ORDER BY on it are also needed")
    if candidate.traits.has_group_by and candidate.traits.has_aggregate:
        alternatives.append("For repeated aggregation over the same groups, consider a materialized summary table")

    return alternatives


def execution_plan_hints(candidate: CandidateIndex) -> list[str]:
    """How the planner is expected to use the index."""
    hints = []
    traits = candidate.traits
    columns = candidate.key_columns

    if candidate.uniqueness:
        hints.append(f"Primary key lookup on {columns[0]}, the fastest access path")
    elif len(columns) == 1:
        hints.append(f"Index scan on {columns[0]}")
    else:
        hints.append(f"Multi-column index scan on {', '.join(columns)}")
    if candidate.include_columns:
        hints.append("Index-only scan possible, projected columns are covered")

    if traits.has_join:
        hints.append("Join present, the index supports a nested loop or merge join on its key")
    if traits.has_order_by:
        if ConditionKind.ORDER_BY_KEY in candidate.key_kinds:
            hints.append("ORDER BY is satisfied by the key order, no extra sort step")
        else:
            hints.append("ORDER BY columns are not in the key, an extra sort step is required")
    if traits.has_group_by:
        hints.append("GROUP BY can read groups in key order")
    if traits.has_aggregate and not traits.has_group_by:
        hints.append("Aggregate without GROUP BY, a covering index allows index-only aggregation")
    if traits.has_or:
        hints.append("OR conditions need a bitmap OR or index merge, or a rewrite to UNION")
    if traits.has_subquery:
        hints.append("Subquery present, consider converting it to a JOIN")
    if traits.has_limit:
        hints.append("LIMIT lets the scan stop early")
    if ConditionKind.RANGE in candidate.key_kinds:
        hints.append("B-tree range scan instead of an exact match")

    return hints


def evaluate_candidate(candidate: CandidateIndex) -> CandidateIndex:
    """
    Score a candidate and attach cost, storage kind and advisory fields.

    Returns:
        New CandidateIndex, the input is left untouched
    """
    relative_cost, cost_class = estimate_cost(candidate)
    storage_kind = choose_storage_kind(candidate)

    reasons = list(candidate.reasons)
    if candidate.traits.has_or:
        reasons.append("OR conditions present, the planner may need a bitmap OR or a rewrite to UNION")
    if storage_kind == StorageKind.HASH:
        reasons.append(f"Hash index suits equality-only lookups on {candidate.key_columns[0]}")
    elif storage_kind == StorageKind.GIN:
        reasons.append(f"Leading wildcard on {candidate.key_columns[0]} needs a trigram GIN index")

    evaluated = candidate.model_copy(
        update={
            "score": score_candidate(candidate),
            "relative_cost": relative_cost,
            "cost_class": cost_class,
            "storage_kind": storage_kind,
            "reasons": reasons,
            "hints": index_hints(candidate),
            "alternatives": alternative_strategies(candidate, storage_kind),
            "plan_hints": execution_plan_hints(candidate),
            "estimated_gain": estimate_gain(candidate),
            "estimated_size_bytes": estimate_size_bytes(candidate),
        }
    )
    logger.debug(
        f"Scored {candidate.table}({', '.join(candidate.key_columns)}): "
        f"score={evaluated.score}, cost={relative_cost} ({cost_class.value})"
    )
    return evaluated
