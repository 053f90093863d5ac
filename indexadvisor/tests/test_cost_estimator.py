"""Tests for candidate scoring and cost estimation."""

from indexadvisor.core.models import (
    CandidateIndex,
    Cardinality,
    ConditionKind,
    CostClass,
    QueryTraits,
    StorageKind,
)
from indexadvisor.services.analyzer.cost_estimator import (
    alternative_strategies,
    choose_storage_kind,
    estimate_cost,
    estimate_gain,
    estimate_size_bytes,
    evaluate_candidate,
    execution_plan_hints,
    index_hints,
    score_candidate,
)


def _candidate(columns, kinds, cardinality, **kwargs):
    return CandidateIndex(
        table="users",
        key_columns=columns,
        key_kinds=kinds,
        key_cardinality=cardinality,
        **kwargs,
    )


def _equality(column="org_id", cardinality=Cardinality.HIGH, **kwargs):
    return _candidate([column], [ConditionKind.EQUALITY], [cardinality], **kwargs)


def test_score_unique_lookup():
    """Test unique lookups get the top score."""
    candidate = _equality("id", Cardinality.VERY_HIGH, uniqueness=True)

    assert score_candidate(candidate) == 110


def test_score_composite_with_range():
    """Test composite bonus and range penalty cancel out."""
    candidate = _candidate(
        ["tenant_id", "created_at"],
        [ConditionKind.EQUALITY, ConditionKind.RANGE],
        [Cardinality.HIGH, Cardinality.MEDIUM_HIGH],
    )

    assert score_candidate(candidate) == 100


def test_score_penalizes_complexity_and_patterns():
    """Test OR and LIKE penalties."""
    candidate = _candidate(
        ["name"],
        [ConditionKind.LIKE],
        [Cardinality.MEDIUM],
        traits=QueryTraits(has_or=True),
    )

    assert score_candidate(candidate) == 70


def test_cost_unique_lookup():
    """Test unique equality is the cheapest class."""
    candidate = _equality("id", Cardinality.VERY_HIGH, uniqueness=True)

    cost, cost_class = estimate_cost(candidate)
    assert cost == 4
    assert cost_class == CostClass.VERY_LOW


def test_cost_low_cardinality_leader():
    """Test a low-cardinality leading column raises the cost."""
    cost, cost_class = estimate_cost(_equality("status", Cardinality.LOW))

    assert cost == 24
    assert cost_class == CostClass.LOW


def test_cost_leading_wildcard():
    """Test leading-wildcard patterns stay expensive."""
    candidate = _candidate(["name"], [ConditionKind.LIKE], [Cardinality.MEDIUM], leading_wildcard=True)

    assert estimate_cost(candidate) == (80, CostClass.MODERATE)


def test_cost_limit_discount():
    """Test small LIMITs reduce the cost."""
    candidate = _equality(traits=QueryTraits(has_limit=True, limit_value=10))
    larger = _equality(traits=QueryTraits(has_limit=True, limit_value=500))
    unknown = _equality(traits=QueryTraits(has_limit=True, limit_value=None))

    assert estimate_cost(candidate)[0] == 6
    assert estimate_cost(larger)[0] == 12
    assert estimate_cost(unknown)[0] == 20


def test_cost_or_and_join():
    """Test OR and join multipliers."""
    candidate = _equality(traits=QueryTraits(has_or=True, has_join=True))

    assert estimate_cost(candidate) == (36, CostClass.LOW)


def test_cost_range_width():
    """Test single and multi-column range leaders."""
    single = _candidate(["amount"], [ConditionKind.RANGE], [Cardinality.MEDIUM])
    multi = _candidate(
        ["amount", "status"],
        [ConditionKind.RANGE, ConditionKind.INEQUALITY],
        [Cardinality.MEDIUM, Cardinality.LOW],
    )

    assert estimate_cost(single) == (40, CostClass.LOW)
    assert estimate_cost(multi) == (60, CostClass.MEDIUM)


def test_storage_kind_hash_for_pure_lookup():
    """Test hash is chosen only for a bare high-cardinality equality."""
    assert choose_storage_kind(_equality("email", Cardinality.VERY_HIGH)) == StorageKind.HASH
    assert (
        choose_storage_kind(_equality("email", Cardinality.VERY_HIGH, include_columns=["name"]))
        == StorageKind.BTREE
    )
    assert (
        choose_storage_kind(_equality("email", Cardinality.VERY_HIGH, partial_predicate="deleted_at IS NULL"))
        == StorageKind.BTREE
    )
    assert choose_storage_kind(_equality("id", Cardinality.VERY_HIGH, uniqueness=True)) == StorageKind.BTREE
    assert choose_storage_kind(_equality()) == StorageKind.BTREE


def test_storage_kind_gin_for_leading_wildcard():
    """Test GIN for leading-wildcard patterns."""
    candidate = _candidate(["name"], [ConditionKind.LIKE], [Cardinality.MEDIUM], leading_wildcard=True)

    assert choose_storage_kind(candidate) == StorageKind.GIN


def test_index_hints():
    """Test timestamp, pattern, document and width hints."""
    candidate = _candidate(
        ["tenant_id", "metadata_json", "kind", "name", "created_at"],
        [
            ConditionKind.EQUALITY,
            ConditionKind.EQUALITY,
            ConditionKind.IN,
            ConditionKind.LIKE,
            ConditionKind.RANGE,
        ],
        [Cardinality.HIGH, Cardinality.MEDIUM, Cardinality.LOW, Cardinality.MEDIUM, Cardinality.MEDIUM_HIGH],
        traits=QueryTraits(having="COUNT(*) > 5"),
    )

    hints = index_hints(candidate)
    assert len(hints) == 5
    assert "BRIN" in hints[0]
    assert "pg_trgm" in hints[1]
    assert "metadata_json" in hints[2]
    assert "Wide composite index" in hints[3]
    assert "HAVING COUNT(*) > 5" in hints[4]


def test_index_hints_empty():
    """Test a plain lookup needs no hints."""
    assert index_hints(_equality()) == []


def test_estimate_gain():
    """Test gain ranges."""
    assert estimate_gain(_equality("id", Cardinality.VERY_HIGH, uniqueness=True)) == "95-99%"
    assert estimate_gain(_equality()) == "80-90%"
    assert estimate_gain(_equality("email", Cardinality.VERY_HIGH)) == "95-100%"
    assert estimate_gain(_equality(partial_predicate="deleted_at IS NULL")) == "90-100%"

    pattern = _candidate(["name"], [ConditionKind.LIKE], [Cardinality.MEDIUM], traits=QueryTraits(has_or=True))
    assert estimate_gain(pattern) == "40-50%"


def test_estimate_size_bytes():
    """Test size grows with index width."""
    assert estimate_size_bytes(_equality()) == 100
    assert estimate_size_bytes(_equality(include_columns=["name"])) == 150
    assert estimate_size_bytes(_equality(include_columns=["name", "email"])) == 180
    assert estimate_size_bytes(_equality(include_columns=["name", "email", "status"])) == 200


def test_evaluate_candidate_fills_fields():
    """Test evaluation attaches all advisory fields."""
    candidate = _equality("email", Cardinality.VERY_HIGH, reasons=["Equality filter on email"])

    evaluated = evaluate_candidate(candidate)

    assert evaluated.score == 100
    assert evaluated.relative_cost == 9
    assert evaluated.cost_class == CostClass.VERY_LOW
    assert evaluated.storage_kind == StorageKind.HASH
    assert evaluated.estimated_gain == "95-100%"
    assert evaluated.estimated_size_bytes == 100
    assert evaluated.reasons[-1] == "Hash index suits equality-only lookups on email"


def test_evaluate_candidate_leaves_input_untouched():
    """Test evaluation returns a copy."""
    candidate = _equality(traits=QueryTraits(has_or=True), reasons=["Equality filter on org_id"])

    evaluated = evaluate_candidate(candidate)

    assert candidate.reasons == ["Equality filter on org_id"]
    assert candidate.score == 0
    assert any("OR conditions present" in reason for reason in evaluated.reasons)


def test_index_hints_expression_key():
    """Test expression keys remind that queries must use the same expression."""
    hints = index_hints(_equality("lower(email)", Cardinality.VERY_HIGH))

    assert any("lower(email)" in hint for hint in hints)


def test_alternative_strategies():
    """Test alternative strategies for wide, partial, OR, hash and grouped candidates."""
    wide = _candidate(
        ["a", "b", "c", "d"],
        [ConditionKind.EQUALITY] * 4,
        [Cardinality.MEDIUM] * 4,
        partial_predicate="deleted_at IS NULL",
        traits=QueryTraits(has_or=True, has_group_by=True, has_aggregate=True),
    )

    alternatives = alternative_strategies(wide, StorageKind.BTREE)

    assert alternatives[0] == (
        "Consider index intersection with separate indexes on a, b instead of a wide composite index"
    )
    assert any("partial index is optimal" in alt for alt in alternatives)
    assert any("UNION ALL" in alt for alt in alternatives)
    assert any("materialized summary table" in alt for alt in alternatives)
    assert alternative_strategies(_equality("email"), StorageKind.HASH) == [
        "Keep a B-tree on email if range scans or ORDER BY on it are also needed"
    ]
    assert alternative_strategies(_equality(), StorageKind.BTREE) == []


def test_execution_plan_hints_primary_key_and_limit():
    """Test plan hints for a primary key lookup with a LIMIT."""
    candidate = _equality("id", Cardinality.VERY_HIGH, uniqueness=True, traits=QueryTraits(has_limit=True))

    hints = execution_plan_hints(candidate)

    assert hints[0] == "Primary key lookup on id, the fastest access path"
    assert "LIMIT lets the scan stop early" in hints


def test_execution_plan_hints_order_by():
    """Test ORDER BY is reported as satisfied only when it is part of the key."""
    traits = QueryTraits(has_order_by=True)
    sorted_by_key = _candidate(
        ["tenant_id", "created_at"],
        [ConditionKind.EQUALITY, ConditionKind.ORDER_BY_KEY],
        [Cardinality.HIGH, Cardinality.MEDIUM_HIGH],
        traits=traits,
    )
    unsorted = _equality("tenant_id", traits=traits)

    assert execution_plan_hints(sorted_by_key)[0] == "Multi-column index scan on tenant_id, created_at"
    assert "ORDER BY is satisfied by the key order, no extra sort step" in execution_plan_hints(sorted_by_key)
    assert "ORDER BY columns are not in the key, an extra sort step is required" in execution_plan_hints(unsorted)


def test_execution_plan_hints_complexity():
    """Test plan hints for OR, joins, subqueries, ranges and covering."""
    candidate = _candidate(
        ["created_at"],
        [ConditionKind.RANGE],
        [Cardinality.MEDIUM_HIGH],
        include_columns=["email"],
        traits=QueryTraits(has_or=True, has_join=True, has_subquery=True, has_aggregate=True),
    )

    hints = execution_plan_hints(candidate)

    assert hints[:2] == ["Index scan on created_at", "Index-only scan possible, projected columns are covered"]
    assert "OR conditions need a bitmap OR or index merge, or a rewrite to UNION" in hints
    assert "Join present, the index supports a nested loop or merge join on its key" in hints
    assert "Subquery present, consider converting it to a JOIN" in hints
    assert "B-tree range scan instead of an exact match" in hints
    assert "Aggregate without GROUP BY, a covering index allows index-only aggregation" in hints


def test_evaluate_candidate_attaches_alternatives_and_plan_hints():
    """Test evaluation fills alternatives and plan hints."""
    evaluated = evaluate_candidate(_equality("email", Cardinality.VERY_HIGH))

    assert evaluated.storage_kind == StorageKind.HASH
    assert evaluated.alternatives == ["Keep a B-tree on email if range scans or ORDER BY on it are also needed"]
    assert evaluated.plan_hints == ["Index scan on email"]
