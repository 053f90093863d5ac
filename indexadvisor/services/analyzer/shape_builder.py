"""Candidate index shapes from classified column usage."""

import logging
from typing import Optional

from indexadvisor.core.config import Settings
from indexadvisor.core.config import settings as default_settings
from indexadvisor.core.models import (
    CandidateIndex,
    Cardinality,
    ColumnReference,
    ConditionKind,
    TableSchema,
)
from indexadvisor.services.analyzer.cardinality import estimate_cardinality
from indexadvisor.services.analyzer.classifier import LevelAnalysis, QueryAnalysis

logger = logging.getLogger(__name__)

# Lower bucket sorts first in the key
KIND_PRIORITY = {
    ConditionKind.EQUALITY: 1,
    ConditionKind.JOIN_KEY: 1,
    ConditionKind.IN: 2,
    ConditionKind.RANGE: 3,
    ConditionKind.LIKE: 4,
    ConditionKind.INEQUALITY: 5,
    ConditionKind.NOT_LIKE: 6,
    ConditionKind.GROUP_BY_KEY: 7,
}

_REASON_LABELS = {
    ConditionKind.EQUALITY: "Equality filter",
    ConditionKind.JOIN_KEY: "Join key",
    ConditionKind.IN: "IN-list filter",
    ConditionKind.RANGE: "Range filter",
    ConditionKind.LIKE: "Pattern match",
    ConditionKind.INEQUALITY: "Inequality filter",
    ConditionKind.NOT_LIKE: "Negated pattern match",
    ConditionKind.GROUP_BY_KEY: "GROUP BY",
    ConditionKind.ORDER_BY_KEY: "ORDER BY",
}


def primary_key_for(table: str, schema: dict[str, TableSchema], settings: Settings) -> Optional[str]:
    """Declared primary key, else the conventional key column when the table has it."""
    table_schema = schema.get(table)
    if table_schema is None:
        return None
    if table_schema.primary_key:
        return table_schema.primary_key
    if settings.primary_key_column in table_schema.columns:
        return settings.primary_key_column
    return None


def key_term(ref: ColumnReference) -> str:
    """What an index key stores for a reference: the expression or the bare column."""
    return ref.expression or ref.column


def order_key_columns(
    references: list[ColumnReference], primary_key: Optional[str] = None
) -> list[tuple[str, ConditionKind, Cardinality]]:
    """
    Order one table's filter, join and grouping terms for an index key.

    A term seen under several kinds takes its best bucket. Ties go to the
    more selective column, then to the term seen first. ORDER BY columns
    are appended after the rest, in their ORDER BY order. Expression terms
    take the cardinality of the column they wrap.
    """
    best: dict[str, ConditionKind] = {}
    first_seen: dict[str, int] = {}
    cardinality: dict[str, Cardinality] = {}
    for position, ref in enumerate(references):
        if ref.condition_kind not in KIND_PRIORITY:
            continue
        term = key_term(ref)
        first_seen.setdefault(term, position)
        cardinality.setdefault(term, estimate_cardinality(ref.column, primary_key))
        current = best.get(term)
        if current is None or KIND_PRIORITY[ref.condition_kind] < KIND_PRIORITY[current]:
            best[term] = ref.condition_kind

    ordered = sorted(
        best,
        key=lambda term: (KIND_PRIORITY[best[term]], -cardinality[term], first_seen[term]),
    )
    key = [(term, best[term], cardinality[term]) for term in ordered]

    for ref in references:
        if ref.condition_kind == ConditionKind.ORDER_BY_KEY and ref.column not in best:
            best[ref.column] = ConditionKind.ORDER_BY_KEY
            key.append((ref.column, ConditionKind.ORDER_BY_KEY, estimate_cardinality(ref.column, primary_key)))

    return key


def _build_candidate(
    table: str,
    references: list[ColumnReference],
    level: LevelAnalysis,
    schema: dict[str, TableSchema],
    settings: Settings,
    extra_reasons: Optional[list[str]] = None,
) -> Optional[CandidateIndex]:
    primary_key = primary_key_for(table, schema, settings)
    key = order_key_columns(references, primary_key)
    if not key:
        return None

    dropped = [column for column, _, _ in key[settings.max_key_columns :]]
    key = key[: settings.max_key_columns]
    reasons = [f"{_REASON_LABELS[kind]} on {column}" for column, kind, _ in key]
    if dropped:
        reasons.append(f"Key truncated to {settings.max_key_columns} columns, dropped: {', '.join(dropped)}")

    key_columns = [column for column, _, _ in key]

    include_columns = []
    if table in level.star_tables:
        reasons.append("SELECT * prevents a covering index")
    else:
        for ref in references:
            if ref.condition_kind != ConditionKind.PROJECTION:
                continue
            if ref.column not in key_columns and ref.column not in include_columns:
                include_columns.append(ref.column)
        if len(include_columns) > settings.max_include_columns:
            dropped = include_columns[settings.max_include_columns :]
            include_columns = include_columns[: settings.max_include_columns]
            reasons.append(f"INCLUDE truncated to {settings.max_include_columns} columns, dropped: {', '.join(dropped)}")
        if include_columns:
            reasons.append(f"Covers projected columns: {', '.join(include_columns)}")

    predicates = level.partial_predicates.get(table, [])
    partial_predicate = " AND ".join(predicates) if predicates else None
    if partial_predicate:
        reasons.append(f"Partial index on {partial_predicate}")

    leader = key_columns[0]
    leading_wildcard = any(
        key_term(ref) == leader and ref.leading_wildcard for ref in references
    ) and key[0][1] == ConditionKind.LIKE

    return CandidateIndex(
        table=table,
        key_columns=key_columns,
        include_columns=include_columns,
        partial_predicate=partial_predicate,
        uniqueness=primary_key is not None and key_columns == [primary_key],
        reasons=reasons + list(extra_reasons or []),
        key_kinds=[kind for _, kind, _ in key],
        key_cardinality=[cardinality for _, _, cardinality in key],
        leading_wildcard=leading_wildcard,
        traits=level.traits,
    )


def _branch_references(references: list[ColumnReference]) -> list[list[ColumnReference]]:
    """
    Split one table's references by top-level OR branch.

    Join keys and projected columns are shared by every branch. Grouping
    and ordering are left out because separate indexes combined by a bitmap
    OR or an index merge cannot deliver them.
    """
    numbers = sorted({ref.branch for ref in references if ref.branch is not None})
    shared = [
        ref
        for ref in references
        if ref.branch is None and ref.condition_kind in (ConditionKind.JOIN_KEY, ConditionKind.PROJECTION)
    ]
    groups = []
    seen = []
    for number in numbers:
        group = [ref for ref in references if ref.branch == number] + shared
        signature = sorted((key_term(ref), ref.condition_kind.value) for ref in group)
        if signature in seen:
            continue
        seen.append(signature)
        groups.append(group)
    return groups


def _intersection_reason(groups: list[list[ColumnReference]], primary_key: Optional[str]) -> Optional[str]:
    """Why separate branch indexes are worth combining, or None when they are not."""
    if len(groups) > 2:
        return f"Index intersection favored: {len(groups)} OR branches"
    for group in groups:
        for ref in group:
            if ref.branch is None:
                continue
            if ref.condition_kind == ConditionKind.RANGE:
                return f"Index intersection favored: range filter on {key_term(ref)}"
            cardinality = estimate_cardinality(ref.column, primary_key)
            if cardinality >= Cardinality.HIGH:
                return f"Index intersection favored: {cardinality.label} cardinality on {key_term(ref)}"
    return None


def build_shapes(
    analysis: QueryAnalysis,
    schema: dict[str, TableSchema],
    settings: Optional[Settings] = None,
) -> list[CandidateIndex]:
    """
    Build one candidate index per (query level, table) with a usable key.

    When the WHERE clause splits at a top-level OR, a table gets one
    candidate per branch instead, since a single composite key only serves
    the branch its leading column belongs to.

    Args:
        analysis: Output of ``classify``
        schema: Known tables by canonical name
        settings: Limits for key and INCLUDE width, defaults to global settings

    Returns:
        Candidates in level order, tables in first-reference order
    """
    settings = settings or default_settings
    candidates = []

    for level in analysis.levels:
        for table in level.tables():
            references = [ref for ref in level.references if ref.table == table]
            groups = _branch_references(references) if level.or_branches > 1 else []
            if len(groups) < 2:
                candidate = _build_candidate(table, references, level, schema, settings)
                if candidate is not None:
                    candidates.append(candidate)
                continue

            intersection = _intersection_reason(groups, primary_key_for(table, schema, settings))
            for number, group in enumerate(groups, start=1):
                extra = [f"OR branch {number} of {len(groups)} served by its own index"]
                if intersection:
                    extra.append(intersection)
                candidate = _build_candidate(table, group, level, schema, settings, extra)
                if candidate is not None:
                    candidates.append(candidate)

    logger.debug(f"Built {len(candidates)} candidate shapes for {analysis.table}")
    return candidates
