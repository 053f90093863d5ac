"""Index recommendation engine: candidate deduplication and DDL rendering."""

import hashlib
import logging
import re
from typing import Optional

from indexadvisor.core.dialects import DialectConfig, quote_identifier
from indexadvisor.core.models import CandidateIndex, Recommendation, StorageKind

logger = logging.getLogger(__name__)

MAX_IDENTIFIER_LENGTH = 63

# function(column[, arguments]) as stored for expression keys
_EXPRESSION = re.compile(r"^(\w+)\((\w+)(,.*)?\)$")


def _merge_unique(first: list[str], second: list[str]) -> list[str]:
    return list(dict.fromkeys(list(first) + list(second)))


def _storage_compatible(shorter: CandidateIndex, longer: CandidateIndex) -> bool:
    if shorter.storage_kind == longer.storage_kind:
        return True
    # a B-tree serves equality lookups, but never a trigram search
    return longer.storage_kind == StorageKind.BTREE and shorter.storage_kind != StorageKind.GIN


def absorbs(longer: CandidateIndex, shorter: CandidateIndex) -> bool:
    """True when ``longer`` serves every query ``shorter`` was built for."""
    if longer.table != shorter.table:
        return False
    if longer.key_columns[: len(shorter.key_columns)] != shorter.key_columns:
        return False
    covered = set(longer.key_columns) | set(longer.include_columns)
    if not set(shorter.include_columns) <= covered:
        return False
    if shorter.partial_predicate != longer.partial_predicate:
        return False
    return _storage_compatible(shorter, longer)


def _merge(survivor: CandidateIndex, absorbed: CandidateIndex) -> CandidateIndex:
    return survivor.model_copy(
        update={
            "reasons": _merge_unique(survivor.reasons, absorbed.reasons),
            "hints": _merge_unique(survivor.hints, absorbed.hints),
            "alternatives": _merge_unique(survivor.alternatives, absorbed.alternatives),
            "plan_hints": _merge_unique(survivor.plan_hints, absorbed.plan_hints),
            "occurrences": survivor.occurrences + absorbed.occurrences,
            "score": max(survivor.score, absorbed.score),
        }
    )


def dedupe_candidates(candidates: list[CandidateIndex]) -> dict[str, list[CandidateIndex]]:
    """
    Collapse candidates that are served by a wider index on the same table.

    A candidate is absorbed when another one's key starts with its key, the
    other's key and INCLUDE columns cover its INCLUDE columns, both carry the
    same partial predicate and the storage kinds are compatible. Reasons and
    occurrence counts of absorbed candidates move to the survivor.

    Returns:
        Surviving candidates per table, best score first, then by key columns
    """
    by_table: dict[str, list[CandidateIndex]] = {}
    for candidate in candidates:
        by_table.setdefault(candidate.table, []).append(candidate)

    result = {}
    for table, group in by_table.items():
        ordered = sorted(group, key=lambda c: (-len(c.key_columns), -len(c.include_columns)))
        survivors: list[CandidateIndex] = []
        for candidate in ordered:
            for i, survivor in enumerate(survivors):
                if absorbs(survivor, candidate):
                    survivors[i] = _merge(survivor, candidate)
                    break
            else:
                survivors.append(candidate)

        survivors.sort(key=lambda c: (-c.score, c.key_columns))
        result[table] = survivors
        logger.debug(f"Deduplicated {len(group)} candidates on {table} to {len(survivors)}")

    return result


def is_expression(term: str) -> bool:
    return "(" in term


def index_name(candidate: CandidateIndex, dialect_config: Optional[DialectConfig] = None) -> str:
    """
    Generate ``idx_<table>_<keys>`` with ``_functional``/``_covering``/``_partial`` suffixes.

    Covering and partial suffixes only appear when the dialect renders the
    clause. Names longer than 63 characters are cut and given a stable hash
    suffix.
    """
    dialect_config = dialect_config or DialectConfig()
    parts = ["idx", candidate.table, *candidate.key_columns]
    if any(is_expression(column) for column in candidate.key_columns):
        parts.append("functional")
    if candidate.include_columns and dialect_config.supports_include:
        parts.append("covering")
    if candidate.partial_predicate and dialect_config.supports_partial:
        parts.append("partial")

    name = "_".join(re.sub(r"\W+", "_", part).strip("_") for part in parts).lower()
    if len(name) > MAX_IDENTIFIER_LENGTH:
        digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
        name = f"{name[: MAX_IDENTIFIER_LENGTH - 9]}_{digest}"
    return name


def render_key(term: str, quote) -> str:
    """A key column, or a parenthesized expression such as ``(lower(email))``."""
    match = _EXPRESSION.match(term)
    if match is None:
        return quote(term)
    function, column, rest = match.groups()
    return f"({function}({quote(column)}{rest or ''}))"


def render_ddl(
    candidate: CandidateIndex,
    dialect_config: Optional[DialectConfig] = None,
    name: Optional[str] = None,
) -> str:
    """
    Render the CREATE INDEX statement for a candidate.

    Format:
        CREATE INDEX [IF NOT EXISTS] <name> ON <table> [USING <kind>] (<keys>)
        [INCLUDE (<cols>)] [WHERE <predicate>]

    Clauses the dialect does not support are left out. USING is only
    emitted for PostgreSQL.
    """
    dialect_config = dialect_config or DialectConfig()
    dialect = dialect_config.dialect

    def q(identifier: str) -> str:
        return quote_identifier(identifier, dialect) if dialect_config.quote_identifiers else identifier

    parts = ["CREATE INDEX"]
    if dialect_config.supports_if_not_exists:
        parts.append("IF NOT EXISTS")
    parts.append(q(name or index_name(candidate, dialect_config)))
    parts.append(f"ON {q(candidate.table)}")

    keys = [render_key(column, q) for column in candidate.key_columns]
    if dialect == "postgres" and candidate.storage_kind != StorageKind.BTREE:
        parts.append(f"USING {candidate.storage_kind.value}")
        if candidate.storage_kind == StorageKind.GIN:
            keys[0] = f"{keys[0]} gin_trgm_ops"
    parts.append(f"({', '.join(keys)})")

    if candidate.include_columns and dialect_config.supports_include:
        parts.append(f"INCLUDE ({', '.join(q(column) for column in candidate.include_columns)})")
    if candidate.partial_predicate and dialect_config.supports_partial:
        parts.append(f"WHERE {candidate.partial_predicate}")

    return " ".join(parts)


def to_recommendation(
    candidate: CandidateIndex,
    dialect_config: Optional[DialectConfig] = None,
    name: Optional[str] = None,
) -> Recommendation:
    """Read-only projection of a surviving candidate with its name and DDL."""
    dialect_config = dialect_config or DialectConfig()
    name = name or index_name(candidate, dialect_config)

    reasons = list(candidate.reasons)
    if candidate.include_columns and not dialect_config.supports_include:
        reasons.append(f"INCLUDE is not supported by {dialect_config.dialect}, covering columns omitted from DDL")
    if candidate.partial_predicate and not dialect_config.supports_partial:
        reasons.append(f"Partial indexes are not supported by {dialect_config.dialect}, predicate omitted from DDL")

    return Recommendation(
        name=name,
        table=candidate.table,
        key_columns=tuple(candidate.key_columns),
        include_columns=tuple(candidate.include_columns),
        partial_predicate=candidate.partial_predicate,
        storage_kind=candidate.storage_kind,
        uniqueness=candidate.uniqueness,
        score=candidate.score,
        cost_class=candidate.cost_class,
        relative_cost=candidate.relative_cost,
        reasons=tuple(reasons),
        hints=tuple(candidate.hints),
        alternatives=tuple(candidate.alternatives),
        plan_hints=tuple(candidate.plan_hints),
        estimated_gain=candidate.estimated_gain,
        estimated_size_bytes=candidate.estimated_size_bytes,
        occurrences=candidate.occurrences,
        ddl=render_ddl(candidate, dialect_config, name),
    )


def _gated(candidate: CandidateIndex, dialect_config: DialectConfig) -> CandidateIndex:
    """The candidate as the dialect will build it."""
    return candidate.model_copy(
        update={
            "include_columns": candidate.include_columns if dialect_config.supports_include else [],
            "partial_predicate": candidate.partial_predicate if dialect_config.supports_partial else None,
        }
    )


def absorb_gated(candidates: list[CandidateIndex], dialect_config: DialectConfig) -> list[CandidateIndex]:
    """
    Repeat prefix subsumption on the shapes the dialect will actually build.

    Dropping INCLUDE columns or a partial predicate can leave one survivor a
    prefix of another, as when MySQL renders both ``(email)`` and
    ``(email, tenant_id)`` as plain B-trees.
    """
    if dialect_config.supports_include and dialect_config.supports_partial:
        return candidates

    ordered = sorted(
        candidates,
        key=lambda c: (-len(c.key_columns), -len(_gated(c, dialect_config).include_columns)),
    )
    survivors: list[CandidateIndex] = []
    for candidate in ordered:
        gated = _gated(candidate, dialect_config)
        for i, survivor in enumerate(survivors):
            if absorbs(_gated(survivor, dialect_config), gated):
                merged = _merge(survivor, candidate)
                reason = (
                    f"Absorbed ({', '.join(candidate.key_columns)}) after {dialect_config.dialect} "
                    "dropped its unsupported clauses"
                )
                survivors[i] = merged.model_copy(update={"reasons": _merge_unique(merged.reasons, [reason])})
                logger.debug(f"{reason} on {candidate.table}")
                break
        else:
            survivors.append(candidate)

    survivors.sort(key=lambda c: (-c.score, c.key_columns))
    return survivors


def recommend_indexes(
    candidates: list[CandidateIndex],
    dialect_config: Optional[DialectConfig] = None,
) -> dict[str, list[Recommendation]]:
    """
    Deduplicate scored candidates and render them for a dialect.

    Returns:
        Recommendations per table, ordered by score. Prefix subsumption runs again
        on the shapes left once unsupported clauses are dropped, and
        candidates that still render to the same statement are folded into
        the first one.
    """
    dialect_config = dialect_config or DialectConfig()
    recommendations: dict[str, list[Recommendation]] = {}

    for table, survivors in dedupe_candidates(candidates).items():
        survivors = absorb_gated(survivors, dialect_config)
        rendered: list[Recommendation] = []
        for candidate in survivors:
            recommendation = to_recommendation(candidate, dialect_config)
            if any(r.name == recommendation.name and r.ddl != recommendation.ddl for r in rendered):
                # same columns, different predicate
                digest = hashlib.sha1(recommendation.ddl.encode("utf-8")).hexdigest()[:8]
                unique_name = f"{recommendation.name[: MAX_IDENTIFIER_LENGTH - 9]}_{digest}"
                recommendation = to_recommendation(candidate, dialect_config, unique_name)
            duplicate = next((i for i, r in enumerate(rendered) if r.ddl == recommendation.ddl), None)
            if duplicate is None:
                rendered.append(recommendation)
                continue
            first = rendered[duplicate]
            rendered[duplicate] = first.model_copy(
                update={
                    "occurrences": first.occurrences + recommendation.occurrences,
                    "reasons": tuple(_merge_unique(list(first.reasons), list(recommendation.reasons))),
                }
            )
        recommendations[table] = rendered

    logger.info(
        f"Recommended {sum(len(recs) for recs in recommendations.values())} indexes "
        f"across {len(recommendations)} tables for {dialect_config.dialect}"
    )
    return recommendations
