"""Main analysis pipeline orchestrating all components."""

import logging
import time
from concurrent.futures import ProcessPoolExecutor
from itertools import repeat
from typing import Iterable, Optional

from indexadvisor.core.config import Settings
from indexadvisor.core.config import settings as default_settings
from indexadvisor.core.dialects import DialectConfig, DialectName, extract_table_info, parse_schema
from indexadvisor.core.error_handler import handle_analysis_error, log_analysis_event
from indexadvisor.core.models import (
    AnalysisReport,
    CandidateIndex,
    Diagnostic,
    QuerySample,
    TableSchema,
)
from indexadvisor.core.monitoring import metrics, track_execution_time
from indexadvisor.services.analyzer.aliases import resolve_aliases
from indexadvisor.services.analyzer.classifier import classify
from indexadvisor.services.analyzer.cost_estimator import evaluate_candidate
from indexadvisor.services.analyzer.index_advisor import recommend_indexes
from indexadvisor.services.analyzer.parser import parse_query
from indexadvisor.services.analyzer.shape_builder import build_shapes

logger = logging.getLogger(__name__)


def build_schema(
    samples: list[QuerySample], schema: Optional[dict[str, TableSchema]] = None
) -> dict[str, TableSchema]:
    """
    Union of every sample's known columns and an optional explicit schema.

    Explicit schemas keep their column order and primary key; columns only
    seen on samples are appended in name order.
    """
    tables: dict[str, TableSchema] = {}

    for name, table_schema in (schema or {}).items():
        tables[name] = table_schema

    for sample in samples:
        existing = tables.get(sample.table)
        columns = list(existing.columns) if existing else []
        columns.extend(c for c in sorted(sample.known_columns) if c not in columns)
        tables[sample.table] = TableSchema(
            name=sample.table,
            columns=tuple(columns),
            primary_key=existing.primary_key if existing else None,
        )

    return tables


def analyze_sample(
    index: int,
    sample: QuerySample,
    schema: dict[str, TableSchema],
    settings: Optional[Settings] = None,
    dialect: Optional[DialectName] = None,
) -> tuple[list[CandidateIndex], list[Diagnostic]]:
    """
    Run parse, alias resolution, classification, shape building and scoring for one sample.

    Query text is read with the lexical rules of ``dialect``, defaulting to
    the configured dialect.

    Never raises: a failure becomes an ``analysis_error`` diagnostic and the
    sample contributes no candidates.
    """
    settings = settings or default_settings
    try:
        parsed = parse_query(
            sample.sql_text,
            max_depth=settings.max_subquery_depth,
            dialect=dialect or settings.default_dialect,
        )
        alias_map = resolve_aliases(parsed, sample.table, settings.self_reference_token)
        analysis = classify(sample.table, parsed, alias_map, schema)
        candidates = [evaluate_candidate(c) for c in build_shapes(analysis, schema, settings)]
        diagnostics = [handle_analysis_error(e, index, sample.table) for e in analysis.errors]
        return candidates, diagnostics
    except Exception as e:
        diagnostic = handle_analysis_error(e, index, sample.table)
        return [], [diagnostic.model_copy(update={"snippet": sample.sql_text[:200]})]


def _analyze_all(
    samples: list[QuerySample], schema: dict[str, TableSchema], settings: Settings, dialect: DialectName
) -> list[tuple[list[CandidateIndex], list[Diagnostic]]]:
    if settings.workers > 1 and len(samples) > 1:
        logger.info(f"Analyzing {len(samples)} samples with {settings.workers} workers")
        with ProcessPoolExecutor(max_workers=settings.workers) as executor:
            return list(
                executor.map(
                    analyze_sample,
                    range(len(samples)),
                    samples,
                    repeat(schema),
                    repeat(settings),
                    repeat(dialect),
                )
            )
    return [analyze_sample(i, sample, schema, settings, dialect) for i, sample in enumerate(samples)]


def analyze_samples(
    samples: Iterable[QuerySample],
    dialect_config: Optional[DialectConfig] = None,
    settings: Optional[Settings] = None,
    schema: Optional[dict[str, TableSchema]] = None,
) -> AnalysisReport:
    """
    Analyze recorded queries and recommend indexes.

    Args:
        samples: Query samples, each with its table and known columns
        dialect_config: Target DDL capabilities, defaults to the configured dialect preset
        settings: Analysis limits, defaults to the global settings
        schema: Extra table metadata (e.g. primary keys from DDL)

    Returns:
        AnalysisReport with per-table recommendations and diagnostics
    """
    start_time = time.time()
    settings = settings or default_settings
    dialect_config = dialect_config or DialectConfig.for_dialect(settings.default_dialect)
    samples = list(samples)

    with track_execution_time("analyze_samples"):
        known_schema = build_schema(samples, schema)

        candidates: list[CandidateIndex] = []
        diagnostics: list[Diagnostic] = []
        for sample_candidates, sample_diagnostics in _analyze_all(
            samples, known_schema, settings, dialect_config.dialect
        ):
            candidates.extend(sample_candidates)
            diagnostics.extend(sample_diagnostics)

        recommendations = recommend_indexes(candidates, dialect_config)

    report = AnalysisReport(
        recommendations=recommendations,
        diagnostics=diagnostics,
        samples_analyzed=len(samples),
    )

    duration = time.time() - start_time
    total = sum(len(recs) for recs in recommendations.values())
    metrics.record_analysis(duration, len(samples), total, len(diagnostics))
    log_analysis_event(
        "analysis_completed",
        {
            "samples": len(samples),
            "candidates": len(candidates),
            "recommendations": total,
            "diagnostics": len(diagnostics),
            "dialect": dialect_config.dialect,
        },
    )
    return report


def samples_from_schema(
    schema_ddl: str, queries: list[tuple[str, str]], dialect: DialectName
) -> tuple[list[QuerySample], dict[str, TableSchema]]:
    """
    Build query samples from CREATE TABLE statements and (table, sql) pairs.

    Returns:
        (samples, schema) where schema carries the primary keys read from DDL
    """
    try:
        schema = extract_table_info(parse_schema(schema_ddl, dialect))
    except Exception as e:
        logger.error(f"Failed to parse schema: {e}")
        schema = {}

    samples = []
    for table, sql in queries:
        table_schema = schema.get(table)
        if table_schema is None:
            logger.warning(f"Table {table} not found in schema, query will only report diagnostics")
        samples.append(
            QuerySample(
                table=table,
                known_columns=frozenset(table_schema.columns) if table_schema else frozenset(),
                sql_text=sql,
            )
        )
    return samples, schema


def analyze_schema_queries(
    schema_ddl: str,
    queries: list[tuple[str, str]],
    dialect: DialectName = "postgres",
    settings: Optional[Settings] = None,
) -> AnalysisReport:
    """Parse schema DDL, then analyze (table, sql) pairs for the same dialect."""
    samples, schema = samples_from_schema(schema_ddl, queries, dialect)
    return analyze_samples(samples, DialectConfig.for_dialect(dialect), settings, schema)
