"""Centralized error handling and logging."""

import logging
from typing import Optional

from indexadvisor.core.models import Diagnostic, DiagnosticKind

logger = logging.getLogger(__name__)

_SNIPPET_LENGTH = 200


class AnalysisError(Exception):
    """Base exception for analysis-related errors."""

    kind = DiagnosticKind.ANALYSIS_ERROR
    severity = "error"

    def __init__(self, message: str, snippet: Optional[str] = None):
        super().__init__(message)
        self.snippet = snippet


class UnbalancedClauseError(AnalysisError):
    """A clause contains an unterminated parenthesis or quote."""

    kind = DiagnosticKind.UNBALANCED_CLAUSE
    severity = "warn"

    def __init__(self, clause: str, snippet: Optional[str] = None):
        super().__init__(f"Unbalanced parenthesis or quote in {clause} clause", snippet)
        self.clause = clause


class RecursionLimitError(AnalysisError):
    """Subquery nesting exceeded the configured ceiling."""

    kind = DiagnosticKind.RECURSION_LIMIT
    severity = "warn"

    def __init__(self, depth: int, snippet: Optional[str] = None):
        super().__init__(f"Subquery nesting deeper than {depth} levels was not analyzed", snippet)
        self.depth = depth


class UnresolvableReferenceError(AnalysisError):
    """A column or alias does not match any known table."""

    kind = DiagnosticKind.UNRESOLVABLE_REFERENCE
    severity = "info"

    def __init__(self, reference: str, snippet: Optional[str] = None):
        super().__init__(f"Could not resolve column reference '{reference}'", snippet)
        self.reference = reference


def handle_analysis_error(
    error: Exception,
    sample_index: Optional[int] = None,
    table: Optional[str] = None,
) -> Diagnostic:
    """
    Convert an error raised while analyzing one sample into a diagnostic.

    Args:
        error: The exception that occurred
        sample_index: Position of the sample in the input sequence
        table: Table the sample was recorded for

    Returns:
        Diagnostic describing the failure
    """
    context = f" in sample {sample_index}" if sample_index is not None else ""

    if isinstance(error, AnalysisError):
        kind = error.kind
        severity = error.severity
        snippet = error.snippet
    else:
        kind = DiagnosticKind.ANALYSIS_ERROR
        severity = "error"
        snippet = None

    if severity == "error":
        logger.error(f"Analysis error{context}: {error}", exc_info=True)
    elif severity == "warn":
        logger.warning(f"Analysis warning{context}: {error}")
    else:
        logger.debug(f"Analysis note{context}: {error}")

    return Diagnostic(
        kind=kind,
        severity=severity,
        message=str(error),
        sample_index=sample_index,
        table=table,
        snippet=snippet[:_SNIPPET_LENGTH] if snippet else None,
    )


def log_analysis_event(event_type: str, details: dict):
    """
    Log analysis events for monitoring and debugging.

    Args:
        event_type: Type of event (e.g., 'analysis_completed')
        details: Event details
    """
    log_data = {
        "event_type": event_type,
        "details": details,
    }
    logger.info(f"Analysis event: {log_data}")
