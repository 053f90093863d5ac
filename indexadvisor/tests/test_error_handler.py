"""Tests for the error handler."""

import logging

from indexadvisor.core.error_handler import (
    RecursionLimitError,
    UnbalancedClauseError,
    UnresolvableReferenceError,
    handle_analysis_error,
    log_analysis_event,
)
from indexadvisor.core.models import DiagnosticKind


def test_handle_unresolvable_reference():
    """Test unresolvable references become info diagnostics."""
    diagnostic = handle_analysis_error(
        UnresolvableReferenceError("x.email", "x.email = $1"), sample_index=3, table="users"
    )

    assert diagnostic.kind == DiagnosticKind.UNRESOLVABLE_REFERENCE
    assert diagnostic.severity == "info"
    assert diagnostic.sample_index == 3
    assert diagnostic.table == "users"
    assert diagnostic.snippet == "x.email = $1"
    assert "x.email" in diagnostic.message


def test_handle_unbalanced_clause(caplog):
    """Test unbalanced clauses become warnings."""
    with caplog.at_level(logging.WARNING):
        diagnostic = handle_analysis_error(UnbalancedClauseError("WHERE"), sample_index=0)

    assert diagnostic.kind == DiagnosticKind.UNBALANCED_CLAUSE
    assert diagnostic.severity == "warn"
    assert "WHERE" in diagnostic.message
    assert "Analysis warning in sample 0" in caplog.text


def test_handle_recursion_limit():
    """Test recursion limit errors become warnings."""
    diagnostic = handle_analysis_error(RecursionLimitError(8))

    assert diagnostic.kind == DiagnosticKind.RECURSION_LIMIT
    assert diagnostic.severity == "warn"
    assert "8" in diagnostic.message
    assert diagnostic.sample_index is None


def test_handle_generic_exception(caplog):
    """Test unexpected exceptions become error diagnostics."""
    with caplog.at_level(logging.ERROR):
        diagnostic = handle_analysis_error(RuntimeError("Something went wrong"), sample_index=1)

    assert diagnostic.kind == DiagnosticKind.ANALYSIS_ERROR
    assert diagnostic.severity == "error"
    assert diagnostic.message == "Something went wrong"
    assert "Analysis error in sample 1" in caplog.text


def test_snippet_truncated():
    """Test long snippets are truncated."""
    diagnostic = handle_analysis_error(UnbalancedClauseError("WHERE", "x" * 500))

    assert len(diagnostic.snippet) == 200


def test_log_analysis_event(caplog):
    """Test logging of analysis events."""
    with caplog.at_level(logging.INFO):
        log_analysis_event("analysis_completed", {"samples": 10})
        assert "Analysis event" in caplog.text
        assert "analysis_completed" in caplog.text
        assert "'samples': 10" in caplog.text
