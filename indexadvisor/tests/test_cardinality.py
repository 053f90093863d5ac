"""Tests for cardinality heuristics."""

import pytest

from indexadvisor.core.models import Cardinality
from indexadvisor.services.analyzer.cardinality import cardinality_order, estimate_cardinality


@pytest.mark.parametrize(
    "column,expected",
    [
        ("id", Cardinality.VERY_HIGH),
        ("email", Cardinality.VERY_HIGH),
        ("username", Cardinality.VERY_HIGH),
        ("user_id", Cardinality.HIGH),
        ("created_at", Cardinality.MEDIUM_HIGH),
        ("updated_at", Cardinality.MEDIUM_HIGH),
        ("amount", Cardinality.MEDIUM),
        ("category", Cardinality.MEDIUM_LOW),
        ("status", Cardinality.LOW),
        ("order_type", Cardinality.LOW),
        ("is_active", Cardinality.VERY_LOW),
        ("has_children", Cardinality.VERY_LOW),
    ],
)
def test_estimate_cardinality(column, expected):
    """Test naming-convention cardinality classes."""
    assert estimate_cardinality(column) == expected


def test_estimate_cardinality_declared_primary_key():
    """Test that a declared primary key is always very high."""
    assert estimate_cardinality("code", primary_key="code") == Cardinality.VERY_HIGH
    assert estimate_cardinality("code") == Cardinality.MEDIUM


def test_estimate_cardinality_case_insensitive():
    """Test that column case does not matter."""
    assert estimate_cardinality("Email") == Cardinality.VERY_HIGH


def test_cardinality_label():
    """Test human-readable labels."""
    assert Cardinality.VERY_HIGH.label == "Very High"
    assert Cardinality.MEDIUM_LOW.label == "Medium Low"


def test_cardinality_order():
    """Test sorting from most to least selective, stable for ties."""
    assert cardinality_order(["status", "amount", "email", "price"]) == ["email", "amount", "price", "status"]
