"""Column cardinality heuristics based on naming conventions."""

from typing import Optional

from indexadvisor.core.models import Cardinality

_VERY_HIGH_NAMES = {"email", "username", "uuid", "guid", "token", "slug"}
_TIMESTAMP_NAMES = {"timestamp", "created", "updated"}
_LOW_NAMES = {"status", "type", "state", "kind", "level", "gender", "role"}
_MEDIUM_LOW_NAMES = {"category", "tag", "tags", "country", "region", "currency", "priority"}
_VERY_LOW_NAMES = {"active", "enabled", "deleted", "flag", "bool", "visible", "archived"}


def estimate_cardinality(column: str, primary_key: Optional[str] = None) -> Cardinality:
    """
    Guess how many distinct values a column holds from its name.

    Args:
        column: Column name
        primary_key: Primary key column of the owning table, if known

    Returns:
        Cardinality class, VERY_HIGH for keys and natural identifiers down to
        VERY_LOW for boolean-like flags
    """
    name = column.lower()

    if primary_key and name == primary_key.lower():
        return Cardinality.VERY_HIGH
    if name == "id" or name in _VERY_HIGH_NAMES or name.endswith("_uuid") or name.endswith("_email"):
        return Cardinality.VERY_HIGH

    if name.startswith("is_") or name.startswith("has_") or name.endswith("_flag"):
        return Cardinality.VERY_LOW
    if name in _VERY_LOW_NAMES or "bool" in name:
        return Cardinality.VERY_LOW

    if name.endswith("_id") or (name.endswith("id") and "_" in name):
        return Cardinality.HIGH
    if name.endswith("_at") or name.endswith("_on") or name in _TIMESTAMP_NAMES or "timestamp" in name:
        return Cardinality.MEDIUM_HIGH
    if name.endswith("_date") or name.endswith("_time"):
        return Cardinality.MEDIUM_HIGH

    if name in _LOW_NAMES or name.endswith("_status") or name.endswith("_type") or name.endswith("_state"):
        return Cardinality.LOW
    if name in _MEDIUM_LOW_NAMES or name.endswith("_category") or name.endswith("_tag"):
        return Cardinality.MEDIUM_LOW

    return Cardinality.MEDIUM


def cardinality_order(columns: list[str], primary_key: Optional[str] = None) -> list[str]:
    """Columns sorted from most to least selective, stable for ties."""
    return sorted(columns, key=lambda c: -estimate_cardinality(c, primary_key))
