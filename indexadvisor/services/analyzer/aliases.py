"""Table alias resolution across query levels."""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from indexadvisor.core.config import settings as default_settings
from indexadvisor.services.analyzer.parser import ParsedQuery

logger = logging.getLogger(__name__)


class AliasMap(BaseModel):
    """Alias to table mapping for one query, built fresh per analysis."""

    table: str = Field(..., description="Context table the query was recorded for")
    aliases: dict[str, str] = Field(default_factory=dict, description="Lowercased alias -> table")
    self_token: str = Field(
        default_factory=lambda: default_settings.self_reference_token,
        description="Placeholder that stands for the context table",
    )

    def add(self, alias: str, table: str, override: bool = True):
        key = alias.lower()
        if override or key not in self.aliases:
            self.aliases[key] = table

    def merge(self, other: "AliasMap", override: bool = False) -> "AliasMap":
        """Copy of this map with the other map's entries added."""
        merged = self.model_copy(deep=True)
        for alias, table in other.aliases.items():
            merged.add(alias, table, override=override)
        return merged

    def resolve(self, name: str) -> str:
        """Mapped table for an alias, following chains; unknown names map to themselves."""
        current = name
        seen = set()
        while current.lower() in self.aliases and current.lower() not in seen:
            seen.add(current.lower())
            target = self.aliases[current.lower()]
            if target.lower() == current.lower():
                return target
            current = target
        return current


def level_aliases(
    parsed: ParsedQuery, context_table: str, self_token: Optional[str] = None
) -> AliasMap:
    """Aliases declared by a single query level (FROM and JOIN), no recursion."""
    token = self_token or default_settings.self_reference_token
    alias_map = AliasMap(table=context_table, self_token=token)
    alias_map.add(token, context_table)

    refs = list(parsed.from_tables())
    refs.extend((join.table, join.alias) for join in parsed.joins)

    for table, alias in refs:
        # derived tables have no name of their own
        if table.startswith("("):
            continue
        target = context_table if table == token else table
        if table != token:
            alias_map.add(table, target, override=False)
        if alias:
            alias_map.add(alias, target)

    return alias_map


def resolve_aliases(
    parsed: ParsedQuery, context_table: str, self_token: Optional[str] = None
) -> AliasMap:
    """
    Build the alias map for a query and all of its nested subqueries.

    Outer declarations win when an inner level reuses an alias; use
    ``scoped_aliases`` to resolve names from inside a specific level.
    """
    alias_map = level_aliases(parsed, context_table, self_token)
    for sub in parsed.subqueries:
        alias_map = alias_map.merge(resolve_aliases(sub.parsed, context_table, self_token))
    logger.debug(f"Resolved {len(alias_map.aliases)} aliases for {context_table}")
    return alias_map


def scoped_aliases(alias_map: AliasMap, level: ParsedQuery) -> AliasMap:
    """The merged map with one level's own declarations taking precedence."""
    return alias_map.merge(level_aliases(level, alias_map.table, alias_map.self_token), override=True)
