"""SQL dialect handling and utilities."""

import logging
from typing import Literal

import sqlglot
from pydantic import BaseModel, ConfigDict
from sqlglot import expressions

from indexadvisor.core.models import TableSchema

logger = logging.getLogger(__name__)

DialectName = Literal["postgres", "mysql", "sqlite"]


class DialectConfig(BaseModel):
    """DDL capabilities of a target database, applied at render time only."""

    model_config = ConfigDict(frozen=True)

    dialect: DialectName = "postgres"
    supports_include: bool = True
    supports_partial: bool = True
    supports_if_not_exists: bool = True
    quote_identifiers: bool = False

    @classmethod
    def for_dialect(cls, dialect: str, **overrides) -> "DialectConfig":
        """Preset capabilities for a known dialect, with optional overrides."""
        try:
            preset = DIALECT_PRESETS[dialect]
        except KeyError:
            raise ValueError(f"Unsupported dialect: {dialect}") from None
        return preset.model_copy(update=overrides) if overrides else preset


DIALECT_PRESETS: dict[str, DialectConfig] = {
    "postgres": DialectConfig(
        dialect="postgres",
        supports_include=True,
        supports_partial=True,
        supports_if_not_exists=True,
    ),
    # MySQL has neither INCLUDE nor partial indexes, and no IF NOT EXISTS for indexes
    "mysql": DialectConfig(
        dialect="mysql",
        supports_include=False,
        supports_partial=False,
        supports_if_not_exists=False,
    ),
    "sqlite": DialectConfig(
        dialect="sqlite",
        supports_include=False,
        supports_partial=True,
        supports_if_not_exists=True,
    ),
}


def quote_identifier(identifier: str, dialect: DialectName) -> str:
    """Quote an identifier for the dialect (handles reserved words like "user")."""
    return expressions.to_identifier(identifier, quoted=True).sql(dialect=dialect)


def parse_schema(schema_ddl: str, dialect: DialectName) -> list[sqlglot.Expression]:
    """Parse schema DDL into list of AST nodes."""
    return [stmt for stmt in sqlglot.parse(schema_ddl, read=dialect) if stmt is not None]


def extract_table_info(schema_ast: list[sqlglot.Expression]) -> dict[str, TableSchema]:
    """Extract table columns and single-column primary keys from CREATE TABLE statements."""
    tables: dict[str, TableSchema] = {}

    for stmt in schema_ast:
        if not isinstance(stmt, expressions.Create):
            continue
        if str(stmt.args.get("kind") or "").upper() != "TABLE":
            continue

        table_expr = stmt.find(expressions.Table)
        if table_expr is None or not table_expr.name:
            continue

        columns = []
        primary_key = []
        for col in stmt.find_all(expressions.ColumnDef):
            if not col.name:
                continue
            columns.append(col.name)
            if col.find(expressions.PrimaryKeyColumnConstraint):
                primary_key.append(col.name)

        for constraint in stmt.find_all(expressions.PrimaryKey):
            primary_key.extend(ident.name for ident in constraint.find_all(expressions.Identifier))

        tables[table_expr.name] = TableSchema(
            name=table_expr.name,
            columns=tuple(columns),
            primary_key=primary_key[0] if len(primary_key) == 1 else None,
        )
        logger.debug(f"Loaded schema for {table_expr.name}: {len(columns)} columns")

    return tables
