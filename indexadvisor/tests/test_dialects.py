"""Tests for SQL dialect handling."""

import pytest
import sqlglot
from indexadvisor.core.dialects import (
    DIALECT_PRESETS,
    DialectConfig,
    extract_table_info,
    parse_schema,
    quote_identifier,
)


def test_dialect_presets():
    """Test capability presets per dialect."""
    postgres = DialectConfig.for_dialect("postgres")
    mysql = DialectConfig.for_dialect("mysql")
    sqlite = DialectConfig.for_dialect("sqlite")

    assert postgres.supports_include and postgres.supports_partial
    assert not mysql.supports_include and not mysql.supports_partial
    assert not mysql.supports_if_not_exists
    assert not sqlite.supports_include and sqlite.supports_partial
    assert set(DIALECT_PRESETS) == {"postgres", "mysql", "sqlite"}


def test_dialect_default_is_postgres():
    """Test default config matches the PostgreSQL preset."""
    assert DialectConfig() == DIALECT_PRESETS["postgres"]


def test_dialect_overrides():
    """Test presets can be overridden without changing the preset."""
    config = DialectConfig.for_dialect("postgres", supports_include=False, quote_identifiers=True)

    assert not config.supports_include
    assert config.quote_identifiers
    assert DIALECT_PRESETS["postgres"].supports_include


def test_unknown_dialect():
    """Test unknown dialects are rejected."""
    with pytest.raises(ValueError, match="Unsupported dialect"):
        DialectConfig.for_dialect("oracle")


def test_quote_identifier():
    """Test identifier quoting per dialect."""
    assert quote_identifier("user", "postgres") == '"user"'
    assert quote_identifier("user", "mysql") == "`user`"


def test_parse_schema():
    """Test parsing schema DDL."""
    ddl = "CREATE TABLE users (id INT); CREATE TABLE orders (id INT);"
    ast_list = parse_schema(ddl, "postgres")
    assert len(ast_list) == 2
    assert all(isinstance(node, sqlglot.Expression) for node in ast_list)


def test_extract_table_info_simple():
    """Test extracting columns in declared order."""
    ddl = "CREATE TABLE users (id INT, email TEXT, created_at TIMESTAMP)"
    info = extract_table_info(parse_schema(ddl, "postgres"))

    assert info["users"].columns == ("id", "email", "created_at")
    assert info["users"].primary_key is None


def test_extract_table_info_primary_keys():
    """Test column-level, table-level and composite primary keys."""
    ddl = """
    CREATE TABLE users (id INT PRIMARY KEY, email TEXT);
    CREATE TABLE orders (order_no INT, user_id INT, PRIMARY KEY (order_no));
    CREATE TABLE order_items (order_no INT, line INT, PRIMARY KEY (order_no, line));
    """
    info = extract_table_info(parse_schema(ddl, "postgres"))

    assert info["users"].primary_key == "id"
    assert info["orders"].primary_key == "order_no"
    assert info["order_items"].primary_key is None


def test_extract_table_info_invalid_stmt():
    """Test non-CREATE TABLE statements are skipped."""
    ddl = "SELECT 1; CREATE TABLE users (id INT); CREATE INDEX idx_users_id ON users (id);"
    info = extract_table_info(parse_schema(ddl, "postgres"))

    assert list(info) == ["users"]
