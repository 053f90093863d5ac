"""Pydantic models for analysis input, intermediate shapes and output."""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConditionKind(str, Enum):
    """How a column participates in a query."""

    EQUALITY = "equality"
    IN = "in"
    RANGE = "range"
    LIKE = "like"
    INEQUALITY = "inequality"
    NOT_LIKE = "not_like"
    JOIN_KEY = "join_key"
    GROUP_BY_KEY = "group_by_key"
    ORDER_BY_KEY = "order_by_key"
    PROJECTION = "projection"


class Cardinality(int, Enum):
    """Coarse distinct-value class, higher is more selective."""

    VERY_LOW = 0
    LOW = 1
    MEDIUM_LOW = 2
    MEDIUM = 3
    MEDIUM_HIGH = 4
    HIGH = 5
    VERY_HIGH = 6

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


class StorageKind(str, Enum):
    """Index access method suggestion."""

    BTREE = "btree"
    HASH = "hash"
    GIN = "gin"


class CostClass(str, Enum):
    """Relative query cost with the index in place, versus a full scan."""

    VERY_LOW = "very_low"
    LOW = "low"
    MEDIUM = "medium"
    MODERATE = "moderate"
    HIGH = "high"


class DiagnosticKind(str, Enum):
    UNRESOLVABLE_REFERENCE = "unresolvable_reference"
    UNBALANCED_CLAUSE = "unbalanced_clause"
    RECURSION_LIMIT = "recursion_limit"
    ANALYSIS_ERROR = "analysis_error"


class TableSchema(BaseModel):
    """Columns of one table as known to the analysis."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Canonical table name")
    columns: tuple[str, ...] = Field(default=(), description="Column names in declared order")
    primary_key: Optional[str] = Field(None, description="Single-column primary key, if known")


class QuerySample(BaseModel):
    """One observed query against a table."""

    model_config = ConfigDict(frozen=True)

    table: str = Field(..., description="Canonical table the query was issued for")
    known_columns: frozenset[str] = Field(..., description="Schema column names of the table")
    sql_text: str = Field(..., description="Raw parameterized query text")

    @property
    def select_columns(self) -> list[str]:
        """Known columns named in the outermost projection, in order."""
        from indexadvisor.services.analyzer.parser import parse_query, projection_columns

        parsed = parse_query(self.sql_text, max_depth=0)
        return [c for c in projection_columns(parsed) if c in self.known_columns]


class ColumnReference(BaseModel):
    """A column reference attributed to a table with its condition kind."""

    model_config = ConfigDict(frozen=True)

    table: str
    column: str
    condition_kind: ConditionKind
    source_clause: Literal["where", "join", "group_by", "order_by", "select"]
    leading_wildcard: bool = False
    expression: Optional[str] = Field(None, description="Indexed expression such as lower(email), if not the bare column")
    branch: Optional[int] = Field(None, description="Top-level OR branch the predicate belongs to")


class QueryTraits(BaseModel):
    """Query-level features that adjust scoring and cost."""

    model_config = ConfigDict(frozen=True)

    has_or: bool = False
    has_grouping: bool = False
    has_join: bool = False
    has_group_by: bool = False
    has_order_by: bool = False
    has_aggregate: bool = False
    has_subquery: bool = False
    has_limit: bool = False
    has_offset: bool = False
    limit_value: Optional[int] = None
    having: Optional[str] = None

    @property
    def is_complex(self) -> bool:
        return self.has_or or self.has_grouping


class Diagnostic(BaseModel):
    """A non-fatal problem found while analyzing one sample."""

    kind: DiagnosticKind
    severity: Literal["info", "warn", "error"] = Field(..., description="Diagnostic severity level")
    message: str = Field(..., description="Human-readable message")
    sample_index: Optional[int] = Field(None, description="Index of the sample in the input list")
    table: Optional[str] = None
    snippet: Optional[str] = Field(None, description="Relevant SQL snippet")


class CandidateIndex(BaseModel):
    """Index shape derived from a single query level."""

    table: str
    key_columns: list[str] = Field(..., description="Ordered key columns or expressions")
    include_columns: list[str] = Field(default_factory=list)
    partial_predicate: Optional[str] = None
    storage_kind: StorageKind = StorageKind.BTREE
    uniqueness: bool = False
    reasons: list[str] = Field(default_factory=list)
    hints: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)
    plan_hints: list[str] = Field(default_factory=list)
    score: int = 0
    cost_class: CostClass = CostClass.HIGH
    relative_cost: int = 100
    estimated_gain: Optional[str] = None
    estimated_size_bytes: Optional[int] = None
    key_kinds: list[ConditionKind] = Field(default_factory=list)
    key_cardinality: list[Cardinality] = Field(default_factory=list)
    leading_wildcard: bool = False
    occurrences: int = 1
    traits: QueryTraits = Field(default_factory=QueryTraits)


class Recommendation(BaseModel):
    """Final, deduplicated index recommendation."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Generated index name")
    table: str = Field(..., description="Table name")
    key_columns: tuple[str, ...] = Field(..., description="Ordered key columns")
    include_columns: tuple[str, ...] = Field(default=(), description="Covering columns")
    partial_predicate: Optional[str] = Field(None, description="Partial index predicate")
    storage_kind: StorageKind = StorageKind.BTREE
    uniqueness: bool = False
    score: int = Field(..., description="Effectiveness score, higher is better")
    cost_class: CostClass
    relative_cost: int = Field(..., description="Estimated cost relative to a full scan (100)")
    reasons: tuple[str, ...] = ()
    hints: tuple[str, ...] = ()
    alternatives: tuple[str, ...] = Field(default=(), description="Other strategies worth weighing")
    plan_hints: tuple[str, ...] = Field(default=(), description="Expected execution plan with the index")
    estimated_gain: Optional[str] = None
    estimated_size_bytes: Optional[int] = None
    occurrences: int = Field(1, description="Number of query levels this index serves")
    ddl: str = Field(..., description="Rendered CREATE INDEX statement")


class AnalysisReport(BaseModel):
    """Output of one analysis run."""

    recommendations: dict[str, list[Recommendation]] = Field(default_factory=dict)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    samples_analyzed: int = 0

    def all_recommendations(self) -> list[Recommendation]:
        """Flatten per-table lists, tables in name order."""
        return [rec for table in sorted(self.recommendations) for rec in self.recommendations[table]]

    def ddl_statements(self) -> list[str]:
        return [rec.ddl for rec in self.all_recommendations()]
