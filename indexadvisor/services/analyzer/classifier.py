"""Column classification: attribute each column reference to a table and a condition kind."""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlglot.tokens import Token, TokenType

from indexadvisor.core.error_handler import AnalysisError, UnresolvableReferenceError
from indexadvisor.core.models import ColumnReference, ConditionKind, QueryTraits, TableSchema
from indexadvisor.services.analyzer.aliases import AliasMap, scoped_aliases
from indexadvisor.services.analyzer.parser import (
    ParsedQuery,
    column_tokens,
    is_column_start,
    match_parens,
    projection_items,
    read_column_ref,
    render,
    split_top_level,
    star_qualifier,
    strip_alias,
    unquote_identifier,
)

logger = logging.getLogger(__name__)

# Functions whose result an expression index can store
FUNCTIONAL_NAMES = {
    "LOWER",
    "UPPER",
    "TRIM",
    "DATE",
    "YEAR",
    "MONTH",
    "DAY",
    "SUBSTRING",
    "SUBSTR",
    "CONCAT",
    "COALESCE",
}
AGGREGATE_NAMES = {"COUNT", "SUM", "AVG", "MIN", "MAX"}

_COMPARISON_KINDS = {
    TokenType.EQ: ConditionKind.EQUALITY,
    TokenType.NULLSAFE_EQ: ConditionKind.EQUALITY,
    TokenType.NEQ: ConditionKind.INEQUALITY,
    TokenType.GT: ConditionKind.RANGE,
    TokenType.GTE: ConditionKind.RANGE,
    TokenType.LT: ConditionKind.RANGE,
    TokenType.LTE: ConditionKind.RANGE,
    TokenType.BETWEEN: ConditionKind.RANGE,
    TokenType.LIKE: ConditionKind.LIKE,
    TokenType.ILIKE: ConditionKind.LIKE,
}

# Kind of a predicate under an odd number of NOTs
_NEGATED_KINDS = {
    ConditionKind.EQUALITY: ConditionKind.INEQUALITY,
    ConditionKind.IN: ConditionKind.INEQUALITY,
    ConditionKind.LIKE: ConditionKind.NOT_LIKE,
    ConditionKind.NOT_LIKE: ConditionKind.LIKE,
}

_BOOLEAN_TOKENS = {TokenType.AND, TokenType.OR, TokenType.NOT}
_LITERAL_TOKENS = {TokenType.STRING, TokenType.TRUE, TokenType.FALSE}
_ORDER_SUFFIX_WORDS = {"ASC", "DESC", "NULLS", "FIRST", "LAST"}


class LevelAnalysis(BaseModel):
    """Classified column usage of one query level."""

    depth: int = 0
    context: str = Field("root", description="root, in or exists")
    primary_table: Optional[str] = None
    references: list[ColumnReference] = Field(default_factory=list)
    partial_predicates: dict[str, list[str]] = Field(default_factory=dict)
    star_tables: list[str] = Field(default_factory=list)
    or_branches: int = Field(1, description="Top-level OR branches of the WHERE clause")
    traits: QueryTraits = Field(default_factory=QueryTraits)

    def tables(self) -> list[str]:
        """Tables with at least one reference, first appearance order."""
        return list(dict.fromkeys(ref.table for ref in self.references))


class QueryAnalysis(BaseModel):
    """All classified levels of one query sample plus the problems found."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    table: str
    levels: list[LevelAnalysis] = Field(default_factory=list)
    errors: list[AnalysisError] = Field(default_factory=list)


class SchemaLookup:
    """Case-insensitive table and column lookup over known schemas."""

    def __init__(self, schema: dict[str, TableSchema]):
        self.schema = schema
        self._tables = {}
        for name in schema:
            self._tables.setdefault(name.lower(), name)
        for name in schema:
            self._tables.setdefault(name.split(".")[-1].lower(), name)
        self._columns = {
            name: {column.lower(): column for column in table.columns}
            for name, table in schema.items()
        }

    def table(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        name = unquote_identifier(name)
        return self._tables.get(name.lower()) or self._tables.get(name.split(".")[-1].lower())

    def column(self, table: str, column: str) -> Optional[str]:
        return self._columns.get(table, {}).get(unquote_identifier(column).lower())


class _LevelContext:
    """Resolution scope of one query level."""

    def __init__(self, level: ParsedQuery, scope: AliasMap, lookup: SchemaLookup, fallback: Optional[str]):
        self.scope = scope
        self.lookup = lookup
        self.errors: list[AnalysisError] = []
        self._reported = set()

        from_refs = level.from_tables()
        self.primary = lookup.table(scope.resolve(from_refs[0][0])) if from_refs else None
        if self.primary is None and not from_refs:
            self.primary = lookup.table(fallback)

        joined = [scope.resolve(table) for table, _ in from_refs[1:]]
        joined.extend(scope.resolve(join.table) for join in level.joins)
        self.joined = [t for t in (lookup.table(name) for name in joined) if t and t != self.primary]
        self.tables = [self.primary] + self.joined if self.primary else list(self.joined)

    def resolve(
        self, qualifier: Optional[str], column: str, snippet: Optional[str] = None, report: bool = True
    ) -> Optional[tuple[str, str]]:
        """(table, column) for a reference, or None after recording why."""
        if qualifier:
            table = self.lookup.table(self.scope.resolve(qualifier))
            canonical = self.lookup.column(table, column) if table else None
            if canonical:
                return table, canonical
        else:
            if self.primary:
                canonical = self.lookup.column(self.primary, column)
                if canonical:
                    return self.primary, canonical
            owners = [t for t in self.joined if self.lookup.column(t, column)]
            if len(owners) == 1:
                return owners[0], self.lookup.column(owners[0], column)

        if report:
            name = f"{qualifier}.{column}" if qualifier else column
            if name not in self._reported:
                self._reported.add(name)
                logger.debug(f"Discarding unresolvable reference {name}")
                self.errors.append(UnresolvableReferenceError(name, snippet))
        return None


def _read_operand(
    tokens: list[Token], i: int, sql: str, pairs: dict[int, int]
) -> Optional[tuple[Optional[str], str, Optional[tuple[str, str]], int]]:
    """
    Left operand of a comparison starting at token ``i``.

    Returns:
        (qualifier, column, function, end) where function is (name, trailing
        arguments) for ``lower(email)`` style operands and end is the index
        after the operand; None when no column operand starts here
    """
    if not is_column_start(tokens, i):
        return None

    if tokens[i].text.upper() in FUNCTIONAL_NAMES and i + 1 in pairs:
        close = pairs[i + 1]
        ref = read_column_ref(tokens, i + 2, sql)
        if ref is None:
            return None
        qualifier, column, j = ref
        if j < close and tokens[j].token_type != TokenType.COMMA:
            return None
        rest = tokens[j:close]
        if any(t.token_type in (TokenType.PARAMETER, TokenType.PLACEHOLDER) for t in rest):
            return None
        return qualifier, column, (tokens[i].text.lower(), render(rest, sql)), close + 1

    ref = read_column_ref(tokens, i, sql)
    if ref is None:
        return None
    qualifier, column, j = ref
    if j < len(tokens) and tokens[j].token_type == TokenType.L_PAREN:
        return None
    return qualifier, column, None, j


def _read_operator(tokens: list[Token], j: int) -> Optional[tuple[ConditionKind, int]]:
    """(kind, index after the operator) for the comparison operator at token ``j``."""
    if j >= len(tokens):
        return None

    def type_at(k: int) -> Optional[TokenType]:
        return tokens[k].token_type if k < len(tokens) else None

    token_type = tokens[j].token_type
    if token_type in _COMPARISON_KINDS:
        return _COMPARISON_KINDS[token_type], j + 1
    if token_type == TokenType.IN and type_at(j + 1) == TokenType.L_PAREN:
        return ConditionKind.IN, j + 1
    if token_type == TokenType.IS:
        if type_at(j + 1) == TokenType.NULL:
            return ConditionKind.EQUALITY, j + 2
        if type_at(j + 1) == TokenType.NOT and type_at(j + 2) == TokenType.NULL:
            return ConditionKind.INEQUALITY, j + 3
        return None
    if token_type == TokenType.NOT:
        if type_at(j + 1) in (TokenType.LIKE, TokenType.ILIKE):
            return ConditionKind.NOT_LIKE, j + 2
        if type_at(j + 1) == TokenType.IN and type_at(j + 2) == TokenType.L_PAREN:
            return ConditionKind.INEQUALITY, j + 2
        if type_at(j + 1) == TokenType.BETWEEN:
            return ConditionKind.INEQUALITY, j + 2
    return None


def _classify_predicates(
    tokens: list[Token],
    sql: str,
    source: str,
    ctx: _LevelContext,
    references: list[ColumnReference],
    partials: dict[str, list[str]],
    allow_partial: bool,
    branch: Optional[int] = None,
):
    """Classify every ``column <op>`` occurrence of a WHERE or ON condition."""
    text = render(tokens, sql)
    pairs, _ = match_parens(tokens)
    negated_groups: list[bool] = []
    pending_not = False

    i = 0
    while i < len(tokens):
        token_type = tokens[i].token_type
        if token_type == TokenType.NOT:
            pending_not = not pending_not
            i += 1
            continue
        if token_type == TokenType.L_PAREN:
            outer = negated_groups[-1] if negated_groups else False
            negated_groups.append(outer != pending_not)
            pending_not = False
            i += 1
            continue
        if token_type == TokenType.R_PAREN:
            if negated_groups:
                negated_groups.pop()
            i += 1
            continue
        if token_type in (TokenType.AND, TokenType.OR):
            pending_not = False
            i += 1
            continue

        operand = _read_operand(tokens, i, sql, pairs)
        operator = _read_operator(tokens, operand[3]) if operand else None
        if operator is None:
            i += 1
            continue

        qualifier, column, function, operand_end = operand
        kind, after = operator
        negated = (negated_groups[-1] if negated_groups else False) != pending_not
        pending_not = False
        operator_token = tokens[operand_end].token_type
        right = tokens[after] if after < len(tokens) else None
        i = after

        if operator_token == TokenType.EQ and function is None and not negated:
            right_ref = read_column_ref(tokens, after, sql) if is_column_start(tokens, after) else None
            right_resolved = ctx.resolve(right_ref[0], right_ref[1], text, report=False) if right_ref else None
            if right_resolved:
                left_resolved = ctx.resolve(qualifier, column, text)
                for resolved in (left_resolved, right_resolved):
                    if resolved:
                        references.append(
                            ColumnReference(
                                table=resolved[0],
                                column=resolved[1],
                                condition_kind=ConditionKind.JOIN_KEY,
                                source_clause=source,
                                branch=branch,
                            )
                        )
                i = right_ref[2]
                continue

        resolved = ctx.resolve(qualifier, column, text)
        if resolved is None:
            continue
        table, canonical = resolved

        is_literal = right is not None and right.token_type in _LITERAL_TOKENS
        is_null_test = operator_token == TokenType.IS and kind == ConditionKind.EQUALITY
        if allow_partial and not negated and ((operator_token == TokenType.EQ and is_literal) or is_null_test):
            written = f"{function[0]}({column}{function[1]})" if function else column
            end = after if is_null_test else after + 1
            predicate = f"{written} {render(tokens[operand_end:end], sql)}"
            if predicate not in partials.setdefault(table, []):
                partials[table].append(predicate)
            continue

        if negated:
            kind = _NEGATED_KINDS.get(kind, kind)
        references.append(
            ColumnReference(
                table=table,
                column=canonical,
                condition_kind=kind,
                source_clause=source,
                leading_wildcard=(
                    kind == ConditionKind.LIKE
                    and right is not None
                    and right.token_type == TokenType.STRING
                    and right.text.startswith("%")
                ),
                expression=f"{function[0]}({canonical}{function[1]})" if function else None,
                branch=branch,
            )
        )


def _has_grouping(tokens: list[Token]) -> bool:
    """True when a parenthesis groups predicates rather than wrapping a list or call."""
    pairs, _ = match_parens(tokens)
    for start, end in pairs.items():
        if end == start + 1:
            continue
        if start == 0 or tokens[start - 1].token_type in _BOOLEAN_TOKENS:
            return True
    return False


def _has_aggregate(tokens: list[Token]) -> bool:
    return any(
        token.text.upper() in AGGREGATE_NAMES
        and i + 1 < len(tokens)
        and tokens[i + 1].token_type == TokenType.L_PAREN
        for i, token in enumerate(tokens)
    )


def _plain_column(item: list[Token], sql: str) -> Optional[tuple[Optional[str], str]]:
    ref = read_column_ref(item, 0, sql)
    if ref and ref[2] == len(item):
        return ref[0], ref[1]
    return None


def _classify_level(
    level: ParsedQuery, context: str, alias_map: AliasMap, lookup: SchemaLookup, fallback: Optional[str]
) -> tuple[LevelAnalysis, list[AnalysisError]]:
    scope = scoped_aliases(alias_map, level)
    ctx = _LevelContext(level, scope, lookup, fallback)
    sql = level.sql
    references: list[ColumnReference] = []
    partials: dict[str, list[str]] = {}

    where_tokens = level.tokens("where")
    has_or = any(token.token_type == TokenType.OR for token in where_tokens)
    branches = split_top_level(where_tokens, TokenType.OR)

    for join in level.joins:
        if join.on_tokens:
            _classify_predicates(join.on_tokens, sql, "join", ctx, references, partials, allow_partial=False)
        if join.using:
            join_table = ctx.lookup.table(scope.resolve(join.table))
            for column in join.using:
                # USING pairs the joined table with whichever earlier table owns the column
                owners = [ctx.primary] + [t for t in ctx.joined if t != join_table]
                for table in [join_table] + owners:
                    canonical = ctx.lookup.column(table, column) if table else None
                    if canonical:
                        references.append(
                            ColumnReference(
                                table=table,
                                column=canonical,
                                condition_kind=ConditionKind.JOIN_KEY,
                                source_clause="join",
                            )
                        )
                        if table != join_table:
                            break

    if len(branches) > 1:
        # each top-level OR branch is served by its own index
        for number, branch_tokens in enumerate(branches):
            _classify_predicates(
                branch_tokens, sql, "where", ctx, references, partials, allow_partial=False, branch=number
            )
    elif where_tokens:
        # literal equalities under a nested OR are not implied by the whole WHERE
        _classify_predicates(where_tokens, sql, "where", ctx, references, partials, allow_partial=not has_or)

    group_by_tokens = level.tokens("group_by")
    for item in split_top_level(group_by_tokens):
        ref = _plain_column(item, sql)
        resolved = ctx.resolve(ref[0], ref[1], level.group_by) if ref else None
        if resolved:
            references.append(
                ColumnReference(
                    table=resolved[0],
                    column=resolved[1],
                    condition_kind=ConditionKind.GROUP_BY_KEY,
                    source_clause="group_by",
                )
            )

    for item in split_top_level(level.tokens("order_by")):
        while item and item[-1].text.upper() in _ORDER_SUFFIX_WORDS:
            item = item[:-1]
        ref = _plain_column(item, sql)
        resolved = ctx.resolve(ref[0], ref[1], level.order_by) if ref else None
        if resolved:
            references.append(
                ColumnReference(
                    table=resolved[0],
                    column=resolved[1],
                    condition_kind=ConditionKind.ORDER_BY_KEY,
                    source_clause="order_by",
                )
            )

    star_tables = []
    seen = {(ref.table, ref.column) for ref in references}
    for item in projection_items(level.tokens("select")):
        star = star_qualifier(item, sql)
        if star is not None:
            if star:
                table = ctx.lookup.table(scope.resolve(star))
                targets = [table] if table else []
            else:
                targets = ctx.tables
            star_tables.extend(t for t in targets if t not in star_tables)
            continue
        for qualifier, column in column_tokens(strip_alias(item, sql), sql):
            # only qualified projection tokens are certainly columns
            resolved = ctx.resolve(qualifier, column, render(item, sql), report=qualifier is not None)
            if resolved and resolved not in seen:
                seen.add(resolved)
                references.append(
                    ColumnReference(
                        table=resolved[0],
                        column=resolved[1],
                        condition_kind=ConditionKind.PROJECTION,
                        source_clause="select",
                    )
                )

    from_refs = level.from_tables()
    traits = QueryTraits(
        has_or=has_or,
        has_grouping=_has_grouping(where_tokens),
        has_join=bool(level.joins) or len(from_refs) > 1,
        has_group_by=level.group_by is not None,
        has_order_by=level.order_by is not None,
        has_aggregate=_has_aggregate(level.tokens("select")),
        has_subquery=bool(level.subqueries),
        has_limit=level.has_limit,
        has_offset=level.has_offset,
        limit_value=level.limit_value,
        having=level.having,
    )

    analysis = LevelAnalysis(
        depth=level.depth,
        context=context,
        primary_table=ctx.primary,
        references=references,
        partial_predicates=partials,
        star_tables=star_tables,
        or_branches=max(len(branches), 1),
        traits=traits,
    )
    return analysis, ctx.errors


def classify(
    table: str, parsed: ParsedQuery, alias_map: AliasMap, schema: dict[str, TableSchema]
) -> QueryAnalysis:
    """
    Classify column usage of a parsed query and its IN/EXISTS subqueries.

    Args:
        table: Table the query sample was recorded for
        parsed: Output of ``parse_query``
        alias_map: Output of ``resolve_aliases`` for the same query
        schema: Known tables by canonical name

    Returns:
        QueryAnalysis with one LevelAnalysis per classified level. Parse
        errors from every level and unresolvable references are collected in
        ``errors``.
    """
    lookup = SchemaLookup(schema)
    analysis = QueryAnalysis(table=table, errors=parsed.all_errors())

    pending = [(parsed, "root")]
    while pending:
        level, context = pending.pop(0)
        fallback = table if context == "root" else None
        level_analysis, errors = _classify_level(level, context, alias_map, lookup, fallback)
        analysis.levels.append(level_analysis)
        analysis.errors.extend(errors)
        pending.extend(
            (sub.parsed, sub.context) for sub in level.subqueries if sub.context in ("in", "exists")
        )

    logger.debug(
        f"Classified {sum(len(level.references) for level in analysis.levels)} references "
        f"across {len(analysis.levels)} levels for {table}"
    )
    return analysis
