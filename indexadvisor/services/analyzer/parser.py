"""Clause-level SQL scanner.

Query text produced by a simple query builder is run through the sqlglot
tokenizer of the target dialect and split into its top-level clauses (SELECT
list, FROM, JOINs, WHERE, GROUP BY, HAVING, ORDER BY, LIMIT/OFFSET) without
building a syntax tree. Clause keywords only count at parenthesis depth 0, so
an inner subquery's WHERE never ends an outer clause. Quoting, escapes and
comments follow the dialect's lexical rules.

Nested ``(SELECT ...)`` bodies are parsed recursively into their own
``ParsedQuery`` and left out of the enclosing clause.

A clause holding an unterminated parenthesis or quote is dropped on its own;
its siblings are still extracted.
"""

import logging
from typing import Iterator, Literal, Optional

import sqlglot
from pydantic import BaseModel, ConfigDict, Field
from sqlglot.errors import TokenError
from sqlglot.parser import Parser
from sqlglot.tokens import Token, TokenType

from indexadvisor.core.config import settings as default_settings
from indexadvisor.core.error_handler import (
    AnalysisError,
    RecursionLimitError,
    UnbalancedClauseError,
)

logger = logging.getLogger(__name__)

# Characters that open a quoted token in at least one supported dialect
QUOTE_STARTS = "'\"`[$"

# Keyword token types that can still name a table or column
NAME_TOKENS = (Parser.ID_VAR_TOKENS | {TokenType.VAR, TokenType.IDENTIFIER}) - {
    TokenType.ALL,
    TokenType.ANTI,
    TokenType.ANY,
    TokenType.APPLY,
    TokenType.ASC,
    TokenType.ASOF,
    TokenType.CASE,
    TokenType.COLLATE,
    TokenType.DEFAULT,
    TokenType.DESC,
    TokenType.DIV,
    TokenType.END,
    TokenType.ESCAPE,
    TokenType.EXISTS,
    TokenType.FALSE,
    TokenType.FULL,
    TokenType.INTERVAL,
    TokenType.IS,
    TokenType.LEFT,
    TokenType.NATURAL,
    TokenType.NULL,
    TokenType.OFFSET,
    TokenType.RIGHT,
    TokenType.SEMI,
    TokenType.SET,
    TokenType.SOME,
    TokenType.TRUE,
    TokenType.UPDATE,
    TokenType.WINDOW,
} - set(Parser.NO_PAREN_FUNCTIONS)

# A name right after one of these is a parameter, a cast type or an output alias
_NOT_A_COLUMN_AFTER = {
    TokenType.DOT,
    TokenType.COLON,
    TokenType.PARAMETER,
    TokenType.DCOLON,
    TokenType.ALIAS,
}

_CLAUSE_TOKENS = {
    TokenType.SELECT: "select",
    TokenType.FROM: "from",
    TokenType.UPDATE: "from",
    TokenType.SET: "set",
    TokenType.WHERE: "where",
    TokenType.GROUP_BY: "group_by",
    TokenType.HAVING: "having",
    TokenType.ORDER_BY: "order_by",
    TokenType.LIMIT: "limit",
    TokenType.OFFSET: "offset",
    TokenType.RETURNING: "returning",
    TokenType.FOR: "for",
}
_JOIN_PREFIX_TOKENS = {
    TokenType.NATURAL,
    TokenType.INNER,
    TokenType.LEFT,
    TokenType.RIGHT,
    TokenType.FULL,
    TokenType.CROSS,
    TokenType.OUTER,
}
_JOIN_TYPES = ("INNER", "LEFT", "RIGHT", "FULL", "CROSS")
_COMPOUND_TOKENS = {TokenType.UNION, TokenType.INTERSECT, TokenType.EXCEPT, TokenType.SEMICOLON}


class JoinClause(BaseModel):
    """One JOIN with its joined table and condition."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    join_type: str
    table: str
    alias: Optional[str] = None
    on: Optional[str] = None
    on_tokens: list[Token] = Field(default_factory=list)
    using: list[str] = Field(default_factory=list)


class Subquery(BaseModel):
    """A nested SELECT and where it appears in its parent."""

    context: Literal["in", "exists", "derived", "scalar"]
    parsed: "ParsedQuery"
    alias: Optional[str] = None


class ParsedQuery(BaseModel):
    """Top-level clauses of one query level.

    Clause text is kept for display; ``clause_tokens`` holds the tokens each
    clause was rendered from, offsets relative to ``sql``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    sql: str
    dialect: str = "postgres"
    depth: int = 0
    select_list: Optional[str] = None
    from_clause: Optional[str] = None
    joins: list[JoinClause] = Field(default_factory=list)
    where: Optional[str] = None
    group_by: Optional[str] = None
    having: Optional[str] = None
    order_by: Optional[str] = None
    has_limit: bool = False
    has_offset: bool = False
    limit_value: Optional[int] = None
    clause_tokens: dict[str, list[Token]] = Field(default_factory=dict)
    subqueries: list[Subquery] = Field(default_factory=list)
    errors: list[AnalysisError] = Field(default_factory=list)

    def tokens(self, clause: str) -> list[Token]:
        return self.clause_tokens.get(clause, [])

    def iter_levels(self) -> Iterator["ParsedQuery"]:
        """This level followed by every nested level, depth first."""
        yield self
        for sub in self.subqueries:
            yield from sub.parsed.iter_levels()

    def all_errors(self) -> list[AnalysisError]:
        return [error for level in self.iter_levels() for error in level.errors]

    def from_tables(self) -> list[tuple[str, Optional[str]]]:
        """(table, alias) pairs named in FROM, comma joins included."""
        refs = []
        for item in split_top_level(self.tokens("from")):
            ref = parse_table_ref(item, self.sql)
            if ref:
                refs.append(ref)
        return refs


Subquery.model_rebuild()


def _shifted(token: Token, offset: int) -> Token:
    return Token(
        token.token_type,
        token.text,
        token.line,
        token.col,
        token.start + offset,
        token.end + offset,
        token.comments,
    )


def tokenize(sql: str, dialect: str) -> tuple[list[Token], list[int]]:
    """
    Tokenize query text, stepping over unterminated quotes.

    The dialect tokenizer drops comments and applies the dialect's quoting
    and escape rules. When it fails, the last quote character whose prefix
    still tokenizes is taken as the unterminated one, skipped, and the rest
    of the text is tokenized on its own.

    Returns:
        (tokens, unbalanced) where unbalanced lists the positions of skipped
        quote characters
    """
    try:
        tokens = sqlglot.tokenize(sql, read=dialect)
        return [t for t in tokens if t.token_type != TokenType.HINT], []
    except TokenError:
        pass

    for pos in reversed(range(len(sql))):
        if sql[pos] not in QUOTE_STARTS:
            continue
        try:
            head = sqlglot.tokenize(sql[:pos], read=dialect)
        except TokenError:
            continue
        tail, unbalanced = tokenize(sql[pos + 1 :], dialect)
        tokens = [t for t in head if t.token_type != TokenType.HINT]
        tokens.extend(_shifted(t, pos + 1) for t in tail)
        return tokens, [pos] + [p + pos + 1 for p in unbalanced]

    return [], [0]


def match_parens(tokens: list[Token]) -> tuple[dict[int, int], list[int]]:
    """Matching parenthesis pairs by token index, plus indexes of unmatched parentheses."""
    pairs = {}
    stack = []
    unmatched = []
    for i, token in enumerate(tokens):
        if token.token_type == TokenType.L_PAREN:
            stack.append(i)
        elif token.token_type == TokenType.R_PAREN:
            if stack:
                pairs[stack.pop()] = i
            else:
                unmatched.append(i)
    unmatched.extend(stack)
    return pairs, sorted(unmatched)


def paren_depths(tokens: list[Token], pairs: dict[int, int]) -> list[int]:
    """Nesting depth of every token; unmatched parentheses do not nest."""
    closes = set(pairs.values())
    depths = []
    depth = 0
    for i in range(len(tokens)):
        if i in closes:
            depth -= 1
        depths.append(depth)
        if i in pairs:
            depth += 1
    return depths


def render(tokens: list[Token], sql: str) -> str:
    """Text of a token run, one space wherever the source had a gap."""
    parts = []
    previous = None
    for token in tokens:
        if previous is not None and token.start > previous.end + 1:
            parts.append(" ")
        text = sql[token.start : token.end + 1]
        if token.token_type not in (TokenType.STRING, TokenType.IDENTIFIER):
            text = " ".join(text.split())
        parts.append(text)
        previous = token
    return "".join(parts)


def split_top_level(tokens: list[Token], separator: TokenType = TokenType.COMMA) -> list[list[Token]]:
    """Split a token run on a separator outside parentheses."""
    parts = []
    current = []
    depth = 0
    for token in tokens:
        if token.token_type == TokenType.L_PAREN:
            depth += 1
        elif token.token_type == TokenType.R_PAREN and depth > 0:
            depth -= 1
        elif token.token_type == separator and depth == 0:
            parts.append(current)
            current = []
            continue
        current.append(token)
    parts.append(current)
    return [part for part in parts if part]


def unquote_identifier(name: str) -> str:
    if len(name) >= 2 and name[0] in "\"`" and name[-1] == name[0]:
        return name[1:-1]
    return name


def identifier_text(token: Token, sql: str) -> str:
    """Name carried by a token; bracket-quoted names keep their brackets."""
    if token.token_type == TokenType.IDENTIFIER:
        return sql[token.start : token.end + 1] if sql[token.start] == "[" else token.text
    return sql[token.start : token.end + 1]


def read_name(tokens: list[Token], i: int, sql: str) -> Optional[tuple[str, int]]:
    """Name starting at token ``i`` and the index after it."""
    if i >= len(tokens):
        return None
    token = tokens[i]
    if token.token_type in NAME_TOKENS:
        return identifier_text(token, sql), i + 1
    if (
        token.token_type == TokenType.L_BRACKET
        and i + 2 < len(tokens)
        and tokens[i + 1].token_type in NAME_TOKENS
        and tokens[i + 2].token_type == TokenType.R_BRACKET
    ):
        return f"[{tokens[i + 1].text}]", i + 3
    return None


def read_column_ref(tokens: list[Token], i: int, sql: str) -> Optional[tuple[Optional[str], str, int]]:
    """``[qualifier.]column`` starting at token ``i`` and the index after it."""
    first = read_name(tokens, i, sql)
    if first is None:
        return None
    qualifier, column = None, first[0]
    j = first[1]
    while j < len(tokens) and tokens[j].token_type == TokenType.DOT:
        following = read_name(tokens, j + 1, sql)
        if following is None:
            return None
        qualifier, column = column, following[0]
        j = following[1]
    return qualifier, column, j


def is_column_start(tokens: list[Token], i: int) -> bool:
    """False for names that follow a dot, a parameter marker, a cast or AS."""
    return i == 0 or tokens[i - 1].token_type not in _NOT_A_COLUMN_AFTER


def parse_table_ref(tokens: list[Token], sql: str) -> Optional[tuple[str, Optional[str]]]:
    """Parse ``table [AS] alias``; a derived table reads as ``( )``."""
    if not tokens:
        return None
    if tokens[0].token_type == TokenType.L_PAREN and len(tokens) >= 2 and tokens[1].token_type == TokenType.R_PAREN:
        table, i = "( )", 2
    else:
        first = read_name(tokens, 0, sql)
        if first is None:
            return None
        parts = [first[0]]
        i = first[1]
        while i < len(tokens) and tokens[i].token_type == TokenType.DOT:
            following = read_name(tokens, i + 1, sql)
            if following is None:
                return None
            parts.append(following[0])
            i = following[1]
        table = ".".join(parts)

    if i < len(tokens) and tokens[i].token_type == TokenType.ALIAS:
        i += 1
    if i == len(tokens):
        return table, None
    alias = read_name(tokens, i, sql)
    if alias and alias[1] == len(tokens):
        return table, alias[0]
    return None


def column_tokens(tokens: list[Token], sql: str) -> list[tuple[Optional[str], str]]:
    """All column references in an expression; function names and literals excluded."""
    refs = []
    i = 0
    while i < len(tokens):
        ref = read_column_ref(tokens, i, sql) if is_column_start(tokens, i) else None
        if ref is None:
            i += 1
            continue
        qualifier, column, j = ref
        if j < len(tokens) and tokens[j].token_type == TokenType.L_PAREN:
            i = j
            continue
        refs.append((qualifier, column))
        i = j
    return refs


def star_qualifier(item: list[Token], sql: str) -> Optional[str]:
    """'' for a bare ``*``, the qualifier for ``alias.*``, None otherwise."""
    if len(item) == 1 and item[0].token_type == TokenType.STAR:
        return ""
    if len(item) >= 3 and item[-1].token_type == TokenType.STAR and item[-2].token_type == TokenType.DOT:
        name = read_name(item, 0, sql)
        if name and name[1] == len(item) - 2:
            return name[0]
    return None


def strip_alias(item: list[Token], sql: str) -> list[Token]:
    """Drop a trailing ``AS alias`` (or bare alias) from a projection item."""
    if len(item) >= 2 and item[-2].token_type == TokenType.ALIAS:
        return item[:-2]
    ref = read_column_ref(item, 0, sql)
    if ref and ref[2] == len(item):
        return item
    if (
        len(item) >= 2
        and item[-1].token_type in NAME_TOKENS
        and (item[-2].token_type in NAME_TOKENS or item[-2].token_type in (TokenType.R_PAREN, TokenType.NUMBER, TokenType.STRING))
    ):
        return item[:-1]
    return item


def projection_items(select_tokens: list[Token]) -> list[list[Token]]:
    """Projection items with a leading DISTINCT or ALL removed."""
    if select_tokens and select_tokens[0].token_type in (TokenType.DISTINCT, TokenType.ALL):
        select_tokens = select_tokens[1:]
    return split_top_level(select_tokens)


def projection_columns(parsed: ParsedQuery) -> list[str]:
    """Column names referenced by a level's projection list, first appearance order."""
    seen = []
    for item in projection_items(parsed.tokens("select")):
        if star_qualifier(item, parsed.sql) is not None:
            continue
        for _, column in column_tokens(strip_alias(item, parsed.sql), parsed.sql):
            if column not in seen:
                seen.append(column)
    return seen


def _immediate_subqueries(tokens: list[Token], pairs: dict[int, int]) -> list[tuple[int, int]]:
    """Parenthesis pairs holding a SELECT that are not inside another such pair."""
    found = []
    for start in sorted(pairs):
        end = pairs[start]
        if any(s < start and end < e for s, e in found):
            continue
        if start + 1 < end and tokens[start + 1].token_type == TokenType.SELECT:
            found.append((start, end))
    return found


def _find_clauses(tokens: list[Token], depths: list[int]) -> tuple[list[tuple[str, int, int]], int]:
    """Top-level clause keywords as (name, keyword index, content index), and where scanning stopped."""
    clauses = []
    i = 0
    while i < len(tokens):
        token_type = tokens[i].token_type
        if depths[i] != 0:
            i += 1
            continue
        if token_type in _COMPOUND_TOKENS:
            # only the first branch of a compound query is scanned
            return clauses, i
        if token_type in _JOIN_PREFIX_TOKENS or token_type == TokenType.JOIN:
            j = i
            while j < len(tokens) and tokens[j].token_type in _JOIN_PREFIX_TOKENS:
                j += 1
            if j < len(tokens) and tokens[j].token_type == TokenType.JOIN:
                clauses.append(("join", i, j + 1))
                i = j + 1
                continue
        elif token_type in _CLAUSE_TOKENS:
            leading_update = token_type != TokenType.UPDATE or i == 0
            distinct_from = token_type == TokenType.FROM and i > 0 and tokens[i - 1].token_type == TokenType.DISTINCT
            if leading_update and not distinct_from:
                clauses.append((_CLAUSE_TOKENS[token_type], i, i + 1))
        i += 1
    return clauses, len(tokens)


def _parse_join(
    keyword: list[Token], tokens: list[Token], indexes: list[int], depths: list[int], sql: str
) -> JoinClause:
    words = [token.token_type.name for token in keyword]
    join_type = next((word for word in words if word in _JOIN_TYPES), "INNER")

    split = next(
        (
            k
            for k, i in enumerate(indexes)
            if depths[i] == 0 and tokens[i].token_type in (TokenType.ON, TokenType.USING)
        ),
        len(indexes),
    )
    table_tokens = [tokens[i] for i in indexes[:split]]
    ref = parse_table_ref(table_tokens, sql)
    table, alias = ref if ref else (render(table_tokens, sql), None)

    join = JoinClause(join_type=join_type, table=table, alias=alias)
    if split < len(indexes):
        condition = [tokens[i] for i in indexes[split + 1 :]]
        if tokens[indexes[split]].token_type == TokenType.ON:
            join.on = render(condition, sql)
            join.on_tokens = condition
        else:
            join.using = [identifier_text(t, sql) for t in condition if t.token_type in NAME_TOKENS]
    return join


def parse_query(
    sql: str, depth: int = 0, max_depth: int = 8, dialect: Optional[str] = None
) -> ParsedQuery:
    """
    Split query text into its top-level clauses.

    Args:
        sql: Query text of this level (without surrounding parentheses)
        depth: Nesting level of this query, 0 for the outermost
        max_depth: Deepest nesting level that is still parsed
        dialect: sqlglot dialect whose lexical rules apply, defaults to the
            configured dialect

    Returns:
        ParsedQuery; clause failures and the recursion ceiling are recorded
        in ``errors`` instead of being raised.
    """
    dialect = dialect or default_settings.default_dialect
    parsed = ParsedQuery(sql=sql, dialect=dialect, depth=depth)

    tokens, unbalanced = tokenize(sql, dialect)
    if not tokens and unbalanced:
        parsed.errors.append(UnbalancedClauseError("query", sql.strip()[:200]))
        return parsed

    pairs, unmatched = match_parens(tokens)
    unbalanced = sorted(unbalanced + [tokens[i].start for i in unmatched])
    depths = paren_depths(tokens, pairs)

    subquery_spans = _immediate_subqueries(tokens, pairs)
    hidden = {i for start, end in subquery_spans for i in range(start + 1, end)}

    clauses, scan_end = _find_clauses(tokens, depths)

    table_spans = []
    for idx, (name, keyword_at, content_at) in enumerate(clauses):
        content_end = clauses[idx + 1][1] if idx + 1 < len(clauses) else scan_end
        span_start = tokens[content_at - 1].end + 1
        span_end = tokens[content_end].start if content_end < len(tokens) else len(sql)
        indexes = [i for i in range(content_at, content_end) if i not in hidden]
        content = [tokens[i] for i in indexes]
        keyword = tokens[keyword_at:content_at]

        try:
            if any(span_start <= pos < span_end for pos in unbalanced):
                label = " ".join(" ".join(t.text.split()).upper() for t in keyword)
                raise UnbalancedClauseError(label, sql[span_start:span_end].strip())

            if name == "join":
                table_spans.append((content_at, content_end))
                parsed.joins.append(_parse_join(keyword, tokens, indexes, depths, sql))
            elif name in ("select", "from", "where", "group_by", "having", "order_by"):
                if name in parsed.clause_tokens:
                    continue
                if name == "from":
                    table_spans.append((content_at, content_end))
                parsed.clause_tokens[name] = content
                text = render(content, sql)
                if name == "select":
                    parsed.select_list = text
                elif name == "from":
                    parsed.from_clause = text
                else:
                    setattr(parsed, name, text)
            elif name == "limit":
                parsed.has_limit = True
                numbers = [t.text for t in content[:3]]
                if numbers and numbers[0].isdigit():
                    if len(numbers) == 3 and numbers[1] == "," and numbers[2].isdigit():
                        # MySQL "LIMIT offset, count"
                        parsed.has_offset = True
                        parsed.limit_value = int(numbers[2])
                    else:
                        parsed.limit_value = int(numbers[0])
            elif name == "offset":
                parsed.has_offset = True
        except UnbalancedClauseError as e:
            logger.debug(f"Dropping clause at depth {depth}: {e}")
            parsed.errors.append(e)

    for start, end in subquery_spans:
        if start >= scan_end:
            continue
        inner = sql[tokens[start].end + 1 : tokens[end].start]
        if depth + 1 > max_depth:
            parsed.errors.append(RecursionLimitError(max_depth, inner.strip()))
            continue

        before = tokens[start - 1].token_type if start > 0 else None
        if before == TokenType.IN:
            context = "in"
        elif before == TokenType.EXISTS:
            context = "exists"
        elif any(s <= start < e for s, e in table_spans):
            context = "derived"
        else:
            context = "scalar"

        alias = None
        if context == "derived":
            after = end + 1
            if after < len(tokens) and tokens[after].token_type == TokenType.ALIAS:
                after += 1
            name = read_name(tokens, after, sql)
            alias = name[0] if name else None

        parsed.subqueries.append(
            Subquery(
                context=context,
                parsed=parse_query(inner, depth + 1, max_depth, dialect),
                alias=alias,
            )
        )

    return parsed
