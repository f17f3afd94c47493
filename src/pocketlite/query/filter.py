"""
filter.py - PocketBase filter expressions to parameterized SQL.

    "status = true && created > '2022-01-01'"
        -> ("status = ? AND created > ?", [1, "2022-01-01"])
    "title ~ 'x'"
        -> ("title LIKE ?", ["%x%"])

Literal values never reach SQL as text: every string, number and
keyword literal becomes a positional placeholder. What remains must
be a boolean combination of comparisons between field names and
placeholders; anything else (function calls, subqueries, statement
separators) is rejected before it reaches the database.
"""

import re
from typing import Any, NamedTuple

from pocketlite.errors import InvalidRequestError

# Literals and PocketBase boolean operators, scanned in one pass so
# operator text inside string literals is never rewritten.
_TOKEN_RE = re.compile(
    r"""
    (?P<dq>"(?:[^"\\]|\\.)*")
    | (?P<sq>'(?:[^'\\]|\\.)*')
    | (?P<num>(?<![\w.])-?\d+(?:\.\d+)?\b)
    | (?P<kw>\b(?:true|false|null)\b)
    | (?P<and>\s*&&\s*)
    | (?P<or>\s*\|\|\s*)
    | (?P<neq>!=)
    """,
    re.VERBOSE,
)

# A placeholder together with the custom operator in front of it, if any.
# The lookahead keeps the "?" of a "?=" operator from counting as a placeholder.
_PLACEHOLDER_RE = re.compile(r"(?:(?P<op>!~|~|\?=)\s*)?\?(?!=)")

# "tags.name ?= 'x'" matches against the whole stored array
_ARRAY_SUBFIELD_RE = re.compile(r"(\w+)(?:\.\w+)+(\s*\?=)")

_ESCAPE_RE = re.compile(r"\\(.)")

_KEYWORDS = {"true": 1, "false": 0, "null": None}

_OPERATOR_SQL = {"and": " AND ", "or": " OR ", "neq": "<>"}

# Lexer for the translated predicate
_SQL_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<name>[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)
        | (?P<param>\?)
        | (?P<cmp><=|>=|<>|=|<|>)
        | (?P<lparen>\()
        | (?P<rparen>\))
    )
    """,
    re.VERBOSE,
)

_CONNECTIVES = {"AND", "OR"}
_RESERVED = {"AND", "OR", "NOT", "LIKE", "IS"}


class FilterClause(NamedTuple):
    """A SQL predicate and the values bound to its placeholders, in order."""

    sql: str
    values: list[Any]

    def __bool__(self) -> bool:
        return bool(self.sql)


def _unquote(literal: str) -> str:
    return _ESCAPE_RE.sub(r"\1", literal[1:-1])


def _pattern_text(value: Any) -> str:
    """Render a literal inside a LIKE pattern; 5.0 is written as 5."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class _PredicateChecker:
    """
    Accepts only the translated predicate grammar:

        expr       := term ((AND | OR) term)*
        term       := NOT term | "(" expr ")" | comparison
        comparison := operand (cmp | [NOT] LIKE | IS [NOT]) operand
        operand    := field name | "?"
    """

    def __init__(self, sql: str, expression: str):
        self._expression = expression
        self._tokens = self._lex(sql)
        self._pos = 0

    def _fail(self, reason: str) -> InvalidRequestError:
        return InvalidRequestError(f"Invalid filter: {reason}", field="filter", value=self._expression)

    def _lex(self, sql: str) -> list[tuple[str, str]]:
        tokens = []
        pos = 0
        end = len(sql.rstrip())
        while pos < end:
            match = _SQL_TOKEN_RE.match(sql, pos)
            if match is None:
                raise self._fail(f"unexpected input {sql[pos:].strip()[:20]!r}")
            kind = match.lastgroup
            text = match.group(kind)
            if kind == "name" and text.upper() in _RESERVED:
                kind, text = "keyword", text.upper()
            tokens.append((kind, text))
            pos = match.end()
        return tokens

    def _peek(self) -> tuple[str, str] | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self, kind: str, text: str | None = None) -> bool:
        token = self._peek()
        if token is not None and token[0] == kind and (text is None or token[1] == text):
            self._pos += 1
            return True
        return False

    def check(self) -> None:
        self._expr()
        token = self._peek()
        if token is not None:
            raise self._fail(f"unexpected {token[1]!r}")

    def _expr(self) -> None:
        self._term()
        while self._peek() is not None and self._peek()[1] in _CONNECTIVES:
            self._pos += 1
            self._term()

    def _term(self) -> None:
        if self._take("keyword", "NOT"):
            self._term()
        elif self._take("lparen"):
            self._expr()
            if not self._take("rparen"):
                raise self._fail("unbalanced parentheses")
        else:
            self._comparison()

    def _comparison(self) -> None:
        self._operand()
        if self._take("cmp"):
            pass
        elif self._take("keyword", "IS"):
            self._take("keyword", "NOT")
        else:
            self._take("keyword", "NOT")
            if not self._take("keyword", "LIKE"):
                raise self._fail("expected a comparison operator")
        self._operand()

    def _operand(self) -> None:
        if not (self._take("name") or self._take("param")):
            token = self._peek()
            raise self._fail(f"unexpected {token[1]!r}" if token else "incomplete expression")


class FilterTranslator:
    """Translates PocketBase filter syntax into SQL WHERE predicates."""

    def translate(self, expression: str | None) -> FilterClause:
        """
        Translate a filter expression.

        Returns an empty clause for empty input; callers must then
        omit the WHERE clause entirely.

        Raises:
            InvalidRequestError: If the expression is not a comparison
                of fields and literals
        """
        if not expression or not expression.strip():
            return FilterClause("", [])

        values: list[Any] = []
        text = _ARRAY_SUBFIELD_RE.sub(r"\1\2", expression)

        def replace_token(match: re.Match) -> str:
            kind = match.lastgroup
            token = match.group()
            if kind in _OPERATOR_SQL:
                return _OPERATOR_SQL[kind]
            if kind in ("dq", "sq"):
                values.append(_unquote(token))
            elif kind == "kw":
                values.append(_KEYWORDS[token])
            else:
                values.append(float(token))
            return "?"

        sql = _TOKEN_RE.sub(replace_token, text)

        index = 0

        def replace_placeholder(match: re.Match) -> str:
            nonlocal index
            if index >= len(values):
                raise InvalidRequestError("Invalid filter: stray '?'", field="filter", value=expression)
            op = match.group("op")
            value = values[index]
            index += 1
            if op is None:
                return "?"
            if value is not None:
                shown = _pattern_text(value)
                values[index - 1] = f'%"{shown}"%' if op == "?=" else f"%{shown}%"
            return "NOT LIKE ?" if op == "!~" else "LIKE ?"

        sql = _PLACEHOLDER_RE.sub(replace_placeholder, sql).strip()
        _PredicateChecker(sql, expression).check()
        return FilterClause(sql, values)
