"""
Boolean query parsing.

Supported syntax, over the name/docs/path fields:
    serialize json          either term (default)
    +serialize -derive      required / excluded terms
    spawn AND task          both required
    async OR await          either
    NOT unsafe              excluded
    "read to string"        phrase
    name:HashMap            restrict a clause to one field

Malformed input is sanitized rather than rejected: an unclosed quote runs to
the end of the query and dangling operators are dropped.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .tokenize import preprocess_text

SEARCH_FIELDS = ("name", "docs", "path")


class Occur(str, Enum):
    MUST = "must"
    SHOULD = "should"
    MUST_NOT = "must_not"


@dataclass
class Clause:
    """One term or phrase with its occurrence requirement."""

    tokens: list[str]
    occur: Occur = Occur.SHOULD
    field: Optional[str] = None

    @property
    def fields(self) -> tuple[str, ...]:
        return (self.field,) if self.field else SEARCH_FIELDS


@dataclass
class ParsedQuery:
    clauses: list[Clause] = field(default_factory=list)

    @property
    def positive_tokens(self) -> list[str]:
        """Tokens of every non-excluded clause, used for ranking."""
        tokens = []
        for clause in self.clauses:
            if clause.occur != Occur.MUST_NOT:
                tokens.extend(clause.tokens)
        return tokens

    @property
    def is_empty(self) -> bool:
        return not any(c.occur != Occur.MUST_NOT for c in self.clauses)


def _split(query: str) -> list[tuple[str, bool]]:
    """Split on whitespace, keeping quoted phrases together as (text, quoted)."""
    parts: list[tuple[str, bool]] = []
    current: list[str] = []
    in_quotes = False

    for char in query:
        if char == '"':
            if in_quotes:
                parts.append(("".join(current), True))
                current = []
            elif current and current[-1] != ":":
                parts.append(("".join(current), False))
                current = []
            in_quotes = not in_quotes
        elif char.isspace() and not in_quotes:
            if current:
                parts.append(("".join(current), False))
                current = []
        else:
            current.append(char)

    if current:
        parts.append(("".join(current), in_quotes))
    return parts


def parse_query(query: str) -> ParsedQuery:
    """
    Parse a query string into clauses.

    Args:
        query: Raw query text

    Returns:
        ParsedQuery (possibly empty when nothing searchable remains)
    """
    clauses: list[Clause] = []
    pending_not = False
    pending_and = False

    for text, quoted in _split(query):
        if not quoted and text in ("AND", "&&"):
            pending_and = True
            continue
        if not quoted and text in ("OR", "||"):
            continue
        if not quoted and text in ("NOT", "!"):
            pending_not = True
            continue

        occur = Occur.SHOULD
        field_name = None
        if not quoted:
            if text.startswith("+"):
                occur, text = Occur.MUST, text[1:]
            elif text.startswith("-"):
                occur, text = Occur.MUST_NOT, text[1:]

        prefix, sep, rest = text.partition(":")
        if sep and prefix.lower() in SEARCH_FIELDS:
            field_name, text = prefix.lower(), rest

        tokens = preprocess_text(text)
        if not tokens:
            continue

        if pending_not:
            occur = Occur.MUST_NOT
        elif pending_and:
            occur = Occur.MUST
            # "a AND b" makes the left operand required too
            if clauses and clauses[-1].occur == Occur.SHOULD:
                clauses[-1].occur = Occur.MUST

        clauses.append(Clause(tokens=tokens, occur=occur, field=field_name))
        pending_not = False
        pending_and = False

    return ParsedQuery(clauses=clauses)


def contains_sequence(haystack: list[str], needle: list[str]) -> bool:
    """True when needle appears contiguously in haystack."""
    if not needle:
        return False
    if len(needle) == 1:
        return needle[0] in haystack
    width = len(needle)
    return any(haystack[i:i + width] == needle for i in range(len(haystack) - width + 1))
