"""
Statement-kind checks run before a proposed query is executed.

Only the code spans are inspected, so a keyword inside a string literal or
a comment never counts.
"""
from __future__ import annotations

import re

from querycopilot.core.errors import MutationBlocked
from querycopilot.templating.tokenizer import code_only

_MUTATION_KW = re.compile(
    r"^\s*(INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE|REPLACE|MERGE|UPSERT|GRANT|REVOKE)\b",
    re.IGNORECASE,
)

_MULTI_STMT = re.compile(r";\s*\S")

_TRAILING_SEMICOLON = re.compile(r";\s*$")


def mutation_keyword(sql: str) -> str | None:
    """The leading data-modifying keyword of *sql*, if any (upper-cased)."""
    code = code_only(sql or "")
    for statement in code.split(";"):
        m = _MUTATION_KW.match(statement)
        if m:
            return m.group(1).upper()
    return None


def has_multiple_statements(sql: str) -> bool:
    return bool(_MULTI_STMT.search(code_only(sql or "")))


def strip_trailing_semicolon(sql: str) -> str:
    return _TRAILING_SEMICOLON.sub("", sql).strip()


def ensure_read_only(sql: str) -> None:
    """Raise ``MutationBlocked`` when *sql* starts a data-modifying statement."""
    keyword = mutation_keyword(sql)
    if keyword:
        raise MutationBlocked(
            f"Mutation queries require explicit confirmation (statement starts with {keyword})"
        )
