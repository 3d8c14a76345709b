"""
Deterministic query sanitizer.

Repairs the syntax artifacts that AI-authored queries tend to carry before
they reach the macro expander:

  1. ``@`` mention markers on database references (``@mydb.cpu`` / ``FROM @mydb``)
  2. function-style time filters (``$__timeFilter(ts)``), including an
     unbalanced opening parenthesis
  3. macros wrapped in quotes (``'$__timeFilter'``)
  4. macros split by whitespace (``$ __timeFilter``)

All rewrites go through the literal-aware tokenizer, so string literals,
quoted identifiers and comments are never modified.  The sanitizer never
raises: input it does not recognise comes back unchanged and any remaining
syntax problem is left for the expander or the backend to report.
"""
from __future__ import annotations

import re

from querycopilot.templating.tokenizer import (
    IDENTIFIER,
    STRING,
    in_code,
    map_code,
    quoted_end,
    split_spans,
)
from querycopilot.templating.tokens import MACRO_NAMES, TIME_FILTER
from querycopilot.core.logging import get_logger

logger = get_logger(__name__)

# ── Compiled patterns ────────────────────────────────────

# "@db." -- not after a word char or another "@" ("user@host", "@@version")
_QUALIFIED_AT = re.compile(r"(?<![@\w])@([A-Za-z_]\w*)(?=\.)")

# "FROM @db" / "JOIN @db" / "USE @db" ...
_STANDALONE_AT = re.compile(
    r"\b(FROM|JOIN|INTO|USE|TABLE|DATABASE)(\s+)@([A-Za-z_]\w*)(?![\w.@])",
    re.IGNORECASE,
)

_SPLIT_MACRO = re.compile(r"\$\s+__(" + "|".join(MACRO_NAMES) + r")(?!\w)")

_QUOTED_MACRO = re.compile(r"^\s*\$\s*__(" + "|".join(MACRO_NAMES) + r")\s*$")

_FUNC_STYLE = re.compile(r"\$__timeFilter\s*\(")

_LEADING_ARG = re.compile(r"\s*(?:\"(?:[^\"]|\"\")*\"|[A-Za-z_][\w.]*)")

_STRAY_AT = re.compile(r"(?<![@\w])@[A-Za-z_]")

_DB_NAME_INVALID = re.compile(r"[^a-zA-Z0-9_.-]")


# ── Qualifier markers ────────────────────────────────────


def _until_stable(rewrite, sql: str) -> str:
    """Apply *rewrite* until the text stops changing.  Every rewrite here only
    deletes characters, so this terminates."""
    while True:
        fixed = rewrite(sql)
        if fixed == sql:
            return fixed
        sql = fixed


def _strip_code(text: str) -> str:
    text = _QUALIFIED_AT.sub(r"\1", text)
    return _STANDALONE_AT.sub(r"\1\2\3", text)


def strip_qualifier_markers(sql: str) -> str:
    """Remove ``@`` mention markers from database references.

    Idempotent: ``strip_qualifier_markers(strip_qualifier_markers(s))`` equals
    ``strip_qualifier_markers(s)``.
    """
    if not sql:
        return sql
    return _until_stable(lambda text: map_code(text, _strip_code), sql)


# ── Time-filter repair ───────────────────────────────────


def _unquote_macros(sql: str) -> str:
    """``'$__timeFilter'`` -> ``$__timeFilter`` when the literal is only the macro."""
    parts: list[str] = []
    for span in split_spans(sql):
        if span.kind in (STRING, IDENTIFIER):
            m = _QUOTED_MACRO.match(span.content)
            if m and span.content != span.text:
                parts.append(f"$__{m.group(1)}")
                continue
        parts.append(span.text)
    return "".join(parts)


def _matching_paren(sql: str, open_idx: int) -> int | None:
    """Index of the parenthesis closing ``sql[open_idx]``, or None if unbalanced."""
    depth = 0
    i = open_idx
    n = len(sql)
    while i < n:
        ch = sql[i]
        if ch in ("'", '"'):
            i = quoted_end(sql, i, ch)
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        elif ch == ";":
            return None
        i += 1
    return None


def _drop_call_arguments(sql: str) -> str:
    """``$__timeFilter(ts)`` -> ``$__timeFilter``; ``$__timeFilter(ts`` -> ``$__timeFilter``."""
    spans = split_spans(sql)
    out: list[str] = []
    pos = 0
    for m in _FUNC_STYLE.finditer(sql):
        if m.start() < pos or not in_code(spans, m.start()):
            continue
        close = _matching_paren(sql, m.end() - 1)
        if close is not None:
            end = close + 1
        else:
            arg = _LEADING_ARG.match(sql, m.end())
            end = arg.end() if arg else m.end()
            logger.warning("Unbalanced %s( call repaired", TIME_FILTER)
        out.append(sql[pos:m.start()])
        out.append(TIME_FILTER)
        pos = end
    if not out:
        return sql
    out.append(sql[pos:])
    return "".join(out)


def _fix_once(sql: str) -> str:
    fixed = _unquote_macros(sql)
    fixed = map_code(fixed, lambda text: _SPLIT_MACRO.sub(r"$__\1", text))
    return _drop_call_arguments(fixed)


def fix_time_filter_syntax(sql: str) -> str:
    """Rewrite malformed macro invocations to their canonical token form.

    Returns the input unchanged when no malformed pattern is found.
    """
    if not sql:
        return sql
    fixed = _until_stable(_fix_once, sql)
    if fixed != sql:
        logger.info("Repaired malformed macro syntax")
    return fixed


def sanitize(sql: str) -> str:
    """Full sanitizer pass: qualifier markers, then macro repair.

    Idempotent: ``sanitize(sanitize(s)) == sanitize(s)``.
    """
    if not sql:
        return sql
    return _until_stable(lambda text: fix_time_filter_syntax(strip_qualifier_markers(text)), sql)


# ── Helpers ──────────────────────────────────────────────


def clean_database_name(database: str) -> str:
    """Drop a leading ``@`` and any character a database name cannot hold."""
    if not database:
        return database
    return _DB_NAME_INVALID.sub("", database.lstrip("@"))


def find_issues(sql: str) -> list[str]:
    """Return warnings for artifacts still present in *sql* (empty list = clean)."""
    issues: list[str] = []
    if not sql:
        return issues

    spans = split_spans(sql)
    code = " ".join(s.text for s in spans if s.is_code)

    if _STRAY_AT.search(code):
        issues.append("Query contains @ markers. Database references should not include @ symbols.")
    if any(in_code(spans, m.start()) for m in _FUNC_STYLE.finditer(sql)):
        issues.append(f"{TIME_FILTER} is a macro, not a function. Use it without parentheses.")
    for span in spans:
        if span.kind in (STRING, IDENTIFIER) and _QUOTED_MACRO.match(span.content):
            issues.append(f"Macro {span.content.strip()} should not be quoted.")
    return issues
