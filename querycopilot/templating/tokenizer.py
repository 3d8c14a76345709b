"""
Literal- and comment-aware SQL span splitter.

Every textual rewrite in the templating layer (qualifier stripping, macro
repair, macro expansion) runs through ``map_code`` so that string literals,
quoted identifiers and comments are never modified.

Span kinds:
  - code           plain SQL text
  - string         '...'  ('' escapes a quote)
  - identifier     "..."  ("" escapes a quote)
  - line_comment   -- ... up to (not including) the newline
  - block_comment  /* ... */

Unterminated literals and comments run to the end of the input.  Joining the
text of all spans always reproduces the input exactly.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

CODE = "code"
STRING = "string"
IDENTIFIER = "identifier"
LINE_COMMENT = "line_comment"
BLOCK_COMMENT = "block_comment"


@dataclass(frozen=True)
class Span:
    kind: str
    text: str
    start: int

    @property
    def end(self) -> int:
        return self.start + len(self.text)

    @property
    def is_code(self) -> bool:
        return self.kind == CODE

    @property
    def content(self) -> str:
        """Text between the delimiters of a quoted span."""
        if self.kind in (STRING, IDENTIFIER) and len(self.text) >= 2 and self.text[-1] == self.text[0]:
            return self.text[1:-1]
        return self.text


def quoted_end(sql: str, start: int, quote: str) -> int:
    """Index just past the closing quote, honouring doubled-quote escapes."""
    i = start + 1
    n = len(sql)
    while i < n:
        if sql[i] == quote:
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def split_spans(sql: str) -> list[Span]:
    """Split *sql* into code / literal / comment spans."""
    spans: list[Span] = []
    n = len(sql)
    i = 0
    code_start = 0

    def flush_code(upto: int) -> None:
        if upto > code_start:
            spans.append(Span(CODE, sql[code_start:upto], code_start))

    while i < n:
        ch = sql[i]
        if ch in ("'", '"'):
            end = quoted_end(sql, i, ch)
            kind = STRING if ch == "'" else IDENTIFIER
        elif ch == "-" and sql.startswith("--", i):
            nl = sql.find("\n", i)
            end = n if nl == -1 else nl
            kind = LINE_COMMENT
        elif ch == "/" and sql.startswith("/*", i):
            close = sql.find("*/", i + 2)
            end = n if close == -1 else close + 2
            kind = BLOCK_COMMENT
        else:
            i += 1
            continue

        flush_code(i)
        spans.append(Span(kind, sql[i:end], i))
        i = end
        code_start = end

    flush_code(n)
    return spans


def map_code(sql: str, fn: Callable[[str], str]) -> str:
    """Apply *fn* to every code span and leave literals/comments untouched."""
    return "".join(fn(s.text) if s.is_code else s.text for s in split_spans(sql))


def code_only(sql: str) -> str:
    """The concatenated code spans (for detection, never for output)."""
    return " ".join(s.text for s in split_spans(sql) if s.is_code)


def in_code(spans: list[Span], pos: int) -> bool:
    """True when character index *pos* falls inside a code span."""
    for span in spans:
        if span.start <= pos < span.end:
            return span.is_code
    return False
