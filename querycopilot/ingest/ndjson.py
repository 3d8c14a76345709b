"""
Streaming NDJSON parser with per-line fault isolation.

One JSON object per line.  A malformed line is recorded as a
``ParseLineError`` and parsing continues, so a single bad row never hides
the rest of the result.

Line accounting (always holds):

    success_lines + error_lines + blank_lines == total_lines

Multi-line recovery: a line that fails only because the input ended early
(an object cut by a newline) is buffered and the following lines are
appended until the buffer decodes.  A line that starts a new object or
array, a decode error in the middle of the buffer, or the end of input
turns the whole buffer into one error.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, Union

from pydantic import BaseModel, Field

from querycopilot.core.logging import get_logger

logger = get_logger(__name__)

ParsedRecord = dict[str, Any]

# States of the line reader
READING_LINE = "reading_line"
DONE = "done"


# ── Outcome models ───────────────────────────────────────


class ParseLineError(BaseModel):
    line_number: int
    message: str


class ParseMetadata(BaseModel):
    total_lines: int = 0
    success_lines: int = 0
    error_lines: int = 0
    blank_lines: int = 0
    truncated: bool = False
    truncation_note: str | None = None


class ParseOutcome(BaseModel):
    records: list[ParsedRecord] = Field(default_factory=list)
    errors: list[ParseLineError] = Field(default_factory=list)
    metadata: ParseMetadata = Field(default_factory=ParseMetadata)

    @property
    def columns(self) -> list[str]:
        """Union of record keys in first-seen order."""
        seen: dict[str, None] = {}
        for record in self.records:
            for key in record:
                seen.setdefault(key, None)
        return list(seen)


# ── Line splitting ───────────────────────────────────────


def _segments(source: Union[str, bytes, Iterable[Union[str, bytes]]]) -> Iterable[Union[str, bytes]]:
    """Split a whole body on ``\\n``; an iterable is already a line stream."""
    if isinstance(source, (str, bytes)):
        if not source:
            return
        newline = "\n" if isinstance(source, str) else b"\n"
        parts = source.split(newline)
        if source.endswith(newline):
            parts.pop()
        yield from parts
        return
    yield from source


def _starts_value(line: str) -> bool:
    return line.startswith("{") or line.startswith("[")


def _type_name(value: Any) -> str:
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if value is None:
        return "null"
    return "number"


# ── Parser ───────────────────────────────────────────────


class _Reader:
    """Line-by-line state machine behind ``parse_ndjson``."""

    def __init__(self, max_records: int | None):
        self.max_records = max_records if max_records and max_records > 0 else None
        self.state = READING_LINE
        self.outcome = ParseOutcome()
        self.pending: list[str] = []
        self.pending_start = 0

    @property
    def meta(self) -> ParseMetadata:
        return self.outcome.metadata

    def _error(self, line_number: int, message: str, lines: int = 1) -> None:
        self.outcome.errors.append(ParseLineError(line_number=line_number, message=message))
        self.meta.error_lines += lines
        logger.warning("Malformed NDJSON at line %d: %s", line_number, message)

    def _accept(self, value: Any, line_number: int, lines: int) -> None:
        if not isinstance(value, dict):
            self._error(line_number, f"Expected a JSON object, got {_type_name(value)}", lines)
            return
        self.outcome.records.append(value)
        self.meta.success_lines += lines

    def _flush_pending(self, reason: str) -> None:
        first, count = self.pending_start, len(self.pending)
        span = f"line {first}" if count == 1 else f"lines {first}-{first + count - 1}"
        self._error(first, f"Incomplete JSON object ({span}): {reason}", count)
        self.pending = []

    def _at_capacity(self) -> bool:
        return self.max_records is not None and len(self.outcome.records) >= self.max_records

    def _truncate(self) -> None:
        self.meta.truncated = True
        self.meta.truncation_note = (
            f"Stopped after {self.max_records} records; remaining lines were not parsed."
        )
        self.state = DONE

    def reject(self, line_number: int, message: str) -> None:
        """Record a line that could not be decoded as text."""
        if self.pending:
            self._flush_pending("an undecodable line interrupted it")
        if self._at_capacity():
            self._truncate()
            return
        self.meta.total_lines += 1
        self._error(line_number, message)

    def feed(self, line_number: int, raw: str) -> None:
        line = raw.strip()

        if self.pending:
            if not line:
                self.meta.total_lines += 1
                self.meta.blank_lines += 1
                return
            if _starts_value(line):
                self._flush_pending("a new record started before it was closed")
            else:
                self.meta.total_lines += 1
                self.pending.append(line)
                buffer = "\n".join(self.pending)
                try:
                    value = json.loads(buffer)
                except json.JSONDecodeError as exc:
                    if exc.pos < len(buffer):
                        self._flush_pending(exc.msg)
                    return
                count = len(self.pending)
                self.pending = []
                self._accept(value, self.pending_start, count)
                return

        if line and self._at_capacity():
            self._truncate()
            return

        self.meta.total_lines += 1
        if not line:
            self.meta.blank_lines += 1
            return
        try:
            value = json.loads(line)
        except json.JSONDecodeError as exc:
            if exc.pos >= len(line):
                self.pending = [line]
                self.pending_start = line_number
                return
            self._error(line_number, f"{exc.msg} (column {exc.colno})")
            return
        self._accept(value, line_number, 1)

    def finish(self) -> ParseOutcome:
        if self.pending:
            self._flush_pending("input ended before the object was closed")
        self.state = DONE
        return self.outcome


def parse_ndjson(
    source: Union[str, bytes, Iterable[Union[str, bytes]]],
    max_records: int | None = None,
) -> ParseOutcome:
    """Parse newline-delimited JSON into records, errors and line counts.

    Parameters
    ----------
    source : str | bytes | iterable of lines
        A whole response body (split on ``\\n``; one trailing terminator is
        ignored and ``\\r`` is stripped) or an iterator of lines, e.g. a
        streamed HTTP response.  Bytes are decoded per line as strict UTF-8;
        a line that fails to decode is a ``ParseLineError``.
    max_records : int, optional
        Stop after this many records and flag the outcome as truncated.

    Never raises on malformed input.
    """
    reader = _Reader(max_records)
    for line_number, raw in enumerate(_segments(source), start=1):
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                reader.reject(line_number, f"Invalid UTF-8 at byte {exc.start}")
                if reader.state == DONE:
                    break
                continue
        reader.feed(line_number, raw.rstrip("\r\n"))
        if reader.state == DONE:
            break
    outcome = reader.finish()
    meta = outcome.metadata
    logger.debug(
        "NDJSON parsed: total=%d ok=%d errors=%d blank=%d truncated=%s",
        meta.total_lines, meta.success_lines, meta.error_lines, meta.blank_lines, meta.truncated,
    )
    return outcome


def to_ndjson(records: Iterable[ParsedRecord]) -> str:
    """Serialise records back to NDJSON (no trailing newline)."""
    return "\n".join(json.dumps(record, default=str) for record in records)

