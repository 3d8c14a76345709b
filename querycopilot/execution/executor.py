"""
Query executor -- sanitize -> expand -> send -> parse.

This is the only component of the pipeline that performs I/O.  Failures
surface as the execution taxonomy in ``querycopilot.core.errors``:

  - ``MacroExpansionError``  the query cannot be built (nothing was sent)
  - ``QueryTimeout``         the backend did not answer in time
  - ``QueryCancelled``       the caller cancelled; partial rows are discarded
  - ``TransportError``       unreachable backend or non-2xx response

Execution errors leave the executor with ``final_query`` set to the SQL
that was sent.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from querycopilot.core.config import Settings, get_settings
from querycopilot.core.errors import ExecutionError, MacroExpansionError
from querycopilot.core.logging import get_logger
from querycopilot.core.utils import timer
from querycopilot.execution.guard import has_multiple_statements
from querycopilot.execution.transport import CancellationToken, HttpQueryTransport, QueryTransport
from querycopilot.ingest.ndjson import ParseOutcome, parse_ndjson
from querycopilot.templating.macros import ExpansionResult, MacroContext, expand
from querycopilot.templating.sanitizer import clean_database_name, find_issues, sanitize

logger = get_logger(__name__)


@dataclass
class PreparedQuery:
    """Sanitized and expanded query, before any I/O."""
    original_query: str
    sanitized_query: str
    expansion: ExpansionResult
    warnings: list[str] = field(default_factory=list)

    @property
    def final_query(self) -> str:
        return self.expansion.final_query

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_query": self.original_query,
            "sanitized_query": self.sanitized_query,
            "final_query": self.final_query,
            "interpolated_variables": dict(self.expansion.interpolated_variables),
            "errors": list(self.expansion.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class QueryRun:
    final_query: str
    sanitized_query: str
    outcome: ParseOutcome
    interpolated_variables: dict[str, str] = field(default_factory=dict)
    elapsed_ms: int = 0

    @property
    def records(self) -> list[dict[str, Any]]:
        return self.outcome.records

    def to_dict(self) -> dict[str, Any]:
        return {
            "final_query": self.final_query,
            "sanitized_query": self.sanitized_query,
            "interpolated_variables": dict(self.interpolated_variables),
            "elapsed_ms": self.elapsed_ms,
            **self.outcome.model_dump(mode="json"),
        }


class QueryExecutor:
    """Runs one query per call; holds no per-call state."""

    def __init__(
        self,
        transport: QueryTransport,
        timeout: float = 30.0,
        max_records: int | None = None,
    ):
        self.transport = transport
        self.timeout = timeout
        self.max_records = max_records

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "QueryExecutor":
        settings = settings or get_settings()
        return cls(
            HttpQueryTransport(settings.query_api_url),
            timeout=settings.query_timeout_seconds,
            max_records=settings.record_limit,
        )

    def prepare(self, sql: str, context: MacroContext) -> PreparedQuery:
        """Sanitize and expand without sending anything."""
        sanitized = sanitize(sql)
        expansion = expand(sanitized, context)
        warnings = find_issues(expansion.final_query)
        if has_multiple_statements(sanitized):
            warnings.append("Query contains more than one statement; the backend may reject it.")
        return PreparedQuery(
            original_query=sql,
            sanitized_query=sanitized,
            expansion=expansion,
            warnings=warnings,
        )

    def run(
        self,
        sql: str,
        context: MacroContext,
        cancel_token: CancellationToken | None = None,
    ) -> QueryRun:
        """Full pipeline.  Raises the execution taxonomy on failure."""
        token = cancel_token or CancellationToken()
        with timer() as t:
            prepared = self.prepare(sql, context)
            if not prepared.expansion.ok:
                raise MacroExpansionError(prepared.expansion.errors, prepared.final_query)

            database = clean_database_name(context.database)
            try:
                token.raise_if_cancelled()
                logger.info("Executing query on db=%s (%d chars)", database, len(prepared.final_query))
                stream = self.transport.send(
                    prepared.final_query,
                    database,
                    timeout=self.timeout,
                    cancel_token=token,
                )
                try:
                    outcome = parse_ndjson(stream, max_records=self.max_records)
                finally:
                    close = getattr(stream, "close", None)
                    if close is not None:
                        close()
                token.raise_if_cancelled()
            except ExecutionError as exc:
                exc.final_query = prepared.final_query
                raise

        meta = outcome.metadata
        logger.info(
            "Query returned %d records (%d malformed lines) in %d ms",
            len(outcome.records), meta.error_lines, t["elapsed_ms"],
        )
        return QueryRun(
            final_query=prepared.final_query,
            sanitized_query=prepared.sanitized_query,
            outcome=outcome,
            interpolated_variables=dict(prepared.expansion.interpolated_variables),
            elapsed_ms=t["elapsed_ms"],
        )
