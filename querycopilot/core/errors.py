"""Exception taxonomy for the query pipeline.

Content errors (bad durations, missing time columns, failed macro expansion)
are kept apart from execution errors (transport, timeout, cancellation) so
callers can tell "your SQL is wrong" from "the service failed".
"""
from __future__ import annotations


class QueryCopilotError(Exception):
    """Base class for all pipeline errors."""


# ── Query-content errors ────────────────────────────────


class InvalidDuration(QueryCopilotError, ValueError):
    """A relative time expression could not be parsed."""


class InvalidConfiguration(QueryCopilotError, ValueError):
    """A time range or interval setting is unusable."""


class MissingTimeColumn(QueryCopilotError):
    """A macro needs a time column and none is available."""


class MacroExpansionError(QueryCopilotError):
    """All macro failures from one expansion call."""

    def __init__(self, errors: list[str], final_query: str = ""):
        self.errors = list(errors)
        self.final_query = final_query
        super().__init__("Macro expansion failed: " + "; ".join(self.errors))


# ── Execution errors ────────────────────────────────────


class ExecutionError(QueryCopilotError):
    """Raised when a query could not be executed against the backend."""

    kind = "internal"
    final_query: str | None = None  # SQL that was sent, set by the executor


class TransportError(ExecutionError):
    """The backend was unreachable or answered with a non-2xx status."""

    kind = "transport"

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class QueryTimeout(ExecutionError):
    kind = "timeout"


class QueryCancelled(ExecutionError):
    kind = "cancelled"


class MutationBlocked(ExecutionError):
    """A data-modifying statement was proposed without confirmation."""

    kind = "mutation_blocked"
