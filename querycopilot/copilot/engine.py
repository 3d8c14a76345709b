"""
Auto-execution engine -- runs an AI-proposed query end to end.

Steps per proposal:
  1. Validate the proposal (a query is required)
  2. Strip a trailing semicolon
  3. Block data-modifying statements unless confirmation is disabled
  4. Delegate to ``QueryExecutor`` with the proposal's database (or the session's)
  5. Classify any failure into ``ExecutionResult.error_kind``
  6. Record the attempt in the execution history (fire-and-forget)

``execute_proposal`` never raises for execution failures; the caller always
gets an ``ExecutionResult``.
"""
from __future__ import annotations

import dataclasses
import time
from typing import Callable

from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, stop_any, wait_fixed

from querycopilot.copilot.models import ExecutionProposal, ExecutionResult
from querycopilot.core.config import Settings, get_settings
from querycopilot.core.errors import (
    ExecutionError,
    MacroExpansionError,
    MutationBlocked,
    QueryCancelled,
    QueryTimeout,
    TransportError,
)
from querycopilot.core.logging import get_logger
from querycopilot.core.utils import utc_now
from querycopilot.execution.executor import QueryExecutor
from querycopilot.execution.guard import ensure_read_only, strip_trailing_semicolon
from querycopilot.execution.transport import CancellationToken
from querycopilot.templating.macros import MacroContext

logger = get_logger(__name__)

HistorySink = Callable[[ExecutionProposal, ExecutionResult], None]

RETRYABLE_KINDS = ("transport", "timeout")


def _is_retryable(result: ExecutionResult) -> bool:
    return not result.success and result.error_kind in RETRYABLE_KINDS


class AutoExecutionEngine:
    def __init__(
        self,
        executor: QueryExecutor,
        require_confirmation_for_mutations: bool = True,
        history: HistorySink | None = None,
        max_retries: int = 0,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.executor = executor
        self.require_confirmation_for_mutations = require_confirmation_for_mutations
        self.history = history
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        executor: QueryExecutor,
        settings: Settings | None = None,
        history: HistorySink | None = None,
    ) -> "AutoExecutionEngine":
        settings = settings or get_settings()
        return cls(
            executor,
            require_confirmation_for_mutations=settings.require_confirmation_for_mutations,
            history=history,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay_seconds,
        )

    # ── Single attempt ──────────────────────────────────

    def execute_proposal(
        self,
        proposal: ExecutionProposal,
        context: MacroContext,
        cancel_token: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Execute *proposal* once and return a classified result."""
        t0 = time.perf_counter()
        database = proposal.database or context.database or "default"
        query = strip_trailing_semicolon(proposal.query or "")
        logger.info("Executing proposal | artifact=%s | db=%s", proposal.artifact_id or proposal.title, database)

        def failure(kind: str, error: str, detail: str | None = None, sent: str | None = None) -> ExecutionResult:
            logger.warning("Proposal failed | kind=%s | %s", kind, error)
            return ExecutionResult(
                success=False,
                error=error,
                error_kind=kind,
                error_detail=detail,
                execution_time_ms=int((time.perf_counter() - t0) * 1000),
                timestamp=utc_now(),
                query=sent if sent is not None else query,
                database=database,
            )

        if not query:
            result = failure("invalid_proposal", "Invalid proposal: missing query")
            self._record(proposal, result)
            return result

        try:
            if self.require_confirmation_for_mutations:
                ensure_read_only(query)
            run = self.executor.run(
                query,
                dataclasses.replace(context, database=database),
                cancel_token=cancel_token,
            )
        except MutationBlocked as exc:
            result = failure("mutation_blocked", str(exc), detail=query[:200])
        except MacroExpansionError as exc:
            result = failure(
                "macro",
                "The query uses time variables that could not be filled in. "
                "Select a time range and time field, then try again.",
                detail="; ".join(exc.errors),
                sent=exc.final_query or query,
            )
        except QueryTimeout as exc:
            result = failure(
                "timeout",
                f"Query timed out after {self.executor.timeout:g}s. "
                "Consider a narrower time range or a LIMIT clause.",
                detail=str(exc),
                sent=exc.final_query,
            )
        except QueryCancelled as exc:
            result = failure("cancelled", "Query was cancelled.", detail=str(exc), sent=exc.final_query)
        except TransportError as exc:
            if exc.status_code is not None:
                message = f"The query service rejected the query (HTTP {exc.status_code})."
            else:
                message = "The query service could not be reached."
            result = failure("transport", message, detail=exc.detail or str(exc), sent=exc.final_query)
        except ExecutionError as exc:
            result = failure(exc.kind, str(exc), detail=repr(exc), sent=exc.final_query)
        except Exception as exc:
            logger.exception("Unexpected failure while executing proposal")
            result = failure("internal", "Unexpected error while executing the query.", detail=repr(exc))
        else:
            outcome = run.outcome
            result = ExecutionResult(
                success=True,
                data=outcome.records,
                row_count=len(outcome.records),
                execution_time_ms=int((time.perf_counter() - t0) * 1000),
                timestamp=utc_now(),
                query=run.final_query,
                database=database,
                columns=outcome.columns,
                malformed_lines=outcome.metadata.error_lines,
                interpolated_variables=run.interpolated_variables,
            )
            logger.info("Proposal succeeded | rows=%d | %d ms", result.row_count, result.execution_time_ms)

        self._record(proposal, result)
        return result

    # ── Retry ───────────────────────────────────────────

    def execute_with_retry(
        self,
        proposal: ExecutionProposal,
        context: MacroContext,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Retry transport and timeout failures; anything else returns at once.

        When the attempts run out the last failed result is returned.
        """
        retries = self.max_retries if max_retries is None else max_retries
        delay = self.retry_delay if retry_delay is None else retry_delay

        def cancelled(retry_state: RetryCallState) -> bool:
            return cancel_token is not None and cancel_token.cancelled

        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                "Retrying proposal (%d/%d) after %s failure",
                retry_state.attempt_number, retries, retry_state.outcome.result().error_kind,
            )

        retrying = Retrying(
            stop=stop_any(stop_after_attempt(max(retries, 0) + 1), cancelled),
            wait=wait_fixed(max(delay, 0)),
            retry=retry_if_result(_is_retryable),
            sleep=self._sleep,
            before_sleep=log_retry,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        return retrying(self.execute_proposal, proposal, context, cancel_token=cancel_token)

    # ── History ─────────────────────────────────────────

    def _record(self, proposal: ExecutionProposal, result: ExecutionResult) -> None:
        if self.history is None:
            return
        try:
            self.history(proposal, result)
        except Exception:
            logger.warning("Execution history write failed -- continuing")
