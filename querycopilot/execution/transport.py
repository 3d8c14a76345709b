"""
Transport to the query backend.

The executor talks to a ``QueryTransport``: one call per execution that
streams NDJSON lines back.  ``HttpQueryTransport`` is the httpx
implementation (``POST <url>?db=<database>&format=ndjson`` with body
``{"query": sql}``); endpoint and auth headers are injected by the caller.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Iterable, Iterator, Protocol, Union

import httpx

from querycopilot.core.errors import QueryCancelled, QueryTimeout, TransportError
from querycopilot.core.logging import get_logger

logger = get_logger(__name__)

_MAX_ERROR_BODY = 2000


# ── Cancellation ─────────────────────────────────────────


class CancellationToken:
    """Caller-owned, thread-safe cancellation signal.

    Callbacks registered with ``add_callback`` run once, on the cancelling
    thread; a callback added after cancellation runs immediately.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("Cancellation callback failed -- continuing")

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise QueryCancelled("Query was cancelled")


# ── Protocol ─────────────────────────────────────────────


class QueryTransport(Protocol):
    def send(
        self,
        sql: str,
        database: str,
        *,
        timeout: float,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[Union[str, bytes]]:
        """Submit *sql* and yield the NDJSON response lines."""
        ...


# ── httpx implementation ─────────────────────────────────


def _byte_lines(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Split a byte stream on ``\\n``.  Decoding is left to the parser."""
    buffer = b""
    for chunk in chunks:
        buffer += chunk
        *lines, buffer = buffer.split(b"\n")
        yield from lines
    if buffer:
        yield buffer


class HttpQueryTransport:
    """Streams query results over HTTP with httpx.

    Parameters
    ----------
    base_url : str
        Full query endpoint, e.g. ``http://localhost:7971/query``.
    client : httpx.Client, optional
        Injected client (connection pool, auth, tests' ``MockTransport``).
    headers : dict, optional
        Extra request headers.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.Client | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url
        self.client = client or httpx.Client()
        self.headers = {"Content-Type": "application/json", **(headers or {})}

    def send(
        self,
        sql: str,
        database: str,
        *,
        timeout: float,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[bytes]:
        token = cancel_token or CancellationToken()
        token.raise_if_cancelled()
        deadline = time.monotonic() + timeout

        logger.info("POST %s db=%s", self.base_url, database)
        try:
            with self.client.stream(
                "POST",
                self.base_url,
                params={"db": database, "format": "ndjson"},
                json={"query": sql},
                headers=self.headers,
                timeout=timeout,
            ) as response:
                token.add_callback(response.close)
                try:
                    if not response.is_success:
                        body = response.read().decode("utf-8", errors="replace")
                        raise TransportError(
                            f"Query backend returned HTTP {response.status_code}",
                            status_code=response.status_code,
                            detail=body[:_MAX_ERROR_BODY],
                        )
                    for line in _byte_lines(response.iter_bytes()):
                        token.raise_if_cancelled()
                        if time.monotonic() > deadline:
                            raise QueryTimeout(f"Query exceeded the {timeout:g}s timeout")
                        yield line
                    token.raise_if_cancelled()
                finally:
                    token.remove_callback(response.close)
        except httpx.TimeoutException as exc:
            raise QueryTimeout(f"Query exceeded the {timeout:g}s timeout") from exc
        except httpx.HTTPError as exc:
            if token.cancelled:
                raise QueryCancelled("Query was cancelled") from exc
            raise TransportError(f"Query backend unreachable: {exc}", detail=repr(exc)) from exc
        except httpx.StreamError as exc:
            if token.cancelled:
                raise QueryCancelled("Query was cancelled") from exc
            raise TransportError(f"Response stream failed: {exc}", detail=repr(exc)) from exc
