"""
Shared fixtures: an in-memory query transport and executors built on it.
"""
import datetime

import pytest

from querycopilot.execution.executor import QueryExecutor
from querycopilot.templating.macros import MacroContext
from querycopilot.templating.time_range import RelativeTimeRange
from querycopilot.templating.time_units import TimeColumn

NOW = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)


class FakeTransport:
    """Yields a canned NDJSON body; can fail or cancel on demand.

    ``failures`` is a list of exceptions raised by successive calls before
    the body is served.  ``cancel_after`` cancels the caller's token after
    that many lines.
    """

    def __init__(self, body="", failures=None, cancel_after=None):
        self.body = body
        self.failures = list(failures or [])
        self.cancel_after = cancel_after
        self.calls = []
        self.closed = False

    def send(self, sql, database, *, timeout, cancel_token=None):
        self.calls.append({"sql": sql, "database": database, "timeout": timeout})
        if self.failures:
            raise self.failures.pop(0)
        return self._lines(cancel_token)

    def _lines(self, cancel_token):
        try:
            for i, line in enumerate(self.body.split("\n"), start=1):
                yield line
                if self.cancel_after is not None and i >= self.cancel_after and cancel_token:
                    cancel_token.cancel()
        finally:
            self.closed = True


@pytest.fixture
def context():
    return MacroContext(
        database="metrics",
        time_range=RelativeTimeRange("now-1h", "now"),
        time_column=TimeColumn("ts", time_unit="ms"),
        now=NOW,
    )


@pytest.fixture
def make_executor():
    def _make(body="", failures=None, cancel_after=None, max_records=None, timeout=30.0):
        transport = FakeTransport(body, failures=failures, cancel_after=cancel_after)
        return QueryExecutor(transport, timeout=timeout, max_records=max_records), transport
    return _make
