"""
Shared fakes for the session provider and remote RPC.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from distributeddb.client import DatabaseClient, DatabaseId
from distributeddb.service.rpc import (
    CommitResponse,
    CommitStats,
    DatabaseRpc,
)
from distributeddb.service.session import Session, SessionProvider
from distributeddb.transaction.retry import RetrySettings

DATABASE_ID = DatabaseId("test-project", "test-instance", "test-database")
BASE_TIMESTAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass
class RpcCall:
    """A recorded remote call."""
    method: str
    kwargs: Dict[str, Any] = field(default_factory=dict)


class FakeSessionProvider(SessionProvider):
    """Hands out numbered sessions and records every release."""

    def __init__(self):
        self.acquired: List[Session] = []
        self.released: List[tuple] = []

    def acquire(self) -> Session:
        session = Session(f"sessions/{len(self.acquired) + 1}", DATABASE_ID.name)
        self.acquired.append(session)
        return session

    def release(self, session: Session, invalid: bool = False) -> None:
        self.released.append((session, invalid))

    def release_count(self, session: Session) -> int:
        return sum(1 for released, _ in self.released if released == session)

    def outstanding(self) -> List[Session]:
        released = [s for s, _ in self.released]
        return [s for s in self.acquired if s not in released]


class FakeDatabaseRpc(DatabaseRpc):
    """
    Records calls and replays scripted failures.

    Error queues hold one entry per call: an exception to raise, or None
    to let the call succeed.
    """

    def __init__(self):
        self.calls: List[RpcCall] = []
        self.begin_errors: List[Optional[Exception]] = []
        self.update_errors: List[Optional[Exception]] = []
        self.commit_errors: List[Optional[Exception]] = []
        self.rollback_error: Optional[Exception] = None
        self.update_row_count = 1
        self.batch_responses: List[Any] = []
        self.batch_write_error: Optional[Exception] = None
        self.pdml_row_count = 0
        self.pdml_error: Optional[Exception] = None

        self._transactions = 0
        self._commits = 0
        self.batch_stream_closed = False

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append(RpcCall(method, kwargs))

    @staticmethod
    def _next_error(queue: List[Optional[Exception]]) -> None:
        if queue:
            error = queue.pop(0)
            if error is not None:
                raise error

    def calls_to(self, method: str) -> List[RpcCall]:
        return [call for call in self.calls if call.method == method]

    def calls_with_options(self) -> List[RpcCall]:
        return [call for call in self.calls if "options" in call.kwargs]

    def create_session(self, database, timeout=None):
        self._record("create_session", database=database)
        return Session(f"{database}/sessions/{len(self.calls)}", database)

    def delete_session(self, session, timeout=None):
        self._record("delete_session", session=session)

    def begin_transaction(self, session, timeout=None):
        self._record("begin_transaction", session=session, timeout=timeout)
        self._next_error(self.begin_errors)
        self._transactions += 1
        return f"txn-{self._transactions}".encode()

    def execute_update(self, session, transaction_id, statement, seqno, timeout=None):
        self._record(
            "execute_update",
            session=session,
            transaction_id=transaction_id,
            statement=statement,
            seqno=seqno,
        )
        self._next_error(self.update_errors)
        return self.update_row_count

    def execute_batch_update(self, session, transaction_id, statements, seqno, timeout=None):
        self._record(
            "execute_batch_update",
            session=session,
            transaction_id=transaction_id,
            statements=statements,
            seqno=seqno,
        )
        self._next_error(self.update_errors)
        return [self.update_row_count] * len(statements)

    def commit(self, session, transaction_id, mutations, options, timeout=None):
        self._record(
            "commit",
            session=session,
            transaction_id=transaction_id,
            mutations=tuple(mutations),
            options=options,
        )
        self._next_error(self.commit_errors)
        self._commits += 1

        stats = CommitStats(len(mutations)) if options.return_commit_stats else None
        return CommitResponse(BASE_TIMESTAMP + timedelta(seconds=self._commits), stats)

    def rollback(self, session, transaction_id, timeout=None):
        self._record("rollback", session=session, transaction_id=transaction_id)
        if self.rollback_error is not None:
            raise self.rollback_error

    def batch_write(self, session, groups, options, timeout=None):
        self._record("batch_write", session=session, groups=tuple(groups), options=options)
        if self.batch_write_error is not None:
            raise self.batch_write_error
        return self._stream()

    def _stream(self):
        try:
            for item in self.batch_responses:
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.batch_stream_closed = True

    def execute_partitioned_dml(self, session, statement, options, timeout=None):
        self._record(
            "execute_partitioned_dml",
            session=session,
            statement=statement,
            options=options,
        )
        if self.pdml_error is not None:
            raise self.pdml_error
        return self.pdml_row_count


@pytest.fixture
def rpc():
    return FakeDatabaseRpc()


@pytest.fixture
def sessions():
    return FakeSessionProvider()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry_settings():
    return RetrySettings(initial_backoff_ms=10, jitter_ms=0, total_timeout_ms=30000)


@pytest.fixture
def client(rpc, sessions, sleeps, retry_settings):
    return DatabaseClient(
        DATABASE_ID,
        rpc,
        session_provider=sessions,
        retry_settings=retry_settings,
        sleep=sleeps.append,
    )
