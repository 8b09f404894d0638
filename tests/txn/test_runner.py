"""
Tests for the read-write transaction retry loop.
"""

import pytest

from distributeddb.data import Mutation, Statement, exclude_txn_from_change_streams
from distributeddb.errors import (
    AbortedError,
    AlreadyExistsError,
    CancelledError,
    DeadlineExceededError,
    SessionNotFoundError,
    TransactionStateError,
)
from distributeddb.transaction import (
    CancellationToken,
    RetrySettings,
    TransactionRunner,
)


class FakeClock:
    """Clock advanced by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_runner(rpc, sessions, clock=None, **kwargs):
    clock = clock or FakeClock()
    kwargs.setdefault("retry_settings", RetrySettings(initial_backoff_ms=10, jitter_ms=0))
    return TransactionRunner(sessions, rpc, sleep=clock.sleep, clock=clock, **kwargs)


class TestTransactionRunner:
    """Test TransactionRunner."""

    def test_commits_on_first_attempt(self, rpc, sessions):
        """Test a transaction without conflicts commits once."""
        runner = make_runner(rpc, sessions)

        result = runner.run(lambda txn: txn.execute_update(Statement.of("DELETE FROM Singers WHERE TRUE")))

        assert result == 1
        assert runner.attempts == 1
        assert runner.commit_response is not None
        assert len(rpc.calls_to("commit")) == 1

    def test_retries_aborted_commits(self, rpc, sessions):
        """Test N aborts lead to N+1 invocations and one commit response."""
        aborts = 3
        rpc.commit_errors.extend(AbortedError("conflict") for _ in range(aborts))
        runner = make_runner(rpc, sessions)
        invocations = []

        def work(txn):
            invocations.append(txn.attempt)
            txn.buffer(Mutation.insert_or_update("Singers", {"SingerId": 1}))
            return f"attempt-{txn.attempt}"

        result = runner.run(work)

        assert invocations == [0, 1, 2, 3]
        assert result == "attempt-3"
        assert runner.attempts == aborts + 1
        assert len(rpc.calls_to("commit")) == aborts + 1
        assert runner.commit_response.commit_timestamp is not None

    def test_fresh_attempt_starts_with_empty_buffer(self, rpc, sessions):
        """Test mutations buffered in an aborted attempt are dropped."""
        rpc.commit_errors.append(AbortedError("conflict"))
        runner = make_runner(rpc, sessions)
        buffered_at_start = []

        def work(txn):
            buffered_at_start.append(txn.mutations)
            txn.buffer(Mutation.insert("Singers", {"SingerId": txn.attempt}))

        runner.run(work)

        assert buffered_at_start == [(), ()]
        committed = rpc.calls_to("commit")[-1].kwargs["mutations"]
        assert committed == (Mutation.insert("Singers", {"SingerId": 1}),)

    def test_each_attempt_gets_new_transaction(self, rpc, sessions):
        """Test retries begin a new transaction."""
        rpc.commit_errors.append(AbortedError("conflict"))
        runner = make_runner(rpc, sessions)

        runner.run(lambda txn: None)

        ids = [c.kwargs["transaction_id"] for c in rpc.calls_to("commit")]
        assert len(set(ids)) == 2

    def test_retries_abort_from_statement(self, rpc, sessions):
        """Test aborts raised by DML inside work are retried."""
        rpc.update_errors.append(AbortedError("conflict"))
        runner = make_runner(rpc, sessions)

        runner.run(lambda txn: txn.execute_update(Statement.of("DELETE FROM Singers WHERE TRUE")))

        assert runner.attempts == 2
        assert len(rpc.calls_to("commit")) == 1

    def test_swallowed_abort_still_retried(self, rpc, sessions):
        """Test an abort caught by work still triggers a retry."""
        rpc.update_errors.append(AbortedError("conflict"))
        runner = make_runner(rpc, sessions)

        def work(txn):
            try:
                txn.execute_update(Statement.of("DELETE FROM Singers WHERE TRUE"))
            except AbortedError:
                pass

        runner.run(work)

        assert runner.attempts == 2
        assert len(rpc.calls_to("commit")) == 1

    def test_backoff_grows_exponentially(self, rpc, sessions):
        """Test backoff doubles between attempts."""
        rpc.commit_errors.extend(AbortedError("conflict") for _ in range(3))
        clock = FakeClock()
        runner = make_runner(rpc, sessions, clock=clock)

        runner.run(lambda txn: None)

        assert clock.sleeps == [0.01, 0.02, 0.04]

    def test_server_retry_delay_used(self, rpc, sessions):
        """Test the server's retry hint replaces computed backoff."""
        rpc.commit_errors.append(AbortedError("conflict", retry_delay_ms=250))
        clock = FakeClock()
        runner = make_runner(rpc, sessions, clock=clock)

        runner.run(lambda txn: None)

        assert clock.sleeps == [0.25]

    def test_retry_budget_exhausted(self, rpc, sessions):
        """Test the last abort surfaces once the budget is spent."""
        rpc.commit_errors.extend(AbortedError(f"conflict {i}") for i in range(100))
        settings = RetrySettings(
            initial_backoff_ms=100,
            max_backoff_ms=100,
            jitter_ms=0,
            total_timeout_ms=950,
        )
        runner = make_runner(rpc, sessions, retry_settings=settings)

        with pytest.raises(AbortedError):
            runner.run(lambda txn: None)

        assert runner.attempts == 10
        assert runner.commit_response is None
        assert sessions.release_count(sessions.acquired[0]) == 1

    def test_non_retryable_error_surfaces_immediately(self, rpc, sessions):
        """Test constraint violations are not retried."""
        rpc.commit_errors.append(AlreadyExistsError("row exists"))
        runner = make_runner(rpc, sessions)
        invocations = []

        def work(txn):
            invocations.append(txn.attempt)
            txn.buffer(Mutation.insert("Singers", {"SingerId": 1}))

        with pytest.raises(AlreadyExistsError):
            runner.run(work)

        assert invocations == [0]

    def test_user_error_rolls_back(self, rpc, sessions):
        """Test errors raised by work roll back and propagate unchanged."""
        runner = make_runner(rpc, sessions)

        def work(txn):
            txn.buffer(Mutation.insert("Singers", {"SingerId": 1}))
            raise KeyError("missing")

        with pytest.raises(KeyError):
            runner.run(work)

        assert rpc.calls_to("commit") == []
        assert len(rpc.calls_to("rollback")) == 1

    def test_user_error_kept_when_rollback_fails(self, rpc, sessions):
        """Test a failed rollback does not replace the error raised by work."""
        rpc.rollback_error = ConnectionError("socket closed")
        runner = make_runner(rpc, sessions)

        def work(txn):
            raise KeyError("missing")

        with pytest.raises(KeyError):
            runner.run(work)

        assert len(rpc.calls_to("rollback")) == 1
        assert sessions.release_count(sessions.acquired[0]) == 1

    def test_options_sent_with_every_commit(self, rpc, sessions):
        """Test the runner's options reach each commit attempt."""
        rpc.commit_errors.append(AbortedError("conflict"))
        runner = make_runner(rpc, sessions, options=exclude_txn_from_change_streams())

        runner.run(lambda txn: None)

        for call in rpc.calls_to("commit"):
            assert call.kwargs["options"].exclude_txn_from_change_streams is True
        assert rpc.calls_to("begin_transaction")[0].kwargs.get("options") is None

    def test_session_released_once(self, rpc, sessions):
        """Test the session is returned exactly once after retries."""
        rpc.commit_errors.extend([AbortedError("conflict"), AbortedError("conflict")])
        runner = make_runner(rpc, sessions)

        runner.run(lambda txn: None)

        assert len(sessions.acquired) == 1
        assert sessions.release_count(sessions.acquired[0]) == 1

    def test_session_not_found_renews_session(self, rpc, sessions):
        """Test an expired session is replaced and the attempt retried."""
        rpc.begin_errors.append(SessionNotFoundError("Session not found"))
        runner = make_runner(rpc, sessions)

        runner.run(lambda txn: None)

        assert len(sessions.acquired) == 2
        assert sessions.released == [
            (sessions.acquired[0], True),
            (sessions.acquired[1], False),
        ]
        assert rpc.calls_to("commit")[0].kwargs["session"] == sessions.acquired[1]

    def test_repeated_session_loss_backs_off(self, rpc, sessions):
        """Test renewals after the first one wait before retrying."""
        rpc.begin_errors.extend(SessionNotFoundError("Session not found") for _ in range(3))
        clock = FakeClock()
        runner = make_runner(rpc, sessions, clock=clock)

        runner.run(lambda txn: None)

        assert clock.sleeps == [0.02, 0.04]
        assert runner.attempts == 4
        assert sessions.outstanding() == []

    def test_session_loss_bounded_by_budget(self, rpc, sessions):
        """Test a server that keeps losing sessions exhausts the budget."""
        rpc.begin_errors.extend(SessionNotFoundError("Session not found") for _ in range(100))
        settings = RetrySettings(
            initial_backoff_ms=100,
            max_backoff_ms=100,
            jitter_ms=0,
            total_timeout_ms=950,
        )
        clock = FakeClock()
        runner = make_runner(rpc, sessions, clock=clock, retry_settings=settings)

        with pytest.raises(SessionNotFoundError):
            runner.run(lambda txn: None)

        assert clock.sleeps
        assert clock.now <= 0.95
        assert len(sessions.acquired) < 100
        assert sessions.outstanding() == []

    def test_runner_single_use(self, rpc, sessions):
        """Test a runner cannot be run twice."""
        runner = make_runner(rpc, sessions)
        runner.run(lambda txn: None)

        with pytest.raises(TransactionStateError):
            runner.run(lambda txn: None)


class TestRunnerCancellation:
    """Test cancellation and deadlines in the retry loop."""

    def test_cancelled_before_start(self, rpc, sessions):
        """Test a cancelled token prevents any remote call."""
        token = CancellationToken()
        token.cancel()
        runner = make_runner(rpc, sessions, cancellation=token)

        with pytest.raises(CancelledError):
            runner.run(lambda txn: None)

        assert rpc.calls == []
        assert sessions.acquired == []

    def test_cancel_during_work_stops_retries(self, rpc, sessions):
        """Test cancelling mid-attempt surfaces without more calls."""
        token = CancellationToken()
        rpc.commit_errors.append(AbortedError("conflict"))
        runner = make_runner(rpc, sessions, cancellation=token)

        def work(txn):
            if txn.attempt == 0:
                token.cancel()

        with pytest.raises(CancelledError):
            runner.run(work)

        assert rpc.calls_to("commit") == []
        assert rpc.calls_to("rollback") == []
        assert sessions.release_count(sessions.acquired[0]) == 1

    def test_deadline_exceeded(self, rpc, sessions):
        """Test an expired deadline surfaces as DeadlineExceededError."""
        clock = FakeClock()
        token = CancellationToken(deadline=5.0, clock=clock)
        rpc.commit_errors.append(AbortedError("conflict"))
        runner = make_runner(rpc, sessions, clock=clock, cancellation=token)

        def work(txn):
            clock.now = 10.0

        with pytest.raises(DeadlineExceededError):
            runner.run(work)

        assert rpc.calls_to("commit") == []
