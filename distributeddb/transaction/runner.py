"""
Retry loop for read-write transactions.

Runs a caller-supplied function inside a transaction, retrying it from
scratch on a fresh TransactionContext whenever the server aborts the
attempt.
"""

import time
from typing import Callable, Optional, TypeVar

from distributeddb.data.options import CallOptions
from distributeddb.errors import (
    AbortedError,
    SessionNotFoundError,
    TransactionStateError,
    is_cancellation,
)
from distributeddb.service.rpc import CommitResponse, DatabaseRpc
from distributeddb.service.session import Session, SessionProvider
from distributeddb.transaction.cancellation import CancellationToken
from distributeddb.transaction.context import TransactionContext
from distributeddb.transaction.retry import BackoffCalculator, RetrySettings
from distributeddb.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class TransactionRunner:
    """
    Runs a function in a read-write transaction, retrying aborts.

    The function may be invoked several times, once per attempt. It must not
    have side effects outside the transaction: anything it does besides
    calling the context is repeated on every retry.

    Example:
        runner = client.read_write_transaction(exclude_txn_from_change_streams())
        row_count = runner.run(lambda txn: txn.execute_update(statement))
        print(runner.commit_response.commit_timestamp)
    """

    def __init__(
        self,
        session_provider: SessionProvider,
        rpc: DatabaseRpc,
        options: Optional[CallOptions] = None,
        retry_settings: Optional[RetrySettings] = None,
        cancellation: Optional[CancellationToken] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize transaction runner.

        Args:
            session_provider: Source of the session for the transaction
            rpc: Remote RPC
            options: Options sent with every commit attempt
            retry_settings: Backoff and elapsed-time budget
            cancellation: Caller's cancellation token
            sleep: Sleep function used for backoff without a token
            clock: Monotonic clock in seconds
        """
        self.options = CallOptions.coerce(options)
        self.retry_settings = retry_settings or RetrySettings()

        self._session_provider = session_provider
        self._rpc = rpc
        self._cancellation = cancellation
        self._sleep = sleep
        self._clock = clock
        self._backoff = BackoffCalculator(self.retry_settings)

        self._session: Optional[Session] = None
        self._used = False
        self._attempts = 0
        self._commit_response: Optional[CommitResponse] = None

    @property
    def attempts(self) -> int:
        """Number of attempts made so far."""
        return self._attempts

    @property
    def commit_response(self) -> Optional[CommitResponse]:
        """Commit response of the successful attempt, once run() returned."""
        return self._commit_response

    def run(self, work: Callable[[TransactionContext], T]) -> T:
        """
        Run work in a transaction until it commits.

        Args:
            work: Function receiving the attempt's TransactionContext

        Returns:
            Return value of the attempt that committed

        Raises:
            AbortedError: If attempts kept aborting past the retry budget
            CancelledError: If the caller cancelled
            DeadlineExceededError: If the caller's deadline passed
            DatabaseError: Any non-retryable error, unchanged
        """
        if self._used:
            raise TransactionStateError("A TransactionRunner can only be run once")
        self._used = True

        self._check_cancelled()

        self._session = self._session_provider.acquire()
        try:
            return self._run_attempts(work)
        finally:
            if self._session is not None:
                self._session_provider.release(self._session)
                self._session = None

    def _run_attempts(self, work: Callable[[TransactionContext], T]) -> T:
        start = self._clock()
        attempt = 0
        renewals = 0

        while True:
            self._check_cancelled()
            self._attempts = attempt + 1

            context = TransactionContext(
                self._session,
                self._rpc,
                attempt=attempt,
                cancellation=self._cancellation,
            )

            try:
                result = self._run_once(work, context)
            except AbortedError as e:
                context.discard()
                delay_ms = self._backoff.delay_ms(attempt, e)
                elapsed_ms = (self._clock() - start) * 1000

                if elapsed_ms + delay_ms > self.retry_settings.total_timeout_ms:
                    logger.error(
                        "Transaction aborted, retry budget exhausted",
                        attempts=attempt + 1,
                        elapsed_ms=int(elapsed_ms),
                        error=str(e),
                    )
                    raise

                logger.warning(
                    "Transaction aborted, retrying",
                    attempt=attempt,
                    backoff_ms=delay_ms,
                    error=str(e),
                )
                self._backoff_sleep(delay_ms)
                attempt += 1
                continue

            except SessionNotFoundError as e:
                context.discard()
                # First renewal is immediate, repeated ones back off.
                delay_ms = self._backoff.delay_ms(renewals) if renewals else 0
                elapsed_ms = (self._clock() - start) * 1000
                if elapsed_ms + delay_ms > self.retry_settings.total_timeout_ms:
                    logger.error(
                        "Session lost, retry budget exhausted",
                        renewals=renewals,
                        elapsed_ms=int(elapsed_ms),
                        error=str(e),
                    )
                    raise

                logger.warning(
                    "Session expired, retrying on a new session",
                    session=self._session.name,
                    attempt=attempt,
                    backoff_ms=delay_ms,
                    error=str(e),
                )
                self._renew_session()
                renewals += 1
                if delay_ms:
                    self._backoff_sleep(delay_ms)
                attempt += 1
                continue

            except Exception as e:
                if is_cancellation(e):
                    context.discard()
                else:
                    context.rollback()
                logger.error(
                    "Transaction failed with non-retryable error",
                    attempt=attempt,
                    error=str(e),
                )
                raise

            if attempt > 0:
                logger.info(
                    "Transaction succeeded after retry",
                    attempts=attempt + 1,
                )
            return result

    def _run_once(self, work: Callable[[TransactionContext], T], context: TransactionContext) -> T:
        context.begin()
        result = work(context)

        # The work function may have swallowed an abort raised by the context.
        if context.is_aborted:
            raise context.abort_error

        self._commit_response = context.commit(self.options)
        return result

    def _renew_session(self) -> None:
        expired, self._session = self._session, None
        self._session_provider.release(expired, invalid=True)
        self._session = self._session_provider.acquire()

    def _backoff_sleep(self, delay_ms: int) -> None:
        seconds = delay_ms / 1000.0
        if self._cancellation is None:
            self._sleep(seconds)
            return

        self._cancellation.wait(seconds)
        self._check_cancelled()

    def _check_cancelled(self) -> None:
        if self._cancellation is not None:
            self._cancellation.raise_if_cancelled()
