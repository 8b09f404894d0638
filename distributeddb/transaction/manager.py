"""
Explicit transaction control.

For callers that cannot express their transaction as a single retryable
function. The caller drives begin/commit/rollback and decides whether to
retry an aborted attempt.

```
with client.transaction_manager(exclude_txn_from_change_streams()) as manager:
    txn = manager.begin()
    while True:
        txn.buffer(mutation)
        try:
            manager.commit()
            break
        except AbortedError:
            txn = manager.reset_for_retry()
```
"""

from typing import Optional

from distributeddb.data.options import CallOptions
from distributeddb.errors import AbortedError, TransactionStateError
from distributeddb.service.rpc import CommitResponse, DatabaseRpc
from distributeddb.service.session import Session, SessionProvider
from distributeddb.transaction.context import TransactionContext
from distributeddb.transaction.state import TransactionManagerState
from distributeddb.utils.logging import get_logger

logger = get_logger(__name__)


class TransactionManager:
    """
    State machine over a sequence of transaction attempts on one session.

    The manager owns its session for its whole lifetime and releases it
    exactly once in close(), which the with-statement calls on every exit
    path.
    """

    def __init__(
        self,
        session_provider: SessionProvider,
        session: Session,
        rpc: DatabaseRpc,
        options: Optional[CallOptions] = None,
    ):
        """
        Initialize transaction manager.

        Args:
            session_provider: Provider the session is returned to
            session: Session owned by this manager
            rpc: Remote RPC
            options: Options sent with every commit
        """
        self.options = CallOptions.coerce(options)

        self._session_provider = session_provider
        self._session = session
        self._rpc = rpc
        self._state = TransactionManagerState.CREATED
        self._context: Optional[TransactionContext] = None
        self._attempt = -1
        self._closed = False
        self._commit_response: Optional[CommitResponse] = None

        logger.debug("TransactionManager created", session=session.name)

    @property
    def state(self) -> TransactionManagerState:
        return self._state

    @property
    def commit_response(self) -> Optional[CommitResponse]:
        return self._commit_response

    @property
    def context(self) -> Optional[TransactionContext]:
        """Context of the current attempt."""
        return self._context

    def _transition(self, new_state: TransactionManagerState) -> None:
        if not self._state.can_transition_to(new_state):
            raise TransactionStateError(
                f"Invalid state transition: {self._state.value} → {new_state.value}"
            )

        old_state = self._state
        self._state = new_state

        logger.debug(
            "TransactionManager state updated",
            session=self._session.name,
            old_state=old_state.value,
            new_state=new_state.value,
        )

    def _require(self, operation: str, *states: TransactionManagerState) -> None:
        if self._closed:
            raise TransactionStateError(f"Cannot {operation}: transaction manager is closed")

        if self._state not in states:
            allowed = ", ".join(s.value for s in states)
            raise TransactionStateError(
                f"Cannot {operation} in state {self._state.value} (requires {allowed})"
            )

    def begin(self) -> TransactionContext:
        """
        Start a new attempt.

        Valid before the first attempt and after an aborted one. Mutations
        buffered in an earlier attempt are not carried over.

        Returns:
            Context of the new attempt
        """
        self._require("begin", TransactionManagerState.CREATED, TransactionManagerState.ABORTED)
        return self._start_attempt()

    def reset_for_retry(self) -> TransactionContext:
        """
        Start a new attempt after an abort.

        Returns:
            Context of the new attempt
        """
        self._require("reset for retry", TransactionManagerState.ABORTED)
        return self._start_attempt()

    def _start_attempt(self) -> TransactionContext:
        self._attempt += 1
        context = TransactionContext(self._session, self._rpc, attempt=self._attempt)
        self._context = context

        try:
            context.begin()
        except AbortedError:
            if self._state is not TransactionManagerState.ABORTED:
                self._transition(TransactionManagerState.ABORTED)
            raise
        except Exception:
            self._transition(TransactionManagerState.FAILED)
            raise

        self._transition(TransactionManagerState.STARTED)
        return context

    def commit(self) -> CommitResponse:
        """
        Commit the current attempt.

        Returns:
            Commit response

        Raises:
            AbortedError: If the attempt was aborted; call begin() or
                reset_for_retry() to try again
            TransactionStateError: If no attempt is in progress
        """
        self._require("commit", TransactionManagerState.STARTED)
        context = self._context

        if context.is_aborted:
            self._transition(TransactionManagerState.ABORTED)
            raise context.abort_error

        self._transition(TransactionManagerState.COMMITTING)

        try:
            response = context.commit(self.options)
        except AbortedError:
            self._transition(TransactionManagerState.ABORTED)
            raise
        except Exception as e:
            self._transition(TransactionManagerState.FAILED)
            logger.error(
                "Transaction commit failed",
                session=self._session.name,
                attempt=self._attempt,
                error=str(e),
            )
            raise

        self._commit_response = response
        self._transition(TransactionManagerState.COMMITTED)
        return response

    def rollback(self) -> None:
        """
        Roll back the current attempt.

        Always succeeds locally; telling the server is best effort.
        """
        self._require(
            "rollback",
            TransactionManagerState.STARTED,
            TransactionManagerState.COMMITTING,
        )

        self._transition(TransactionManagerState.ROLLED_BACK)
        self._context.rollback()

        logger.info("Transaction rolled back", session=self._session.name, attempt=self._attempt)

    def close(self) -> None:
        """
        Dispose of the manager and release its session.

        Rolls back an attempt still in progress. Safe to call more than once;
        the session is released only the first time.
        """
        if self._closed:
            return

        try:
            if self._state in (
                TransactionManagerState.STARTED,
                TransactionManagerState.COMMITTING,
            ):
                self.rollback()
            elif self._context is not None:
                self._context.discard()
        finally:
            self._closed = True
            self._session_provider.release(self._session)
            logger.debug(
                "TransactionManager closed",
                session=self._session.name,
                final_state=self._state.value,
            )

    def __enter__(self) -> "TransactionManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
