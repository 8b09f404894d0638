"""
Single-attempt transaction state.

A TransactionContext belongs to exactly one attempt of one transaction. It
buffers mutations, runs DML through the session, and is finished once the
attempt commits, aborts, fails or rolls back. Retries always get a new
context.
"""

from typing import Iterable, List, Optional, Sequence, Tuple, Union

from distributeddb.data.mutation import Mutation
from distributeddb.data.options import CallOptions
from distributeddb.data.statement import Statement
from distributeddb.errors import (
    AbortedError,
    DatabaseError,
    TransactionStateError,
)
from distributeddb.service.rpc import CommitResponse, DatabaseRpc
from distributeddb.service.session import Session
from distributeddb.transaction.cancellation import CancellationToken
from distributeddb.utils.logging import get_logger

logger = get_logger(__name__)


class TransactionContext:
    """
    Mutable state of one transaction attempt.

    Example:
        def work(txn):
            txn.execute_update(Statement.of("UPDATE Singers SET FirstName = 'Hi' WHERE SingerId = 111"))
            txn.buffer(Mutation.insert_or_update("Singers", {"SingerId": 888}))
    """

    def __init__(
        self,
        session: Session,
        rpc: DatabaseRpc,
        attempt: int = 0,
        cancellation: Optional[CancellationToken] = None,
    ):
        """
        Initialize transaction context.

        Args:
            session: Session the attempt runs on
            rpc: Remote RPC
            attempt: Attempt number within the logical transaction (0-indexed)
            cancellation: Caller's cancellation token
        """
        self.session = session
        self.attempt = attempt

        self._rpc = rpc
        self._cancellation = cancellation
        self._transaction_id: Optional[bytes] = None
        self._mutations: List[Mutation] = []
        self._seqno = 0
        self._finished = False
        self._abort_error: Optional[AbortedError] = None

    @property
    def transaction_id(self) -> Optional[bytes]:
        return self._transaction_id

    @property
    def mutations(self) -> Tuple[Mutation, ...]:
        """Snapshot of the buffered mutations, in buffering order."""
        return tuple(self._mutations)

    @property
    def is_aborted(self) -> bool:
        return self._abort_error is not None

    @property
    def abort_error(self) -> Optional[AbortedError]:
        return self._abort_error

    @property
    def finished(self) -> bool:
        return self._finished

    def _check_usable(self, operation: str) -> None:
        if self._finished:
            raise TransactionStateError(
                f"Cannot {operation}: transaction attempt {self.attempt} has finished"
            )
        if self._abort_error is not None:
            raise TransactionStateError(
                f"Cannot {operation}: transaction attempt {self.attempt} was aborted"
            )

    def _timeout(self) -> Optional[float]:
        if self._cancellation is None:
            return None
        self._cancellation.raise_if_cancelled()
        return self._cancellation.remaining()

    def _record_failure(self, error: DatabaseError) -> None:
        if isinstance(error, AbortedError):
            self._abort_error = error
            self._mutations.clear()
            logger.info(
                "Transaction attempt aborted",
                session=self.session.name,
                attempt=self.attempt,
                error=str(error),
            )

    def begin(self) -> bytes:
        """
        Begin the transaction on the server.

        Returns:
            Transaction id
        """
        self._check_usable("begin")
        if self._transaction_id is not None:
            raise TransactionStateError("Transaction already begun")

        try:
            self._transaction_id = self._rpc.begin_transaction(
                self.session, timeout=self._timeout()
            )
        except DatabaseError as e:
            self._record_failure(e)
            raise

        logger.debug(
            "Transaction begun",
            session=self.session.name,
            attempt=self.attempt,
        )
        return self._transaction_id

    def buffer(self, mutations: Union[Mutation, Iterable[Mutation]]) -> None:
        """
        Buffer one or more mutations to be applied at commit.

        Args:
            mutations: A mutation or an iterable of mutations
        """
        self._check_usable("buffer mutations")

        if isinstance(mutations, Mutation):
            mutations = [mutations]

        batch = list(mutations)
        for mutation in batch:
            if not isinstance(mutation, Mutation):
                raise TypeError(f"Expected Mutation, got {type(mutation).__name__}")

        self._mutations.extend(batch)

    def execute_update(self, statement: Statement) -> int:
        """
        Execute a DML statement inside the transaction.

        Args:
            statement: DML statement

        Returns:
            Number of modified rows
        """
        self._check_usable("execute update")
        self._ensure_begun()

        seqno = self._next_seqno()
        try:
            row_count = self._rpc.execute_update(
                self.session,
                self._transaction_id,
                statement,
                seqno,
                timeout=self._timeout(),
            )
        except DatabaseError as e:
            self._record_failure(e)
            raise

        logger.debug(
            "Statement executed",
            attempt=self.attempt,
            seqno=seqno,
            row_count=row_count,
        )
        return row_count

    def batch_update(self, statements: Sequence[Statement]) -> List[int]:
        """
        Execute DML statements in order inside the transaction.

        Args:
            statements: DML statements

        Returns:
            Modified row count per statement
        """
        self._check_usable("execute batch update")
        if not statements:
            raise ValueError("batch_update needs at least one statement")

        self._ensure_begun()

        seqno = self._next_seqno()
        try:
            row_counts = self._rpc.execute_batch_update(
                self.session,
                self._transaction_id,
                list(statements),
                seqno,
                timeout=self._timeout(),
            )
        except DatabaseError as e:
            self._record_failure(e)
            raise

        return list(row_counts)

    def commit(self, options: Optional[CallOptions] = None) -> CommitResponse:
        """
        Commit the buffered mutations and any executed DML.

        The options are sent with this single commit call and nowhere else.

        Args:
            options: Per-call options

        Returns:
            Commit response

        Raises:
            AbortedError: If the server detected a conflict
        """
        self._check_usable("commit")
        self._ensure_begun()

        options = CallOptions.coerce(options)
        mutations = tuple(self._mutations)

        try:
            response = self._rpc.commit(
                self.session,
                self._transaction_id,
                mutations,
                options,
                timeout=self._timeout(),
            )
        except DatabaseError as e:
            self._record_failure(e)
            self._finish()
            raise

        self._finish()

        logger.info(
            "Transaction committed",
            session=self.session.name,
            attempt=self.attempt,
            mutations=len(mutations),
            commit_timestamp=response.commit_timestamp.isoformat(),
            exclude_txn_from_change_streams=options.exclude_txn_from_change_streams,
        )
        return response

    def rollback(self) -> None:
        """
        Roll back the attempt, best effort.

        The local attempt is finished even if the server cannot be told.
        Cancellation is never sent to the server.
        """
        if self._finished:
            return

        transaction_id = self._transaction_id
        self._finish()

        if transaction_id is None:
            return

        if self._cancellation is not None and (
            self._cancellation.cancelled or self._cancellation.expired
        ):
            logger.debug("Skipping rollback of cancelled attempt", attempt=self.attempt)
            return

        try:
            self._rpc.rollback(self.session, transaction_id, timeout=self._timeout())
        except Exception as e:
            logger.warning(
                "Rollback failed, server will expire the transaction",
                session=self.session.name,
                attempt=self.attempt,
                error=str(e),
            )
            return

        logger.debug("Transaction rolled back", attempt=self.attempt)

    def discard(self) -> None:
        """Drop buffered state without contacting the server."""
        self._finish()

    def _ensure_begun(self) -> None:
        if self._transaction_id is None:
            self.begin()

    def _next_seqno(self) -> int:
        seqno = self._seqno
        self._seqno += 1
        return seqno

    def _finish(self) -> None:
        self._finished = True
        self._mutations.clear()
