"""
Non-interactive write paths.

- write: mutations applied in a retried read-write transaction
- write_at_least_once: one single-use commit, no abort retry
- batch_write_at_least_once: independent mutation groups, streamed results
- execute_partitioned_update: server-partitioned bulk DML

Every path sends the caller's CallOptions with the one remote call that
finalizes it.
"""

import time
from typing import Callable, Iterable, List, Optional, Sequence

from distributeddb.data.mutation import Mutation, MutationGroup
from distributeddb.data.options import CallOptions
from distributeddb.data.statement import Statement
from distributeddb.errors import (
    AmbiguousOutcomeError,
    DeadlineExceededError,
    SessionNotFoundError,
    UnavailableError,
)
from distributeddb.service.rpc import CommitResponse, DatabaseRpc
from distributeddb.service.session import SessionProvider, session_scope
from distributeddb.transaction.cancellation import CancellationToken
from distributeddb.transaction.retry import RetrySettings
from distributeddb.transaction.runner import TransactionRunner
from distributeddb.utils.logging import get_logger
from distributeddb.write.batch import BatchWriteResultStream

logger = get_logger(__name__)

# Errors after which an at-least-once commit may or may not have been applied.
AMBIGUOUS_ERRORS = (UnavailableError, DeadlineExceededError, ConnectionError)


def _as_mutation_list(mutations: Iterable[Mutation]) -> List[Mutation]:
    if isinstance(mutations, Mutation):
        mutations = [mutations]

    batch = list(mutations)
    if not batch:
        raise ValueError("At least one mutation is required")

    for mutation in batch:
        if not isinstance(mutation, Mutation):
            raise TypeError(f"Expected Mutation, got {type(mutation).__name__}")
    return batch


class WriteExecutor:
    """
    Executes writes that need no caller logic between statements.
    """

    def __init__(
        self,
        session_provider: SessionProvider,
        rpc: DatabaseRpc,
        retry_settings: Optional[RetrySettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize write executor.

        Args:
            session_provider: Source of sessions
            rpc: Remote RPC
            retry_settings: Retry settings for transactional writes
            sleep: Sleep function used for backoff
            clock: Monotonic clock in seconds
        """
        self._session_provider = session_provider
        self._rpc = rpc
        self._retry_settings = retry_settings or RetrySettings()
        self._sleep = sleep
        self._clock = clock

    def write(
        self,
        mutations: Iterable[Mutation],
        options: Optional[CallOptions] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> CommitResponse:
        """
        Apply mutations atomically in a read-write transaction.

        Aborts are retried; the server guarantees an aborted attempt left
        no effect.

        Args:
            mutations: Mutations to apply
            options: Per-call options
            cancellation: Caller's cancellation token, checked between attempts

        Returns:
            Commit response
        """
        batch = _as_mutation_list(mutations)

        runner = TransactionRunner(
            self._session_provider,
            self._rpc,
            options=options,
            retry_settings=self._retry_settings,
            cancellation=cancellation,
            sleep=self._sleep,
            clock=self._clock,
        )
        runner.run(lambda txn: txn.buffer(batch))
        return runner.commit_response

    def write_at_least_once(
        self,
        mutations: Iterable[Mutation],
        options: Optional[CallOptions] = None,
    ) -> CommitResponse:
        """
        Apply mutations with one single-use commit and no abort retry.

        Only use this with mutations that are safe to apply more than once,
        such as insert_or_update. If the connection fails after the commit
        was sent, AmbiguousOutcomeError is raised: the mutations may or may
        not have been applied, and retrying may apply them twice.

        Args:
            mutations: Mutations to apply
            options: Per-call options

        Returns:
            Commit response

        Raises:
            AmbiguousOutcomeError: If the outcome of the commit is unknown
        """
        batch = _as_mutation_list(mutations)
        options = CallOptions.coerce(options)

        non_idempotent = [m.operation.value for m in batch if not m.is_idempotent()]
        if non_idempotent:
            logger.debug(
                "At-least-once write contains non-idempotent mutations",
                operations=sorted(set(non_idempotent)),
            )

        with session_scope(self._session_provider) as session:
            try:
                response = self._rpc.commit(session, None, tuple(batch), options)
            except AMBIGUOUS_ERRORS as e:
                logger.error(
                    "At-least-once write outcome unknown",
                    session=session.name,
                    mutations=len(batch),
                    error=str(e),
                )
                code = getattr(e, "code", None)
                raise AmbiguousOutcomeError(
                    f"Write may or may not have been applied: {e}",
                    code=code if code is not None else UnavailableError.code,
                ) from e

        logger.info(
            "At-least-once write committed",
            mutations=len(batch),
            commit_timestamp=response.commit_timestamp.isoformat(),
            exclude_txn_from_change_streams=options.exclude_txn_from_change_streams,
        )
        return response

    def batch_write_at_least_once(
        self,
        groups: Sequence[MutationGroup],
        options: Optional[CallOptions] = None,
    ) -> BatchWriteResultStream:
        """
        Apply mutation groups independently of each other.

        Each group is applied atomically, but groups are not atomic with
        respect to each other and a group may be applied more than once.
        The options apply to every group.

        Args:
            groups: Mutation groups, indexed by position in results
            options: Per-call options

        Returns:
            Lazy stream of per-group results in completion order

        The stream holds a session until it is exhausted or closed. Use it
        in a with-statement when it may not be read to the end.
        """
        groups = list(groups)
        if not groups:
            raise ValueError("At least one mutation group is required")

        for group in groups:
            if not isinstance(group, MutationGroup):
                raise TypeError(f"Expected MutationGroup, got {type(group).__name__}")

        options = CallOptions.coerce(options)
        session = self._session_provider.acquire()

        try:
            responses = self._rpc.batch_write(session, tuple(groups), options)
        except SessionNotFoundError:
            self._session_provider.release(session, invalid=True)
            raise
        except Exception:
            self._session_provider.release(session)
            raise

        logger.info(
            "Batch write started",
            session=session.name,
            groups=len(groups),
            exclude_txn_from_change_streams=options.exclude_txn_from_change_streams,
        )

        stream: Optional[BatchWriteResultStream] = None

        def release() -> None:
            invalid = stream is not None and isinstance(stream.error, SessionNotFoundError)
            self._session_provider.release(session, invalid=invalid)

        stream = BatchWriteResultStream(iter(responses), len(groups), on_close=release)
        return stream

    def execute_partitioned_update(
        self,
        statement: Statement,
        options: Optional[CallOptions] = None,
    ) -> int:
        """
        Execute partitioned DML.

        The server splits the statement into partitions and runs each in
        its own transaction. If the call fails, some partitions may already
        have been updated: the statement must be idempotent, and no retry
        happens here.

        Args:
            statement: UPDATE or DELETE statement
            options: Per-call options

        Returns:
            Lower bound of the number of modified rows
        """
        if not isinstance(statement, Statement):
            raise TypeError(f"Expected Statement, got {type(statement).__name__}")

        options = CallOptions.coerce(options)

        with session_scope(self._session_provider) as session:
            try:
                row_count = self._rpc.execute_partitioned_dml(session, statement, options)
            except Exception as e:
                logger.error(
                    "Partitioned update failed, partitions may be partially applied",
                    session=session.name,
                    error=str(e),
                )
                raise

        logger.info(
            "Partitioned update executed",
            row_count_lower_bound=row_count,
            exclude_txn_from_change_streams=options.exclude_txn_from_change_streams,
        )
        return row_count
