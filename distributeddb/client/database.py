"""
Database client facade.

Composes the transaction runner, transaction manager and write executor
over one database. Every entry point takes any number of CallOptions,
merged left to right.

Example:
    client = DatabaseClient(DatabaseId("my-project", "my-instance", "my-database"), rpc)

    client.run_in_transaction(
        lambda txn: txn.execute_update(Statement.of("UPDATE Singers SET FirstName = 'Hi' WHERE SingerId = 111")),
        exclude_txn_from_change_streams(),
    )

    client.write_at_least_once(
        [Mutation.insert_or_update("Singers", {"SingerId": 45201, "FirstName": "Laura"})],
        exclude_txn_from_change_streams(),
    )
"""

import re
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from distributeddb.data.mutation import Mutation, MutationGroup
from distributeddb.data.options import CallOptions
from distributeddb.data.statement import Statement
from distributeddb.service.rpc import CommitResponse, DatabaseRpc
from distributeddb.service.session import DirectSessionProvider, SessionProvider
from distributeddb.transaction.cancellation import CancellationToken
from distributeddb.transaction.context import TransactionContext
from distributeddb.transaction.manager import TransactionManager
from distributeddb.transaction.retry import RetrySettings
from distributeddb.transaction.runner import TransactionRunner
from distributeddb.utils.logging import get_logger
from distributeddb.write.batch import BatchWriteResultStream
from distributeddb.write.executor import WriteExecutor

logger = get_logger(__name__)

T = TypeVar('T')

_DATABASE_NAME = re.compile(
    r"^projects/(?P<project>[^/]+)/instances/(?P<instance>[^/]+)/databases/(?P<database>[^/]+)$"
)


@dataclass(frozen=True)
class DatabaseId:
    """
    Identity of a database.

    Attributes:
        project: Project id
        instance: Instance id
        database: Database id
    """
    project: str
    instance: str
    database: str

    @property
    def name(self) -> str:
        """Resource name of the database."""
        return f"projects/{self.project}/instances/{self.instance}/databases/{self.database}"

    @classmethod
    def parse(cls, name: str) -> "DatabaseId":
        """
        Parse a resource name.

        Args:
            name: projects/<p>/instances/<i>/databases/<d>

        Returns:
            Database id
        """
        match = _DATABASE_NAME.match(name)
        if not match:
            raise ValueError(f"Invalid database name: {name}")
        return cls(**match.groupdict())

    def __str__(self) -> str:
        return self.name


class DatabaseClient:
    """
    Entry point for transactions and writes against one database.

    Sessions and remote calls come from the injected collaborators; the
    client keeps no process-wide state.
    """

    def __init__(
        self,
        database_id: DatabaseId,
        rpc: DatabaseRpc,
        session_provider: Optional[SessionProvider] = None,
        retry_settings: Optional[RetrySettings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize database client.

        Args:
            database_id: Database to operate on
            rpc: Remote RPC
            session_provider: Source of sessions (defaults to one session per call)
            retry_settings: Retry settings for read-write transactions
            sleep: Sleep function used for backoff
            clock: Monotonic clock in seconds
        """
        self.database_id = database_id
        self.retry_settings = retry_settings or RetrySettings()

        self._rpc = rpc
        self._session_provider = session_provider or DirectSessionProvider(rpc, database_id.name)
        self._sleep = sleep
        self._clock = clock
        self._writer = WriteExecutor(
            self._session_provider,
            rpc,
            retry_settings=self.retry_settings,
            sleep=sleep,
            clock=clock,
        )

        logger.info(
            "DatabaseClient initialized",
            database=database_id.name,
            total_timeout_ms=self.retry_settings.total_timeout_ms,
        )

    @classmethod
    def from_config(
        cls,
        database_id: DatabaseId,
        rpc: DatabaseRpc,
        config,
        session_provider: Optional[SessionProvider] = None,
    ) -> "DatabaseClient":
        """
        Create a client with retry settings read from a Config.

        Args:
            database_id: Database to operate on
            rpc: Remote RPC
            config: Config instance
            session_provider: Source of sessions

        Returns:
            Database client
        """
        return cls(
            database_id,
            rpc,
            session_provider=session_provider,
            retry_settings=RetrySettings.from_config(config),
        )

    def read_write_transaction(
        self,
        *options: CallOptions,
        cancellation: Optional[CancellationToken] = None,
    ) -> TransactionRunner:
        """
        Create a runner for a read-write transaction.

        Args:
            *options: Options sent with every commit attempt
            cancellation: Caller's cancellation token

        Returns:
            Transaction runner (single use)
        """
        return TransactionRunner(
            self._session_provider,
            self._rpc,
            options=CallOptions.merge(*options),
            retry_settings=self.retry_settings,
            cancellation=cancellation,
            sleep=self._sleep,
            clock=self._clock,
        )

    def run_in_transaction(
        self,
        work: Callable[[TransactionContext], T],
        *options: CallOptions,
        cancellation: Optional[CancellationToken] = None,
    ) -> T:
        """
        Run work in a read-write transaction, retrying aborts.

        Args:
            work: Function receiving the attempt's TransactionContext
            *options: Options sent with every commit attempt
            cancellation: Caller's cancellation token

        Returns:
            Return value of work from the attempt that committed
        """
        return self.read_write_transaction(*options, cancellation=cancellation).run(work)

    def transaction_manager(self, *options: CallOptions) -> TransactionManager:
        """
        Create a manager for explicit transaction control.

        The manager holds a session until closed; use it in a with-statement.

        Args:
            *options: Options sent with every commit

        Returns:
            Transaction manager
        """
        session = self._session_provider.acquire()
        try:
            return TransactionManager(
                self._session_provider,
                session,
                self._rpc,
                options=CallOptions.merge(*options),
            )
        except Exception:
            self._session_provider.release(session)
            raise

    def write(
        self,
        mutations: Iterable[Mutation],
        *options: CallOptions,
        cancellation: Optional[CancellationToken] = None,
    ) -> CommitResponse:
        """Apply mutations atomically, retrying aborts until committed or cancelled."""
        return self._writer.write(
            mutations, CallOptions.merge(*options), cancellation=cancellation
        )

    def write_at_least_once(
        self,
        mutations: Iterable[Mutation],
        *options: CallOptions,
    ) -> CommitResponse:
        """Apply mutations with a single commit; may apply them more than once."""
        return self._writer.write_at_least_once(mutations, CallOptions.merge(*options))

    def batch_write_at_least_once(
        self,
        groups: Sequence[MutationGroup],
        *options: CallOptions,
    ) -> BatchWriteResultStream:
        """Apply mutation groups independently and stream per-group results."""
        return self._writer.batch_write_at_least_once(groups, CallOptions.merge(*options))

    def execute_partitioned_update(self, statement: Statement, *options: CallOptions) -> int:
        """Execute partitioned DML; returns a lower bound of modified rows."""
        return self._writer.execute_partitioned_update(statement, CallOptions.merge(*options))
