"""
Remote database RPC interface and its response types.

The transport (gRPC stubs, auth, channels) lives behind DatabaseRpc.
Implementations raise the classified errors from distributeddb.errors.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional, Sequence, Tuple

import grpc

from distributeddb.data.mutation import Mutation, MutationGroup
from distributeddb.data.options import CallOptions
from distributeddb.data.statement import Statement
from distributeddb.service.session import Session


@dataclass(frozen=True)
class CommitStats:
    """
    Statistics returned for a commit when requested.

    Attributes:
        mutation_count: Number of cell-level mutations applied
    """
    mutation_count: int


@dataclass(frozen=True)
class CommitResponse:
    """
    Result of a successful commit.

    Attributes:
        commit_timestamp: Commit timestamp, monotonic per database
        commit_stats: Commit statistics (only if requested)
    """
    commit_timestamp: datetime
    commit_stats: Optional[CommitStats] = None


@dataclass(frozen=True)
class Status:
    """
    Outcome status of one mutation group in a batch write.

    Attributes:
        code: gRPC status code
        message: Error message (empty when OK)
    """
    code: grpc.StatusCode = grpc.StatusCode.OK
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.code == grpc.StatusCode.OK


@dataclass(frozen=True)
class BatchWriteResponse:
    """
    Result for one or more mutation groups of a batch write.

    Attributes:
        indexes: Positions of the groups (in submission order) this result covers
        status: Outcome shared by all covered groups
        commit_timestamp: Commit timestamp when status is OK
    """
    indexes: Tuple[int, ...]
    status: Status
    commit_timestamp: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.status.ok


class DatabaseRpc(ABC):
    """
    Remote calls the client core depends on.

    ``timeout`` is the number of seconds left before the caller's deadline,
    or None when the caller set no deadline. Only commit, batch_write and
    execute_partitioned_dml receive CallOptions.
    """

    @abstractmethod
    def create_session(self, database: str, timeout: Optional[float] = None) -> Session:
        """Create a session bound to database."""

    @abstractmethod
    def delete_session(self, session: Session, timeout: Optional[float] = None) -> None:
        """Delete a session."""

    @abstractmethod
    def begin_transaction(self, session: Session, timeout: Optional[float] = None) -> bytes:
        """Begin a read-write transaction and return its id."""

    @abstractmethod
    def execute_update(
        self,
        session: Session,
        transaction_id: bytes,
        statement: Statement,
        seqno: int,
        timeout: Optional[float] = None,
    ) -> int:
        """Execute a DML statement and return the modified row count."""

    @abstractmethod
    def execute_batch_update(
        self,
        session: Session,
        transaction_id: bytes,
        statements: Sequence[Statement],
        seqno: int,
        timeout: Optional[float] = None,
    ) -> List[int]:
        """Execute DML statements in order and return their row counts."""

    @abstractmethod
    def commit(
        self,
        session: Session,
        transaction_id: Optional[bytes],
        mutations: Sequence[Mutation],
        options: CallOptions,
        timeout: Optional[float] = None,
    ) -> CommitResponse:
        """
        Commit a transaction.

        A transaction_id of None requests a single-use transaction that
        applies the mutations and commits in one round trip.
        """

    @abstractmethod
    def rollback(
        self,
        session: Session,
        transaction_id: bytes,
        timeout: Optional[float] = None,
    ) -> None:
        """Roll back a transaction."""

    @abstractmethod
    def batch_write(
        self,
        session: Session,
        groups: Sequence[MutationGroup],
        options: CallOptions,
        timeout: Optional[float] = None,
    ) -> Iterator[BatchWriteResponse]:
        """Apply mutation groups independently, streaming results as they complete."""

    @abstractmethod
    def execute_partitioned_dml(
        self,
        session: Session,
        statement: Statement,
        options: CallOptions,
        timeout: Optional[float] = None,
    ) -> int:
        """Execute partitioned DML and return a lower bound of modified rows."""
