"""
DistributedDB - client core for a distributed SQL database.

This package implements the transactional write path of a Spanner-like
client library:
- Immutable mutations and mutation groups
- Per-call options (change stream exclusion, priority, tags)
- Read-write transactions retried on abort with backoff
- Explicit transaction management with scoped session release
- At-least-once, batch and partitioned DML writes
"""

__version__ = "0.1.0"

from distributeddb.client import DatabaseClient, DatabaseId
from distributeddb.data import (
    CallOptions,
    KeyRange,
    KeySet,
    Mutation,
    MutationGroup,
    MutationType,
    Priority,
    Statement,
    commit_stats,
    exclude_txn_from_change_streams,
    priority,
    tag,
)
from distributeddb.transaction import (
    CancellationToken,
    RetrySettings,
    TransactionContext,
    TransactionManager,
    TransactionManagerState,
    TransactionRunner,
)

__all__ = [
    "DatabaseClient",
    "DatabaseId",
    "CallOptions",
    "Priority",
    "exclude_txn_from_change_streams",
    "priority",
    "tag",
    "commit_stats",
    "Mutation",
    "MutationGroup",
    "MutationType",
    "KeySet",
    "KeyRange",
    "Statement",
    "TransactionContext",
    "TransactionRunner",
    "TransactionManager",
    "TransactionManagerState",
    "RetrySettings",
    "CancellationToken",
]
