"""
Immutable write descriptions and per-call options.
"""

from distributeddb.data.keyset import KeyRange, KeySet
from distributeddb.data.mutation import Mutation, MutationGroup, MutationType
from distributeddb.data.options import (
    EMPTY_OPTIONS,
    CallOptions,
    Priority,
    commit_stats,
    exclude_txn_from_change_streams,
    priority,
    tag,
)
from distributeddb.data.statement import Statement

__all__ = [
    # Mutations
    "Mutation",
    "MutationGroup",
    "MutationType",
    "KeySet",
    "KeyRange",
    "Statement",
    # Options
    "CallOptions",
    "EMPTY_OPTIONS",
    "Priority",
    "exclude_txn_from_change_streams",
    "priority",
    "tag",
    "commit_stats",
]
