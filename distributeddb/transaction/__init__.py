"""
Read-write transactions: single attempts, retry loop and explicit control.
"""

from distributeddb.transaction.cancellation import CancellationToken
from distributeddb.transaction.context import TransactionContext
from distributeddb.transaction.manager import TransactionManager
from distributeddb.transaction.retry import BackoffCalculator, RetrySettings
from distributeddb.transaction.runner import TransactionRunner
from distributeddb.transaction.state import TransactionManagerState

__all__ = [
    # Attempts
    "TransactionContext",
    # Retry
    "TransactionRunner",
    "RetrySettings",
    "BackoffCalculator",
    "CancellationToken",
    # Explicit control
    "TransactionManager",
    "TransactionManagerState",
]
