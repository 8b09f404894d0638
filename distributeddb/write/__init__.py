"""
Non-interactive write paths: transactional, at-least-once, batch and partitioned DML.
"""

from distributeddb.write.batch import BatchWriteResultStream
from distributeddb.write.executor import WriteExecutor

__all__ = [
    "WriteExecutor",
    "BatchWriteResultStream",
]
