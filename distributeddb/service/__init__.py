"""
External collaborators of the client core: sessions and remote calls.
"""

from distributeddb.service.rpc import (
    BatchWriteResponse,
    CommitResponse,
    CommitStats,
    DatabaseRpc,
    Status,
)
from distributeddb.service.session import (
    DirectSessionProvider,
    Session,
    SessionProvider,
    session_scope,
)

__all__ = [
    # Sessions
    "Session",
    "SessionProvider",
    "DirectSessionProvider",
    "session_scope",
    # RPC
    "DatabaseRpc",
    "CommitResponse",
    "CommitStats",
    "Status",
    "BatchWriteResponse",
]
