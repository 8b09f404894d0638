"""Database client facade."""

from distributeddb.client.database import DatabaseClient, DatabaseId

__all__ = [
    "DatabaseClient",
    "DatabaseId",
]
