"""
Session borrowing.

The client core never pools sessions. It borrows one from a SessionProvider
and returns it exactly once.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

from distributeddb.errors import SessionNotFoundError
from distributeddb.utils.logging import get_logger

if TYPE_CHECKING:
    from distributeddb.service.rpc import DatabaseRpc

logger = get_logger(__name__)


@dataclass(frozen=True)
class Session:
    """
    A server-side session.

    Attributes:
        name: Session resource name
        database: Database resource name the session is bound to
    """
    name: str
    database: str


class SessionProvider(ABC):
    """Hands out sessions bound to one database."""

    @abstractmethod
    def acquire(self) -> Session:
        """Borrow a session."""

    @abstractmethod
    def release(self, session: Session, invalid: bool = False) -> None:
        """
        Return a borrowed session.

        Args:
            session: Session to return
            invalid: True if the server reported the session as gone
        """


class DirectSessionProvider(SessionProvider):
    """
    Creates a session for every acquire and deletes it on release.

    Suitable for tests and low-volume tools; anything else should plug in a
    pooling provider.
    """

    def __init__(self, rpc: "DatabaseRpc", database: str):
        """
        Initialize provider.

        Args:
            rpc: Remote RPC used to create and delete sessions
            database: Database resource name
        """
        self._rpc = rpc
        self._database = database

    def acquire(self) -> Session:
        session = self._rpc.create_session(self._database)
        logger.debug("Session created", session=session.name)
        return session

    def release(self, session: Session, invalid: bool = False) -> None:
        if invalid:
            logger.debug("Dropping invalid session", session=session.name)
            return

        self._rpc.delete_session(session)
        logger.debug("Session deleted", session=session.name)


@contextmanager
def session_scope(provider: SessionProvider) -> Iterator[Session]:
    """
    Borrow a session for the duration of a with-block.

    The session is released exactly once, whatever the block does.
    """
    session = provider.acquire()
    invalid = False
    try:
        yield session
    except SessionNotFoundError:
        invalid = True
        raise
    finally:
        provider.release(session, invalid=invalid)
