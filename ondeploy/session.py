"""Session boundary for activations.

A Session is the privileged connection to the target system that one
activation owns. It is acquired before any status store or script operation
and released on every exit path. Release failures are logged and never
escalated, and one failing release step never prevents the others.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Protocol, runtime_checkable

from ondeploy.errors import SessionUnavailable
from ondeploy.query import QueryHelper

logger = logging.getLogger(__name__)


class Session:
    """
    An open session to the target system.

    Attributes:
        connection: Handle scripts run their work against
        query: Read helpers over the same connection
    """

    def __init__(self, connection: sqlite3.Connection, query: QueryHelper | None = None):
        self.connection = connection
        self.query = query or QueryHelper(connection)
        self._releasers: list[tuple[str, Callable[[], None]]] = []
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def on_release(self, name: str, callback: Callable[[], None]) -> None:
        """Register a release step. Steps run in registration order."""
        self._releasers.append((name, callback))

    def commit(self) -> None:
        """Commit work the current script left pending on the connection."""
        self.connection.commit()

    def rollback(self) -> None:
        """Discard work a failed script left pending on the connection."""
        self.connection.rollback()

    def release(self) -> None:
        """Run every release step once. Failures are logged, not raised."""
        if self._released:
            return
        self._released = True
        for name, callback in self._releasers:
            try:
                callback()
            except Exception:
                logger.warning(f"Failed to release session resource: {name}", exc_info=True)


@runtime_checkable
class SessionFactory(Protocol):
    """Opens sessions to the target system."""

    def open(self) -> Session:
        """
        Acquire a new session.

        Raises:
            SessionUnavailable: If the session cannot be opened
        """
        ...


class SqliteSessionFactory:
    """SessionFactory for a SQLite target database."""

    def __init__(self, database_path: Path | str, timeout: float = 5.0):
        self.database_path = Path(database_path)
        self.timeout = timeout

    def open(self) -> Session:
        if not self.database_path.parent.exists():
            logger.error(
                f"On-deploy scripts cannot be run because the database directory does not exist: "
                f"{self.database_path.parent}"
            )
            raise SessionUnavailable(
                f"Database directory does not exist: {self.database_path.parent}"
            )
        try:
            conn = sqlite3.connect(str(self.database_path), timeout=self.timeout)
        except sqlite3.Error as e:
            logger.error(
                f"On-deploy scripts cannot be run because the system cannot open the database: "
                f"{self.database_path}"
            )
            raise SessionUnavailable(f"Cannot open database: {self.database_path}", e) from e

        session = Session(conn)
        session.on_release("connection", conn.close)
        return session

    def __repr__(self) -> str:
        return f"SqliteSessionFactory(database_path={str(self.database_path)!r})"


@contextmanager
def session_scope(factory: SessionFactory) -> Iterator[Session]:
    """Open a session and release it exactly once, whatever happens inside."""
    session = factory.open()
    try:
        yield session
    finally:
        session.release()
