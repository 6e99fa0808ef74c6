"""Store contracts and shared session handling for the storage layer.

The engine only talks to the three abstract stores below. The SQLAlchemy
repositories in this package implement them; tests may substitute
in-memory fakes.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notegraph.exceptions import ErrorCode, StorageError
from notegraph.models.category_graph import CategoryGraph
from notegraph.models.schema import Connection, Note

logger = logging.getLogger(__name__)


class NoteStore(ABC):
    """Persistence contract for notes."""

    @abstractmethod
    def list_notes(self) -> List[Note]:
        """Return every note in creation order."""

    @abstractmethod
    def get_note(self, note_id: str) -> Optional[Note]:
        """Return the note or None if it does not exist."""

    @abstractmethod
    def create(self, note: Note) -> Note:
        """Persist a new note."""

    @abstractmethod
    def update(self, note: Note) -> Note:
        """Persist new content for an existing note."""

    @abstractmethod
    def delete(self, note_id: str) -> int:
        """Delete a note together with its connections and memberships.

        Returns:
            Number of connections removed with the note.
        """


class ConnectionStore(ABC):
    """Persistence contract for note connections."""

    @abstractmethod
    def list_connections(self) -> List[Connection]:
        """Return every connection, oldest first."""

    @abstractmethod
    def save_connections(self, connections: List[Connection]) -> None:
        """Replace the whole connection set in one transaction."""

    @abstractmethod
    def add(self, connection: Connection) -> Connection:
        """Append a single connection."""

    @abstractmethod
    def replace_automatic(self, connections: List[Connection]) -> None:
        """Swap every automatic connection for ``connections``.

        Manual connections are kept.
        """

    @abstractmethod
    def replace_automatic_for_note(
        self, note_id: str, connections: List[Connection]
    ) -> None:
        """Swap the automatic connections touching ``note_id``."""

    @abstractmethod
    def get_for_note(self, note_id: str) -> List[Connection]:
        """Return the connections where the note is source or target."""

    @abstractmethod
    def delete(self, connection_id: str) -> bool:
        """Delete one connection. Returns False when it did not exist."""


class CategoryStore(ABC):
    """Persistence contract for the category graph."""

    @abstractmethod
    def load_categories_data(self) -> CategoryGraph:
        """Load categories, memberships and hierarchy as one graph."""

    @abstractmethod
    def save_categories_data(self, graph: CategoryGraph) -> None:
        """Persist the whole graph in one transaction."""


class SqlRepository:
    """Base for repositories backed by an SQLAlchemy session factory."""

    def __init__(self, session_factory):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    @contextmanager
    def _session(
        self,
        operation: str,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        write: bool = False,
    ) -> Iterator[Session]:
        """Open a session, committing on success when ``write`` is set.

        Any SQLAlchemy failure is rolled back and re-raised as StorageError.
        """
        with self.session_factory() as session:
            try:
                if write:
                    with session.begin():
                        yield session
                else:
                    yield session
            except SQLAlchemyError as e:
                logger.error("Storage operation '%s' failed: %s", operation, e)
                raise StorageError(
                    f"Storage operation '{operation}' failed",
                    operation=operation,
                    code=code,
                    original_error=e,
                ) from e
