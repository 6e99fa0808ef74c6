"""Repository for connection storage and retrieval."""
import logging
from typing import List

from sqlalchemy import delete, literal_column, or_, select

from notegraph.exceptions import ErrorCode
from notegraph.models.db_models import DBConnection
from notegraph.models.schema import Connection, ConnectionType, ensure_timezone_aware
from notegraph.storage.base import ConnectionStore, SqlRepository

logger = logging.getLogger(__name__)

_INSERT_ORDER = literal_column("connections.rowid")


def _to_connection(db_connection: DBConnection) -> Connection:
    return Connection(
        id=db_connection.id,
        source_id=db_connection.source_id,
        target_id=db_connection.target_id,
        strength=db_connection.strength,
        connection_type=ConnectionType(db_connection.connection_type),
        created_at=ensure_timezone_aware(db_connection.created_at),
    )


def _to_db(connection: Connection) -> DBConnection:
    return DBConnection(
        id=connection.id,
        source_id=connection.source_id,
        target_id=connection.target_id,
        strength=connection.strength,
        connection_type=connection.connection_type.value,
        created_at=connection.created_at,
    )


def _touching(note_id: str):
    return or_(DBConnection.source_id == note_id, DBConnection.target_id == note_id)


class ConnectionRepository(SqlRepository, ConnectionStore):
    """Repository for weighted connections between notes.

    Bulk replacements run in a single transaction, so a failure leaves the
    previous connection set in place.
    """

    def list_connections(self) -> List[Connection]:
        with self._session("list_connections") as session:
            db_connections = session.scalars(
                select(DBConnection).order_by(DBConnection.created_at, _INSERT_ORDER)
            ).all()
            return [_to_connection(c) for c in db_connections]

    def get_for_note(self, note_id: str) -> List[Connection]:
        with self._session("get_connections_for_note") as session:
            db_connections = session.scalars(
                select(DBConnection)
                .where(_touching(note_id))
                .order_by(DBConnection.created_at, _INSERT_ORDER)
            ).all()
            return [_to_connection(c) for c in db_connections]

    def add(self, connection: Connection) -> Connection:
        with self._session(
            "add_connection", code=ErrorCode.STORAGE_WRITE_FAILED, write=True
        ) as session:
            session.add(_to_db(connection))
        logger.debug(
            "Added %s connection %s -> %s (%.3f)",
            connection.connection_type.value,
            connection.source_id,
            connection.target_id,
            connection.strength,
        )
        return connection

    def save_connections(self, connections: List[Connection]) -> None:
        with self._session(
            "save_connections", code=ErrorCode.STORAGE_WRITE_FAILED, write=True
        ) as session:
            session.execute(delete(DBConnection))
            session.add_all([_to_db(c) for c in connections])
        logger.info("Saved %d connections", len(connections))

    def replace_automatic(self, connections: List[Connection]) -> None:
        with self._session(
            "replace_automatic_connections",
            code=ErrorCode.STORAGE_WRITE_FAILED,
            write=True,
        ) as session:
            removed = session.execute(
                delete(DBConnection).where(
                    DBConnection.connection_type == ConnectionType.AUTOMATIC.value
                )
            ).rowcount
            session.add_all([_to_db(c) for c in connections])
        logger.info(
            "Replaced %d automatic connections with %d", removed, len(connections)
        )

    def replace_automatic_for_note(
        self, note_id: str, connections: List[Connection]
    ) -> None:
        with self._session(
            "replace_automatic_connections_for_note",
            code=ErrorCode.STORAGE_WRITE_FAILED,
            write=True,
        ) as session:
            session.execute(
                delete(DBConnection)
                .where(DBConnection.connection_type == ConnectionType.AUTOMATIC.value)
                .where(_touching(note_id))
            )
            session.add_all([_to_db(c) for c in connections])

    def delete(self, connection_id: str) -> bool:
        with self._session(
            "delete_connection", code=ErrorCode.STORAGE_DELETE_FAILED, write=True
        ) as session:
            result = session.execute(
                delete(DBConnection).where(DBConnection.id == connection_id)
            )
            deleted = result.rowcount > 0
        if deleted:
            logger.debug("Deleted connection %s", connection_id)
        return deleted
