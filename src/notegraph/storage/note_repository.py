"""Repository for note storage and retrieval."""
import logging
from typing import List, Optional

from sqlalchemy import delete, literal_column, or_, select, update

from notegraph.exceptions import ErrorCode, NoteNotFoundError
from notegraph.models.db_models import (DBCategory, DBConnection, DBNote,
                                        note_categories)
from notegraph.models.schema import Note, ensure_timezone_aware
from notegraph.storage.base import NoteStore, SqlRepository

logger = logging.getLogger(__name__)

# SQLite rowid breaks ties between notes created in the same instant
_INSERT_ORDER = literal_column("notes.rowid")


def _to_note(db_note: DBNote) -> Note:
    return Note(
        id=db_note.id,
        content=db_note.content,
        created_at=ensure_timezone_aware(db_note.created_at),
        updated_at=(
            ensure_timezone_aware(db_note.updated_at)
            if db_note.updated_at is not None
            else None
        ),
    )


class NoteRepository(SqlRepository, NoteStore):
    """Repository for notes stored in SQLite.

    Deleting a note also removes its connections and category memberships
    in the same transaction and decrements the affected categories'
    ``note_count``.
    """

    def list_notes(self) -> List[Note]:
        with self._session("list_notes") as session:
            db_notes = session.scalars(
                select(DBNote).order_by(DBNote.created_at, _INSERT_ORDER)
            ).all()
            return [_to_note(db_note) for db_note in db_notes]

    def get_note(self, note_id: str) -> Optional[Note]:
        with self._session("get_note") as session:
            db_note = session.get(DBNote, note_id)
            if db_note is None:
                return None
            return _to_note(db_note)

    def create(self, note: Note) -> Note:
        with self._session(
            "create_note", code=ErrorCode.STORAGE_WRITE_FAILED, write=True
        ) as session:
            session.add(
                DBNote(
                    id=note.id,
                    content=note.content,
                    created_at=note.created_at,
                    updated_at=note.updated_at,
                )
            )
        logger.debug("Created note %s", note.id)
        return note

    def update(self, note: Note) -> Note:
        """Persist new content for an existing note.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self._session(
            "update_note", code=ErrorCode.STORAGE_WRITE_FAILED, write=True
        ) as session:
            db_note = session.get(DBNote, note.id)
            if db_note is None:
                raise NoteNotFoundError(note.id)
            db_note.content = note.content
            db_note.updated_at = note.updated_at
        logger.debug("Updated note %s", note.id)
        return note

    def delete(self, note_id: str) -> int:
        """Delete a note and everything hanging off it.

        Returns:
            Number of connections removed with the note.

        Raises:
            NoteNotFoundError: If the note does not exist.
        """
        with self._session(
            "delete_note", code=ErrorCode.STORAGE_DELETE_FAILED, write=True
        ) as session:
            if session.get(DBNote, note_id) is None:
                raise NoteNotFoundError(note_id)

            removed = session.execute(
                delete(DBConnection).where(
                    or_(
                        DBConnection.source_id == note_id,
                        DBConnection.target_id == note_id,
                    )
                )
            ).rowcount

            category_ids = session.scalars(
                select(note_categories.c.category_id).where(
                    note_categories.c.note_id == note_id
                )
            ).all()
            if category_ids:
                session.execute(
                    update(DBCategory)
                    .where(DBCategory.id.in_(category_ids))
                    .where(DBCategory.note_count > 0)
                    .values(note_count=DBCategory.note_count - 1)
                )
                session.execute(
                    delete(note_categories).where(note_categories.c.note_id == note_id)
                )

            session.execute(delete(DBNote).where(DBNote.id == note_id))

        logger.info(
            "Deleted note %s (%d connections, %d memberships)",
            note_id, removed, len(category_ids),
        )
        return removed
