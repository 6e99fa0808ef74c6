"""Storage layer for notegraph."""

from notegraph.storage.base import CategoryStore, ConnectionStore, NoteStore
from notegraph.storage.category_repository import CategoryRepository
from notegraph.storage.connection_repository import ConnectionRepository
from notegraph.storage.note_repository import NoteRepository

__all__ = [
    "NoteStore",
    "ConnectionStore",
    "CategoryStore",
    "NoteRepository",
    "ConnectionRepository",
    "CategoryRepository",
]
