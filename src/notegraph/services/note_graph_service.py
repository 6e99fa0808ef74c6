"""Service layer for the note graph.

``NoteGraphService`` is the single entry point callers use: it owns the
stores, the LLM classifier and the three engine components (connection
builder, category assigner, hierarchy merger) and wires them together.
"""
import logging
import math
from typing import List, Optional

from notegraph.config import NotegraphConfig, config
from notegraph.exceptions import (
    ErrorCode,
    NoteConnectionError,
    NoteNotFoundError,
    NoteValidationError,
    ValidationError,
)
from notegraph.models.category_graph import CategoryGraph
from notegraph.models.db_models import get_session_factory, init_db
from notegraph.models.schema import (
    Category,
    CategoryHierarchyView,
    CategoryResult,
    Connection,
    ConnectionCreationResult,
    ConnectionType,
    GraphData,
    GraphEdge,
    GraphNode,
    Note,
    NoteCreationResult,
    NotePage,
    Pagination,
    ParentCategoryResult,
    RecalculationResult,
    utc_now,
)
from notegraph.observability import traced
from notegraph.services.category_assigner import CategoryAssigner
from notegraph.services.connection_builder import ConnectionBuilder
from notegraph.services.hierarchy_merger import HierarchyMerger
from notegraph.services.llm_client import LlmClient, TextGenerator
from notegraph.storage.base import CategoryStore, ConnectionStore, NoteStore
from notegraph.storage.category_repository import CategoryRepository
from notegraph.storage.connection_repository import ConnectionRepository
from notegraph.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


class NoteGraphService:
    """Service for notes, their connections and their categories."""

    def __init__(
        self,
        settings: Optional[NotegraphConfig] = None,
        note_store: Optional[NoteStore] = None,
        connection_store: Optional[ConnectionStore] = None,
        category_store: Optional[CategoryStore] = None,
        llm: Optional[TextGenerator] = None,
        engine=None,
    ):
        """Initialize the service.

        Args:
            settings: Engine configuration. Defaults to the module-level config.
            note_store: Note persistence. SQLite repository if None.
            connection_store: Connection persistence. SQLite repository if None.
            category_store: Category persistence. SQLite repository if None.
            llm: LLM classifier. An ``LlmClient`` built from ``settings.llm``
                if None.
            engine: Pre-configured SQLAlchemy engine shared by the default
                repositories. Created from ``settings`` when needed.
        """
        self.settings = settings or config

        if None in (note_store, connection_store, category_store):
            if engine is None:
                engine = init_db(self.settings.get_db_url())
            session_factory = get_session_factory(engine)
            note_store = note_store or NoteRepository(session_factory)
            connection_store = connection_store or ConnectionRepository(session_factory)
            category_store = category_store or CategoryRepository(session_factory)

        self.notes = note_store
        self.connections = connection_store
        self.categories = category_store
        self.llm = llm if llm is not None else LlmClient(self.settings.llm)

        self.builder = ConnectionBuilder(
            threshold=self.settings.connection_threshold,
            manual_strength_floor=self.settings.manual_strength_floor,
        )
        self.assigner = CategoryAssigner(self.llm, self.settings)
        self.merger = HierarchyMerger(self.llm, self.settings)

    def shutdown(self) -> None:
        """Release the LLM client's HTTP connections."""
        close = getattr(self.llm, "close", None)
        if close is not None:
            close()

    # =========================================================================
    # Notes
    # =========================================================================

    @staticmethod
    def _require_content(content: str) -> None:
        if not content or not content.strip():
            raise NoteValidationError(
                "Content is required",
                field="content",
                code=ErrorCode.NOTE_CONTENT_REQUIRED,
            )

    def _require_note(self, note_id: str, role: str = "") -> Note:
        note = self.notes.get_note(note_id)
        if note is None:
            label = f"{role} note" if role else "Note"
            raise NoteNotFoundError(
                note_id, f"{label.capitalize()} with ID '{note_id}' not found"
            )
        return note

    @traced("create_note")
    def create_note(self, content: str) -> NoteCreationResult:
        """Store a note, connect it to related notes and categorize it.

        Raises:
            NoteValidationError: If the content is blank.
        """
        self._require_content(content)
        note = self.notes.create(Note(content=content))
        connections = self.build_connections_for_note(note.id, note.content)
        result = self.categorize_note(note)
        logger.info(
            "Created note %s (%d connections, %d categories)",
            note.id, len(connections), len(result.categories),
        )
        return NoteCreationResult(
            note=note, connections=connections, categories=result.categories
        )

    @traced("update_note")
    def update_note(self, note_id: str, content: str) -> NoteCreationResult:
        """Replace a note's content, then rebuild its connections and categories.

        Manual connections of the note are kept.
        """
        self._require_content(content)
        note = self._require_note(note_id)
        note.content = content
        note.updated_at = utc_now()
        self.notes.update(note)
        connections = self.build_connections_for_note(note.id, note.content)
        result = self.categorize_note(note)
        return NoteCreationResult(
            note=note, connections=connections, categories=result.categories
        )

    @traced("delete_note")
    def delete_note(self, note_id: str) -> int:
        """Delete a note with its connections and category memberships.

        Returns:
            Number of connections removed.
        """
        return self.notes.delete(note_id)

    def get_note(self, note_id: str) -> Optional[Note]:
        """Retrieve a note by ID."""
        return self.notes.get_note(note_id)

    def list_notes(self) -> List[Note]:
        """All notes, oldest first."""
        return self.notes.list_notes()

    def get_recent_notes(self, page: int = 1, limit: int = 10) -> NotePage:
        """One page of notes, newest first.

        Raises:
            ValidationError: If ``page`` or ``limit`` is below 1.
        """
        if page < 1:
            raise ValidationError("Page must be at least 1", field="page", value=page)
        if limit < 1:
            raise ValidationError("Limit must be at least 1", field="limit", value=limit)

        notes = sorted(self.notes.list_notes(), key=lambda n: n.created_at, reverse=True)
        total = len(notes)
        total_pages = math.ceil(total / limit)
        start = (page - 1) * limit
        return NotePage(
            notes=notes[start:start + limit],
            pagination=Pagination(
                current_page=page,
                total_pages=total_pages,
                total_notes=total,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
        )

    def get_graph_data(self) -> GraphData:
        """Notes and connections shaped for a graph visualization."""
        length = self.settings.graph_label_length
        nodes = [
            GraphNode(
                id=note.id,
                label=note.content[:length] + ("..." if len(note.content) > length else ""),
                content=note.content,
                created_at=note.created_at,
            )
            for note in self.notes.list_notes()
        ]
        edges = [
            GraphEdge(
                id=c.id,
                source=c.source_id,
                target=c.target_id,
                strength=c.strength,
                type=c.connection_type,
            )
            for c in self.connections.list_connections()
        ]
        return GraphData(nodes=nodes, edges=edges)

    # =========================================================================
    # Connections
    # =========================================================================

    @traced("build_connections_for_note")
    def build_connections_for_note(self, note_id: str, content: str) -> List[Connection]:
        """Recompute the automatic connections of one note.

        The note's previous automatic connections are replaced; manual ones
        are untouched.

        Raises:
            NoteNotFoundError: If the note is not stored.
        """
        self._require_note(note_id)
        note = Note(id=note_id, content=content)
        others = [n for n in self.notes.list_notes() if n.id != note_id]
        connections = self.builder.connections_for_note(note, others)
        self.connections.replace_automatic_for_note(note_id, connections)
        return connections

    @traced("recalculate_all_connections")
    def recalculate_all_connections(self) -> RecalculationResult:
        """Rebuild every automatic connection, then merge categories along them.

        Manual connections survive. Merges are computed on the loaded graph
        first; the category graph is saved before the new automatic set
        replaces the old one. A failed category save therefore leaves the
        stored connections untouched.
        """
        notes = self.notes.list_notes()
        connections = self.builder.connections_for_all(notes)

        by_id = {note.id: note for note in notes}
        graph = self.categories.load_categories_data()
        parents: List[ParentCategoryResult] = []
        for connection in connections:
            parent = self.merger.merge(
                by_id[connection.source_id],
                by_id[connection.target_id],
                connection.strength,
                graph,
            )
            if parent is not None:
                parents.append(parent)
        if parents:
            self.categories.save_categories_data(graph)
        self.connections.replace_automatic(connections)

        logger.info(
            "Recalculated %d automatic connections (%d parent categories)",
            len(connections), len(parents),
        )
        return RecalculationResult(
            connection_count=len(connections), parent_categories=parents
        )

    @traced("create_connection")
    def create_connection(
        self,
        source_id: str,
        target_id: str,
        connection_type: ConnectionType = ConnectionType.MANUAL,
    ) -> ConnectionCreationResult:
        """Connect two notes explicitly and merge their categories if they overlap.

        Raises:
            NoteConnectionError: For a self connection, a duplicate, or an
                automatic connection at or below the threshold.
            NoteNotFoundError: If either note does not exist.
        """
        if source_id == target_id:
            raise NoteConnectionError(
                "A note cannot be connected to itself",
                source_id=source_id,
                target_id=target_id,
                connection_type=connection_type.value,
                code=ErrorCode.CONNECTION_SELF_REFERENCE,
            )
        source = self._require_note(source_id, "source")
        target = self._require_note(target_id, "target")

        pair = frozenset((source_id, target_id))
        for existing in self.connections.get_for_note(source_id):
            if existing.pair_key() == pair and existing.connection_type == connection_type:
                raise NoteConnectionError(
                    f"A {connection_type.value} connection between these notes already exists",
                    source_id=source_id,
                    target_id=target_id,
                    connection_type=connection_type.value,
                    code=ErrorCode.CONNECTION_ALREADY_EXISTS,
                )

        connection = self.connections.add(
            self.builder.manual_connection(source, target, connection_type)
        )
        category_update = self.update_categories_from_connection(
            source_id, target_id, connection.strength
        )
        return ConnectionCreationResult(
            connection=connection, category_update=category_update
        )

    @traced("delete_connection")
    def delete_connection(self, connection_id: str) -> None:
        """Delete a connection.

        Raises:
            NoteConnectionError: If no connection has this id.
        """
        if not self.connections.delete(connection_id):
            raise NoteConnectionError(
                f"Connection with ID '{connection_id}' not found",
                code=ErrorCode.CONNECTION_NOT_FOUND,
            )

    def get_connections_for_note(self, note_id: str) -> List[Connection]:
        """Connections where the note is source or target."""
        return self.connections.get_for_note(note_id)

    def list_connections(self) -> List[Connection]:
        return self.connections.list_connections()

    # =========================================================================
    # Categories
    # =========================================================================

    @traced("categorize_note")
    def categorize_note(self, note: Note) -> CategoryResult:
        """Assign categories to a stored note and persist them.

        LLM problems never surface here; storage failures do.
        """
        self._require_note(note.id)
        graph = self.categories.load_categories_data()
        result = self.assigner.assign(note, graph)
        self.categories.save_categories_data(graph)
        return result

    @traced("rebuild_all_categories")
    def rebuild_all_categories(self) -> List[CategoryResult]:
        """Discard every category and categorize all notes again, oldest first.

        The new graph replaces the old one in a single save.
        """
        notes = self.notes.list_notes()
        results, graph = self.assigner.rebuild(notes)
        self.categories.save_categories_data(graph)
        logger.info(
            "Rebuilt categories for %d notes (%d categories)", len(notes), len(graph)
        )
        return results

    @traced("update_categories_from_connection")
    def update_categories_from_connection(
        self, source_id: str, target_id: str, strength: float
    ) -> Optional[ParentCategoryResult]:
        """Group both notes' categories under a shared parent when they overlap.

        Returns:
            The parent category, or None when nothing was merged.
        """
        if strength < self.settings.merge_strength_threshold:
            return None
        source = self.notes.get_note(source_id)
        target = self.notes.get_note(target_id)
        if source is None or target is None:
            return None

        graph = self.categories.load_categories_data()
        result = self.merger.merge(source, target, strength, graph)
        if result is not None:
            self.categories.save_categories_data(graph)
        return result

    def _load_graph(self) -> CategoryGraph:
        return self.categories.load_categories_data()

    def get_note_categories(self, note_id: str) -> List[Category]:
        """Categories of a note, in assignment order."""
        return self._load_graph().note_categories(note_id)

    def get_all_categories(self) -> List[Category]:
        """Every category, sorted by level then name."""
        return sorted(self._load_graph().categories, key=lambda c: (c.level, c.name))

    def get_category_hierarchy(self) -> CategoryHierarchyView:
        """All categories plus the parent -> children adjacency lists."""
        graph = self._load_graph()
        return CategoryHierarchyView(
            categories=sorted(graph.categories, key=lambda c: (c.level, c.name)),
            hierarchy=graph.hierarchy,
        )

    def get_notes_by_category(
        self, category_id: str, include_subcategories: bool = False
    ) -> List[Note]:
        """Notes in a category, oldest first.

        Args:
            category_id: Category to look up. Unknown ids yield an empty list.
            include_subcategories: Also include notes of every descendant category.
        """
        graph = self._load_graph()
        if category_id not in graph:
            return []
        category_ids = [category_id]
        if include_subcategories:
            category_ids.extend(graph.descendants(category_id))

        note_ids = set()
        for cid in category_ids:
            note_ids.update(graph.note_ids_for(cid))
        return [note for note in self.notes.list_notes() if note.id in note_ids]
