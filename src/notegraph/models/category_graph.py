"""In-memory category graph: categories, hierarchy edges and note memberships.

The graph is the unit the category store loads and saves. Every lookup goes
through a dictionary index (id, lowercase name, parent -> children,
note -> categories, category -> notes), so merge operations
never scan lists or follow ids through arrays.
"""
import logging
from collections import deque
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from notegraph.exceptions import CategoryError, ErrorCode
from notegraph.models.schema import Category

logger = logging.getLogger(__name__)


def _name_key(name: str) -> str:
    return name.strip().lower()


class CategoryGraph:
    """Categories, their parent/child hierarchy and note memberships.

    ``note_count`` on each category is kept as a live reference count: it
    always equals the number of notes currently mapped to the category.
    """

    def __init__(
        self,
        categories: Optional[Iterable[Category]] = None,
        note_category_map: Optional[Mapping[str, Sequence[str]]] = None,
        hierarchy: Optional[Mapping[str, Iterable[str]]] = None,
    ):
        self._categories: Dict[str, Category] = {}
        self._by_name: Dict[str, str] = {}
        self._children: Dict[str, Dict[str, None]] = {}
        self._note_categories: Dict[str, List[str]] = {}
        self._category_notes: Dict[str, Dict[str, None]] = {}

        for category in categories or []:
            self.add_category(category)

        for parent_id, child_ids in (hierarchy or {}).items():
            for child_id in child_ids:
                self.add_hierarchy_edge(parent_id, child_id)

        for note_id, category_ids in (note_category_map or {}).items():
            known = [cid for cid in category_ids if cid in self._categories]
            if len(known) != len(category_ids):
                logger.warning(
                    "Dropping unknown category ids from note %s membership", note_id
                )
            self._note_categories[note_id] = []
            for category_id in dict.fromkeys(known):
                self._note_categories[note_id].append(category_id)
                self._category_notes[category_id][note_id] = None

        self.recount()

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    @property
    def categories(self) -> List[Category]:
        """All categories in insertion order."""
        return list(self._categories.values())

    def __len__(self) -> int:
        return len(self._categories)

    def __contains__(self, category_id: object) -> bool:
        return category_id in self._categories

    def is_empty(self) -> bool:
        return not self._categories and not self._note_categories

    def get(self, category_id: str) -> Optional[Category]:
        return self._categories.get(category_id)

    def find_by_name(self, name: str) -> Optional[Category]:
        """Find a category by case-insensitive exact name."""
        category_id = self._by_name.get(_name_key(name))
        if category_id is None:
            return None
        return self._categories[category_id]

    def add_category(self, category: Category) -> Category:
        """Add a category to the graph.

        Raises:
            CategoryError: If a category with the same id is already present.
        """
        if category.id in self._categories:
            raise CategoryError(
                f"Category '{category.id}' already exists",
                category_id=category.id,
            )
        self._categories[category.id] = category
        self._by_name.setdefault(_name_key(category.name), category.id)
        self._children.setdefault(category.id, {})
        self._category_notes.setdefault(category.id, {})
        return category

    def get_or_create(self, name: str, level: int = 0) -> Tuple[Category, bool]:
        """Return the category with this name, minting it if missing.

        Returns:
            Tuple of (category, created).
        """
        existing = self.find_by_name(name)
        if existing is not None:
            return existing, False
        return self.add_category(Category(name=name, level=level)), True

    def _require(self, category_id: str) -> Category:
        category = self._categories.get(category_id)
        if category is None:
            raise CategoryError(
                f"Category with ID '{category_id}' not found",
                category_id=category_id,
                code=ErrorCode.CATEGORY_NOT_FOUND,
            )
        return category

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def add_hierarchy_edge(self, parent_id: str, child_id: str) -> bool:
        """Record a parent -> child edge.

        Inserting an edge that already exists, or an edge from a category to
        itself, changes nothing.

        Returns:
            True if the edge was new.
        """
        self._require(parent_id)
        self._require(child_id)
        if parent_id == child_id:
            return False
        children = self._children[parent_id]
        if child_id in children:
            return False
        children[child_id] = None
        return True

    def has_edge(self, parent_id: str, child_id: str) -> bool:
        return child_id in self._children.get(parent_id, {})

    def descendants(self, category_id: str) -> List[str]:
        """All categories reachable below ``category_id``, breadth first.

        Each category is visited once even when the hierarchy has cycles or
        diamonds.
        """
        visited: Set[str] = {category_id}
        order: List[str] = []
        queue = deque(self._children.get(category_id, {}))
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            order.append(current)
            queue.extend(self._children.get(current, {}))
        return order

    @property
    def hierarchy(self) -> Dict[str, List[str]]:
        """Parent id -> child ids, omitting categories without children."""
        return {
            parent_id: list(children)
            for parent_id, children in self._children.items()
            if children
        }

    def edge_count(self) -> int:
        return sum(len(children) for children in self._children.values())

    # ------------------------------------------------------------------
    # Note memberships
    # ------------------------------------------------------------------

    @property
    def note_category_map(self) -> Dict[str, List[str]]:
        """Note id -> ordered category ids."""
        return {note_id: list(ids) for note_id, ids in self._note_categories.items()}

    def note_categories(self, note_id: str) -> List[Category]:
        return [self._categories[cid] for cid in self._note_categories.get(note_id, [])]

    def note_ids_for(self, category_id: str) -> List[str]:
        return list(self._category_notes.get(category_id, {}))

    def set_note_categories(self, note_id: str, category_ids: Sequence[str]) -> List[Category]:
        """Overwrite the note's memberships with ``category_ids``.

        Counts are adjusted for categories the note leaves and joins;
        categories it keeps are unchanged.
        """
        for category_id in category_ids:
            self._require(category_id)
        new_ids = list(dict.fromkeys(category_ids))
        old_ids = self._note_categories.get(note_id, [])

        for category_id in old_ids:
            if category_id not in new_ids:
                self._leave(note_id, category_id)
        for category_id in new_ids:
            if category_id not in old_ids:
                self._join(note_id, category_id)

        self._note_categories[note_id] = new_ids
        return self.note_categories(note_id)

    def add_note_category(self, note_id: str, category_id: str) -> bool:
        """Add one membership without touching the others.

        Returns:
            True if the note newly gained the category.
        """
        self._require(category_id)
        current = self._note_categories.setdefault(note_id, [])
        if category_id in current:
            return False
        current.append(category_id)
        self._join(note_id, category_id)
        return True

    def remove_note(self, note_id: str) -> List[str]:
        """Drop every membership of a deleted note.

        Returns:
            Ids of the categories the note belonged to.
        """
        old_ids = self._note_categories.pop(note_id, [])
        for category_id in old_ids:
            self._leave(note_id, category_id)
        return old_ids

    def _join(self, note_id: str, category_id: str) -> None:
        self._category_notes[category_id][note_id] = None
        category = self._categories[category_id]
        category.note_count = category.note_count + 1

    def _leave(self, note_id: str, category_id: str) -> None:
        self._category_notes[category_id].pop(note_id, None)
        category = self._categories[category_id]
        category.note_count = max(0, category.note_count - 1)

    def recount(self) -> None:
        """Reset every ``note_count`` to the size of its membership set."""
        for category_id, category in self._categories.items():
            category.note_count = len(self._category_notes.get(category_id, {}))

    def clear(self) -> None:
        """Remove all categories, edges and memberships."""
        self._categories.clear()
        self._by_name.clear()
        self._children.clear()
        self._note_categories.clear()
        self._category_notes.clear()
