"""Repository for the category graph."""
import logging
from typing import Dict, List

from sqlalchemy import delete, insert, literal_column, select

from notegraph.exceptions import ErrorCode
from notegraph.models.category_graph import CategoryGraph
from notegraph.models.db_models import (DBCategory, category_hierarchy,
                                        note_categories)
from notegraph.models.schema import Category, ensure_timezone_aware
from notegraph.storage.base import CategoryStore, SqlRepository

logger = logging.getLogger(__name__)


class CategoryRepository(SqlRepository, CategoryStore):
    """Repository for categories, note memberships and hierarchy edges.

    The three structures are always loaded and saved together as a
    CategoryGraph. Saving replaces the stored graph in one transaction.
    """

    def load_categories_data(self) -> CategoryGraph:
        with self._session("load_categories") as session:
            db_categories = session.scalars(
                select(DBCategory).order_by(literal_column("categories.rowid"))
            ).all()
            categories = [
                Category(
                    id=c.id,
                    name=c.name,
                    level=c.level,
                    note_count=c.note_count,
                    created_at=ensure_timezone_aware(c.created_at),
                )
                for c in db_categories
            ]

            memberships: Dict[str, List[str]] = {}
            rows = session.execute(
                select(note_categories.c.note_id, note_categories.c.category_id)
                .order_by(note_categories.c.note_id, note_categories.c.position)
            ).all()
            for note_id, category_id in rows:
                memberships.setdefault(note_id, []).append(category_id)

            hierarchy: Dict[str, List[str]] = {}
            for parent_id, child_id in session.execute(
                select(category_hierarchy.c.parent_id, category_hierarchy.c.child_id)
                .order_by(literal_column("category_hierarchy.rowid"))
            ).all():
                hierarchy.setdefault(parent_id, []).append(child_id)

        graph = CategoryGraph(categories, memberships, hierarchy)
        logger.debug(
            "Loaded %d categories, %d memberships, %d hierarchy edges",
            len(graph), len(memberships), graph.edge_count(),
        )
        return graph

    def save_categories_data(self, graph: CategoryGraph) -> None:
        category_rows = [
            {
                "id": c.id,
                "name": c.name,
                "level": c.level,
                "note_count": c.note_count,
                "created_at": c.created_at,
            }
            for c in graph.categories
        ]
        membership_rows = [
            {"note_id": note_id, "category_id": category_id, "position": position}
            for note_id, category_ids in graph.note_category_map.items()
            for position, category_id in enumerate(category_ids)
        ]
        hierarchy_rows = [
            {"parent_id": parent_id, "child_id": child_id}
            for parent_id, child_ids in graph.hierarchy.items()
            for child_id in child_ids
        ]

        with self._session(
            "save_categories", code=ErrorCode.STORAGE_WRITE_FAILED, write=True
        ) as session:
            session.execute(delete(category_hierarchy))
            session.execute(delete(note_categories))
            session.execute(delete(DBCategory))
            if category_rows:
                session.execute(insert(DBCategory), category_rows)
            if membership_rows:
                session.execute(insert(note_categories), membership_rows)
            if hierarchy_rows:
                session.execute(insert(category_hierarchy), hierarchy_rows)

        logger.debug(
            "Saved %d categories, %d memberships, %d hierarchy edges",
            len(category_rows), len(membership_rows), len(hierarchy_rows),
        )
