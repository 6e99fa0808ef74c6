"""Groups the categories of strongly connected notes under a shared parent."""
import logging
from typing import List, Optional

from notegraph.config import NotegraphConfig
from notegraph.models.category_graph import CategoryGraph
from notegraph.models.schema import (Category, CategoryRef, Note,
                                     ParentCategoryResult)
from notegraph.services.llm_client import (TextGenerator,
                                           request_category_suggestions)
from notegraph.services.text_analysis import cosine_similarity

logger = logging.getLogger(__name__)


def names_overlap(
    source_categories: List[Category],
    target_categories: List[Category],
    threshold: float,
) -> bool:
    """True if any cross pair of category names is more similar than ``threshold``."""
    return any(
        cosine_similarity(s.name.lower(), t.name.lower()) > threshold
        for s in source_categories
        for t in target_categories
    )


class HierarchyMerger:
    """Creates or reuses a parent category when two connected notes overlap.

    Best effort: when the connection is too weak, a note has no categories,
    the names do not overlap or the classifier gives nothing usable, the
    graph is left untouched and None is returned.
    """

    def __init__(self, llm: TextGenerator, settings: NotegraphConfig):
        self.llm = llm
        self.settings = settings

    def merge(
        self,
        source: Note,
        target: Note,
        strength: float,
        graph: CategoryGraph,
    ) -> Optional[ParentCategoryResult]:
        """Attach both notes' categories to a common parent in ``graph``.

        Args:
            source: Source note of the connection.
            target: Target note of the connection.
            strength: Connection strength.
            graph: Category graph to update in place.

        Returns:
            The parent category identity, or None when nothing changed.
        """
        if strength < self.settings.merge_strength_threshold:
            return None

        source_categories = graph.note_categories(source.id)
        target_categories = graph.note_categories(target.id)
        if not source_categories or not target_categories:
            return None

        if not names_overlap(
            source_categories,
            target_categories,
            self.settings.category_overlap_threshold,
        ):
            return None

        suggestions = request_category_suggestions(
            self.llm,
            f"Note 1: {source.content}\nNote 2: {target.content}",
            [c.name for c in graph.categories],
            temperature=self.settings.categorize_temperature,
            max_tokens=self.settings.categorize_max_tokens,
        )
        if suggestions is None:
            return None

        # min() keeps the first suggestion among equal levels
        candidate = min(suggestions.categories, key=lambda s: s.level)
        parent, created = graph.get_or_create(candidate.name, level=0)
        if created:
            logger.info("Created parent category '%s'", parent.name)

        for child in source_categories + target_categories:
            graph.add_hierarchy_edge(parent.id, child.id)
        graph.add_note_category(source.id, parent.id)
        graph.add_note_category(target.id, parent.id)

        logger.debug(
            "Merged categories of %s and %s under '%s'",
            source.id, target.id, parent.name,
        )
        return ParentCategoryResult(
            source_note_id=source.id,
            target_note_id=target.id,
            parent_category=CategoryRef(id=parent.id, name=parent.name),
        )
