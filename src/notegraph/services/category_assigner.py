"""Assigns notes to categories.

Categories come from three sources, in priority order:

1. The LLM classifier's suggestions (general to specific).
2. Existing categories whose names match the note's keywords.
3. A new level-0 category named after the note's top keyword.

A note with no usable keywords and no suggestions gets no category.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from notegraph.config import NotegraphConfig
from notegraph.models.category_graph import CategoryGraph
from notegraph.models.schema import (Category, CategoryResult,
                                     CategorySuggestions, Note)
from notegraph.services.llm_client import (TextGenerator,
                                           request_category_suggestions)
from notegraph.services.text_analysis import extract_keywords

logger = logging.getLogger(__name__)


def _name_matches(category_name: str, keywords: Iterable[str]) -> bool:
    words = category_name.lower().split()
    return any(
        word == keyword or keyword in word or word in keyword
        for word in words
        for keyword in keywords
    )


def find_matching_categories(
    keywords: List[str], categories: Iterable[Category]
) -> List[Category]:
    """Existing categories sharing a word with ``keywords``.

    A category name word matches a keyword when the two are equal or one
    contains the other.
    """
    if not keywords:
        return []
    return [c for c in categories if _name_matches(c.name, keywords)]


class CategoryAssigner:
    """Works out a note's categories and records them in a CategoryGraph.

    The assigner only mutates the graph it is given; persisting the graph is
    up to the caller, so a batch of assignments can be saved at once.
    """

    def __init__(self, llm: TextGenerator, settings: NotegraphConfig):
        self.llm = llm
        self.settings = settings

    def suggest(self, text: str, graph: CategoryGraph) -> Optional[CategorySuggestions]:
        """Ask the classifier about ``text``; None when it has nothing usable."""
        return request_category_suggestions(
            self.llm,
            text,
            [c.name for c in graph.categories],
            temperature=self.settings.categorize_temperature,
            max_tokens=self.settings.categorize_max_tokens,
        )

    def assign(self, note: Note, graph: CategoryGraph) -> CategoryResult:
        """Categorize ``note`` and overwrite its memberships in ``graph``.

        Never raises for classifier problems; those fall through to the
        keyword-based sources.
        """
        keywords = extract_keywords(note.content, self.settings.max_keywords)
        matches = find_matching_categories(keywords, graph.categories)
        suggestions = self.suggest(note.content, graph)

        if suggestions is not None:
            chosen = self._resolve_suggestions(suggestions, graph)
            source = "llm"
        elif matches:
            chosen = matches
            source = "keyword match"
        elif keywords:
            top = keywords[0]
            category, _ = graph.get_or_create(top[0].upper() + top[1:], level=0)
            chosen = [category]
            source = "top keyword"
        else:
            chosen = []
            source = "none"

        categories = graph.set_note_categories(note.id, [c.id for c in chosen])
        logger.debug(
            "Note %s categorized from %s: %s",
            note.id, source, [c.name for c in categories],
        )
        return CategoryResult(note_id=note.id, categories=categories)

    def _resolve_suggestions(
        self, suggestions: CategorySuggestions, graph: CategoryGraph
    ) -> List[Category]:
        """Map suggestions onto categories and link consecutive levels."""
        resolved: List[Category] = []
        by_level: Dict[int, Category] = {}
        for suggestion in suggestions.categories:
            category, created = graph.get_or_create(suggestion.name, suggestion.level)
            if created:
                logger.info(
                    "Created category '%s' (level %d)", category.name, category.level
                )
            resolved.append(category)
            by_level.setdefault(suggestion.level, category)

        for suggestion, category in zip(suggestions.categories, resolved):
            if suggestion.level == 0:
                continue
            parent = by_level.get(suggestion.level - 1)
            if parent is not None:
                graph.add_hierarchy_edge(parent.id, category.id)
        return resolved

    def rebuild(self, notes: Iterable[Note]) -> Tuple[List[CategoryResult], CategoryGraph]:
        """Categorize ``notes`` in order against a fresh, empty graph.

        Returns:
            Tuple of (per-note results, the new graph).
        """
        graph = CategoryGraph()
        results = [self.assign(note, graph) for note in notes]
        return results, graph
