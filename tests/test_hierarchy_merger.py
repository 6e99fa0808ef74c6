"""Tests for merging the categories of connected notes."""
import pytest

from tests.fakes import ScriptedLlm, categories_json
from notegraph.models.category_graph import CategoryGraph
from notegraph.models.schema import Category, Note
from notegraph.services.hierarchy_merger import HierarchyMerger, names_overlap


@pytest.fixture
def llm():
    return ScriptedLlm()


@pytest.fixture
def merger(llm, settings):
    return HierarchyMerger(llm, settings)


@pytest.fixture
def ml_graph():
    """Two notes categorized as Machine Learning and Deep Learning."""
    graph = CategoryGraph()
    ml = graph.add_category(Category(name="Machine Learning", level=1))
    dl = graph.add_category(Category(name="Deep Learning", level=1))
    source = Note(content="Gradient boosting beats linear models")
    target = Note(content="Transformers dominate sequence tasks")
    graph.set_note_categories(source.id, [ml.id])
    graph.set_note_categories(target.id, [dl.id])
    return graph, source, target, ml, dl


def snapshot(graph):
    return (
        [(c.id, c.name, c.level, c.note_count) for c in graph.categories],
        graph.hierarchy,
        graph.note_category_map,
    )


class TestNamesOverlap:
    """Tests for category-name overlap detection."""

    def test_shared_word(self):
        assert names_overlap(
            [Category(name="Machine Learning")], [Category(name="deep learning")], 0.3
        )

    def test_unrelated_names(self):
        assert not names_overlap([Category(name="Cooking")], [Category(name="Physics")], 0.3)

    def test_threshold_is_strict(self):
        assert not names_overlap(
            [Category(name="Machine Learning")], [Category(name="Deep Learning")], 0.5
        )


class TestMerge:
    """Tests for HierarchyMerger.merge()."""

    def test_creates_shared_parent(self, merger, llm, ml_graph):
        graph, source, target, ml, dl = ml_graph
        llm.queue(categories_json(("Artificial Intelligence", 0), ("Neural Networks", 1)))

        result = merger.merge(source, target, 0.6, graph)

        parent = graph.find_by_name("Artificial Intelligence")
        assert parent is not None
        assert parent.level == 0
        assert parent.note_count == 2
        assert graph.has_edge(parent.id, ml.id)
        assert graph.has_edge(parent.id, dl.id)
        assert graph.find_by_name("Neural Networks") is None
        assert result.parent_category.id == parent.id
        assert result.parent_category.name == "Artificial Intelligence"
        assert (result.source_note_id, result.target_note_id) == (source.id, target.id)
        assert [c.id for c in graph.note_categories(source.id)] == [ml.id, parent.id]

    def test_prompt_contains_both_notes(self, merger, llm, ml_graph):
        graph, source, target, _, _ = ml_graph
        llm.queue(categories_json(("Artificial Intelligence", 0)))

        merger.merge(source, target, 0.6, graph)

        prompt = llm.calls[0]["prompt"]
        assert f"Note 1: {source.content}\nNote 2: {target.content}" in prompt
        assert "[Machine Learning, Deep Learning]" in prompt

    def test_most_general_suggestion_wins(self, merger, llm, ml_graph):
        graph, source, target, _, _ = ml_graph
        llm.queue(categories_json(("Neural Networks", 2), ("Computing", 1), ("Statistics", 1)))

        result = merger.merge(source, target, 0.6, graph)

        assert result.parent_category.name == "Computing"
        assert graph.find_by_name("Computing").level == 0

    def test_existing_parent_is_reused(self, merger, llm, ml_graph):
        graph, source, target, ml, dl = ml_graph
        ai = graph.add_category(Category(name="Artificial Intelligence"))
        llm.queue(categories_json(("artificial intelligence", 0)))

        result = merger.merge(source, target, 0.6, graph)

        assert result.parent_category.id == ai.id
        assert len(graph) == 3

    def test_repeated_merge_adds_no_duplicates(self, merger, llm, ml_graph):
        graph, source, target, _, _ = ml_graph
        llm.queue(
            categories_json(("Artificial Intelligence", 0)),
            categories_json(("Artificial Intelligence", 0)),
        )
        merger.merge(source, target, 0.6, graph)
        first = snapshot(graph)
        merger.merge(source, target, 0.6, graph)
        assert snapshot(graph) == first

    def test_parent_overlapping_child_name_skips_self_edge(self, merger, llm, ml_graph):
        graph, source, target, ml, dl = ml_graph
        llm.queue(categories_json(("Machine Learning", 0)))

        result = merger.merge(source, target, 0.6, graph)

        assert result.parent_category.id == ml.id
        assert not graph.has_edge(ml.id, ml.id)
        assert graph.has_edge(ml.id, dl.id)
        assert ml.note_count == 2


class TestMergeNoOps:
    """Cases where the graph must be left untouched."""

    def test_weak_connection(self, merger, llm, ml_graph):
        graph, source, target, _, _ = ml_graph
        llm.queue(categories_json(("Artificial Intelligence", 0)))
        before = snapshot(graph)
        assert merger.merge(source, target, 0.49, graph) is None
        assert snapshot(graph) == before
        assert llm.calls == []

    def test_threshold_strength_is_enough(self, merger, llm, ml_graph):
        graph, source, target, _, _ = ml_graph
        llm.queue(categories_json(("Artificial Intelligence", 0)))
        assert merger.merge(source, target, 0.5, graph) is not None

    def test_uncategorized_note(self, merger, llm, ml_graph):
        graph, source, _, _, _ = ml_graph
        stranger = Note(content="No categories here")
        before = snapshot(graph)
        assert merger.merge(source, stranger, 0.9, graph) is None
        assert snapshot(graph) == before

    def test_unrelated_categories(self, merger, llm):
        graph = CategoryGraph()
        cooking = graph.add_category(Category(name="Cooking"))
        physics = graph.add_category(Category(name="Physics"))
        source = Note(content="pasta")
        target = Note(content="quarks")
        graph.set_note_categories(source.id, [cooking.id])
        graph.set_note_categories(target.id, [physics.id])
        llm.queue(categories_json(("Everything", 0)))

        assert merger.merge(source, target, 0.9, graph) is None
        assert llm.calls == []

    @pytest.mark.parametrize(
        "response", ["no idea", '{"categories": []}', RuntimeError("backend exploded")]
    )
    def test_unusable_classifier_answer(self, merger, llm, ml_graph, response):
        graph, source, target, _, _ = ml_graph
        llm.queue(response)
        before = snapshot(graph)
        assert merger.merge(source, target, 0.9, graph) is None
        assert snapshot(graph) == before

    def test_unavailable_classifier(self, settings, ml_graph):
        graph, source, target, _, _ = ml_graph
        merger = HierarchyMerger(ScriptedLlm(available=False), settings)
        before = snapshot(graph)
        assert merger.merge(source, target, 0.9, graph) is None
        assert snapshot(graph) == before
