"""Tests for the concept knowledge graph."""

import pytest

from anamnesis.errors import ValidationError
from anamnesis.knowledge import KnowledgeGraph, normalize_concept
from anamnesis.types import RelationshipType


@pytest.fixture
def graph(storage):
    return KnowledgeGraph(storage)


class TestConcepts:
    def test_normalize(self):
        assert normalize_concept("  Machine   Learning ") == "machine_learning"

    def test_add_concept_is_idempotent(self, graph, storage):
        first = graph.add_concept("Python", "a programming language")
        second = graph.add_concept("python", "a popular programming language")
        assert first.id == second.id
        assert len(storage.all_nodes()) == 1
        assert storage.get_node("python").description == "a popular programming language"

    def test_existing_node_keeps_description_when_blank(self, graph, storage):
        graph.add_concept("rust", "a systems language")
        graph.add_concept("rust")
        assert storage.get_node("rust").description == "a systems language"

    def test_empty_name(self, graph):
        with pytest.raises(ValidationError):
            graph.add_concept("   ")


class TestLinking:
    def test_missing_endpoints_are_created(self, graph, storage):
        graph.link_concepts("Python", "Programming Language", RelationshipType.IS_A, 0.9)
        target = storage.get_node("programming_language")
        assert target.description == "Auto-generated concept: programming language"
        edge = storage.get_node("python").relationships[0]
        assert (edge.target, edge.type, edge.strength) == ("programming_language", RelationshipType.IS_A, 0.9)
        assert target.relationships == []

    def test_bidirectional_mirrors(self, graph, storage):
        graph.link_concepts("tea", "coffee", "related_to", bidirectional=True)
        assert storage.get_node("coffee").edge_to("tea", RelationshipType.RELATED_TO) is not None

    def test_self_link_rejected(self, graph):
        with pytest.raises(ValidationError):
            graph.link_concepts("loop", "Loop", "related_to")

    def test_unknown_relationship(self, graph):
        with pytest.raises(ValueError):
            graph.link_concepts("a", "b", "befriends")

    def test_store_failure_propagates(self, graph, storage, monkeypatch):
        def broken(source, edges):
            raise RuntimeError("disk full")

        monkeypatch.setattr(storage, "link_edges", broken)
        with pytest.raises(RuntimeError, match="disk full"):
            graph.link_concepts("a", "b", "causes")


class TestTraversal:
    def test_cycle_terminates_and_excludes_start(self, graph):
        graph.link_concepts("a", "b", "related_to")
        graph.link_concepts("b", "c", "related_to")
        graph.link_concepts("c", "a", "related_to")
        related = graph.find_related_concepts("a", max_depth=10)
        assert sorted(n.concept for n in related) == ["b", "c"]

    def test_depth_bound(self, graph):
        graph.link_concepts("a", "b", "part_of")
        graph.link_concepts("b", "c", "part_of")
        assert [n.concept for n in graph.find_related_concepts("a", max_depth=1)] == ["b"]
        assert graph.find_related_concepts("a", max_depth=0) == []

    def test_sorted_by_confidence(self, graph, storage):
        graph.link_concepts("hub", "low", "related_to")
        graph.link_concepts("hub", "high", "related_to")
        storage.set_confidence("low", 0.2)
        storage.set_confidence("high", 0.95)
        assert [n.concept for n in graph.find_related_concepts("hub")] == ["high", "low"]


class TestInference:
    def test_infer_from_premise(self, graph):
        graph.link_concepts("python", "programming language", "is_a")
        graph.link_concepts("python", "bugs", "causes")
        inferences = graph.infer_knowledge("Python is great")
        assert "python is a type of programming language" in inferences
        assert "python may cause bugs" in inferences

    def test_infer_unknown_concepts(self, graph):
        assert graph.infer_knowledge("nothing known here") == []

    def test_verify_fact(self, graph):
        graph.add_concept("paris", "capital of france", sources=["atlas"])
        graph.add_concept("france", "a country", sources=["atlas"])
        result = graph.verify_fact("Paris is in France")
        assert result == {"verified": True, "confidence": 0.8, "sources": ["atlas"]}

    def test_verify_unknown(self, graph):
        assert graph.verify_fact("Unicorns exist") == {"verified": False, "confidence": 0.0, "sources": []}


class TestMaintenance:
    def test_discovery_links_similar_concepts(self, graph, storage):
        graph.add_concept("neural network", "layers of neurons")
        graph.add_concept("neural networks", "layers of neurons")
        graph.add_concept("gardening", "growing tomatoes outside")
        node = storage.get_node("neural_network")
        assert node.edge_to("neural_networks", RelationshipType.RELATED_TO) is not None
        assert node.edge_to("gardening", RelationshipType.RELATED_TO) is None

    def test_discovery_can_be_deferred(self, storage):
        graph = KnowledgeGraph(storage, inline_discovery=False)
        graph.add_concept("neural network", "layers of neurons")
        graph.add_concept("neural networks", "layers of neurons")
        assert storage.get_node("neural_network").relationships == []
        assert graph.discover_relationships() == 1

    def test_contradictions_do_not_compound(self, graph, storage):
        graph.link_concepts("earth is flat", "earth is round", "contradicts")
        assert graph.resolve_contradictions() == 1
        assert storage.get_node("earth_is_flat").confidence == pytest.approx(0.64)
        assert storage.get_node("earth_is_round").confidence == pytest.approx(0.64)
        assert graph.resolve_contradictions() == 0
        assert storage.get_node("earth_is_flat").confidence == pytest.approx(0.64)

    def test_relinking_resets_contradiction(self, graph, storage):
        graph.link_concepts("a", "b", "contradicts")
        graph.resolve_contradictions()
        graph.link_concepts("a", "b", "contradicts")
        assert graph.resolve_contradictions() == 1
        assert storage.get_node("a").confidence == pytest.approx(0.512)

    def test_confidence_floor(self, graph, storage):
        graph.add_concept("shaky", confidence=0.11)
        graph.link_concepts("shaky", "solid", "contradicts")
        graph.resolve_contradictions()
        assert storage.get_node("shaky").confidence == pytest.approx(0.1)

    def test_cache_is_read_through(self, graph, storage):
        graph.add_concept("cached")
        storage.set_confidence("cached", 0.3)
        assert graph.get("cached").confidence == pytest.approx(0.8)
        graph.invalidate()
        assert graph.get("cached").confidence == pytest.approx(0.3)

    def test_graph_stats(self, graph):
        graph.link_concepts("a", "b", "related_to", bidirectional=True)
        stats = graph.get_graph_stats()
        assert stats["total_concepts"] == 2
        assert stats["total_relationships"] == 2
        assert stats["average_connections"] == 1.0
