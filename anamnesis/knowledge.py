"""Concept knowledge graph.

Nodes are keyed by a normalized concept name and persisted through a
:class:`~anamnesis.storage.base.GraphStore`, which is the source of
truth. ``KnowledgeGraph`` keeps a read-through node cache on top; it can be
dropped at any time with :meth:`KnowledgeGraph.invalidate`.
"""

import logging
import re
from typing import Dict, List, Optional, Union

from anamnesis import config
from anamnesis.errors import ValidationError
from anamnesis.storage.base import GraphStore
from anamnesis.text import extract_entities, extract_keywords, jaccard, tokenize
from anamnesis.types import (
    KnowledgeNode,
    KnowledgeRelationship,
    RelationshipType,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

INFERENCE_TEMPLATES = {
    RelationshipType.IS_A: "{subject} is a type of {target}",
    RelationshipType.PART_OF: "{subject} is part of {target}",
    RelationshipType.CAUSES: "{subject} may cause {target}",
    RelationshipType.IMPLIES: "{subject} implies {target}",
    RelationshipType.RELATED_TO: "{subject} is related to {target}",
    RelationshipType.CONTRADICTS: "{subject} contradicts {target}",
}

CONFIDENCE_FLOOR = 0.1


def normalize_concept(name: str) -> str:
    """Lowercase, trim and turn whitespace runs into underscores."""
    return re.sub(r"\s+", "_", name.strip().lower())


def display_concept(concept: str) -> str:
    return concept.replace("_", " ")


def concept_similarity(a: KnowledgeNode, b: KnowledgeNode) -> float:
    """Keyword Jaccard of the two descriptions (concept names included)."""
    words_a = extract_keywords(f"{display_concept(a.concept)} {a.description}", 20)
    words_b = extract_keywords(f"{display_concept(b.concept)} {b.description}", 20)
    return jaccard(words_a, words_b)


class KnowledgeGraph:
    """Concept nodes, typed edges, traversal and simple inference."""

    def __init__(self, store: GraphStore, inline_discovery: bool = True):
        self.store = store
        self.inline_discovery = inline_discovery
        self._cache: Dict[str, KnowledgeNode] = {}

    # === Cache ===

    def invalidate(self) -> None:
        """Drop the node cache; the next read goes to the store."""
        self._cache.clear()

    def get(self, concept: str) -> Optional[KnowledgeNode]:
        key = normalize_concept(concept)
        node = self._cache.get(key)
        if node is None:
            node = self.store.get_node(key)
            if node is not None:
                self._cache[key] = node
        return node

    # === Writes ===

    def add_concept(
        self,
        name: str,
        description: str = "",
        sources: Optional[List[str]] = None,
        confidence: float = 0.8,
        discover: Optional[bool] = None,
    ) -> KnowledgeNode:
        """Upsert a concept by normalized key.

        An existing node keeps its id; its description and last_verified
        are refreshed. A new node runs relationship discovery unless
        disabled.
        """
        key = normalize_concept(name)
        if not key:
            raise ValidationError("concept name cannot be empty")
        existed = self.get(key) is not None
        node = self.store.upsert_node(
            KnowledgeNode(
                id=new_id(),
                concept=key,
                description=description,
                confidence=confidence,
                sources=list(sources or ["user_input"]),
                last_verified=utc_now(),
            )
        )
        self._cache[key] = node
        if not existed:
            logger.debug(f"Added concept {key}")
            run_discovery = self.inline_discovery if discover is None else discover
            if run_discovery:
                self.discover_relationships(key)
        return node

    def link_concepts(
        self,
        concept_a: str,
        concept_b: str,
        relationship: Union[RelationshipType, str],
        strength: float = 0.5,
        bidirectional: bool = False,
    ) -> None:
        """Write the edge a -> b (and b -> a when bidirectional).

        Missing endpoints are created. Store errors propagate.
        """
        rel_type = RelationshipType(relationship)
        key_a, key_b = normalize_concept(concept_a), normalize_concept(concept_b)
        if not key_a or not key_b:
            raise ValidationError("both concepts are required")
        if key_a == key_b:
            raise ValidationError("cannot link a concept to itself")
        for key in (key_a, key_b):
            if self.get(key) is None:
                self.add_concept(key, f"Auto-generated concept: {display_concept(key)}", discover=False)

        self.store.link_edges(
            key_a,
            [KnowledgeRelationship(target=key_b, type=rel_type, strength=strength, bidirectional=bidirectional)],
        )
        if bidirectional:
            self.store.link_edges(
                key_b,
                [KnowledgeRelationship(target=key_a, type=rel_type, strength=strength, bidirectional=True)],
            )
        self._cache.pop(key_a, None)
        self._cache.pop(key_b, None)

    # === Reads ===

    def find_related_concepts(
        self, concept: str, max_depth: int = config.DEFAULT_TRAVERSAL_DEPTH
    ) -> List[KnowledgeNode]:
        """Nodes reachable within ``max_depth`` hops, highest confidence first."""
        if max_depth < 1:
            return []
        reached = self.store.traverse(normalize_concept(concept), max_depth)
        return sorted(reached, key=lambda n: n.confidence, reverse=True)

    def _candidate_keys(self, text: str) -> List[str]:
        candidates = [normalize_concept(e.name) for e in extract_entities(text)]
        candidates += [t for t in tokenize(text) if len(t) > 2]
        return list(dict.fromkeys(c for c in candidates if c))

    def infer_knowledge(self, premise: str) -> List[str]:
        """Natural-language inferences from the concepts a premise mentions."""
        inferences: List[str] = []
        for key in self._candidate_keys(premise):
            start = self.get(key)
            if start is None:
                continue
            subject = display_concept(start.concept)
            for node in [start] + self.find_related_concepts(key, config.INFERENCE_DEPTH):
                for edge in node.relationships:
                    if edge.target == start.concept:
                        continue
                    if self.get(edge.target) is None:
                        continue
                    sentence = INFERENCE_TEMPLATES[edge.type].format(
                        subject=subject, target=display_concept(edge.target)
                    )
                    if sentence not in inferences:
                        inferences.append(sentence)
                    if len(inferences) >= config.MAX_INFERENCES:
                        return inferences
        return inferences

    def verify_fact(self, statement: str) -> Dict[str, object]:
        """Average confidence of known concepts mentioned in ``statement``."""
        total = 0.0
        matched = 0
        sources: List[str] = []
        for key in self._candidate_keys(statement):
            node = self.get(key)
            if node is None:
                continue
            total += node.confidence
            matched += 1
            sources.extend(node.sources)
        average = total / matched if matched else 0.0
        return {
            "verified": average > config.VERIFY_CONFIDENCE_THRESHOLD,
            "confidence": round(average, 4),
            "sources": list(dict.fromkeys(sources)),
        }

    # === Maintenance ===

    def discover_relationships(self, concept: Optional[str] = None) -> int:
        """Link similar concepts with bidirectional RELATED_TO edges.

        Compares one concept (or every concept when ``concept`` is None)
        against all nodes, so it is O(n) per concept. Returns the number of
        links written.
        """
        nodes = self.store.all_nodes()
        if concept is not None:
            key = normalize_concept(concept)
            sources = [n for n in nodes if n.concept == key]
        else:
            sources = nodes
        linked = 0
        for node in sources:
            for other in nodes:
                if other.concept == node.concept:
                    continue
                if node.edge_to(other.concept, RelationshipType.RELATED_TO):
                    continue
                similarity = concept_similarity(node, other)
                if similarity > config.CONCEPT_SIMILARITY_THRESHOLD:
                    self.link_concepts(
                        node.concept,
                        other.concept,
                        RelationshipType.RELATED_TO,
                        strength=similarity,
                        bidirectional=True,
                    )
                    node.relationships.append(
                        KnowledgeRelationship(other.concept, RelationshipType.RELATED_TO, similarity, True)
                    )
                    other.relationships.append(
                        KnowledgeRelationship(node.concept, RelationshipType.RELATED_TO, similarity, True)
                    )
                    linked += 1
        if linked:
            logger.info(f"Discovered {linked} concept relationships")
        return linked

    def resolve_contradictions(self) -> int:
        """Penalize both endpoints of each CONTRADICTS edge by 0.8x.

        An edge is re-verified before it is applied: both endpoints must
        still exist and the edge must not have been penalized already, so
        repeated sweeps do not compound. Re-linking a contradiction resets
        it. Returns the number of contradictions applied.
        """
        applied = 0
        handled = set()
        for node in self.store.all_nodes():
            for edge in node.relationships:
                if edge.type != RelationshipType.CONTRADICTS or edge.penalized:
                    continue
                pair = frozenset((node.concept, edge.target))
                if pair in handled:
                    continue
                current = self.store.get_node(node.concept)
                target = self.store.get_node(edge.target)
                if current is None or target is None:
                    logger.debug(f"Skipping stale contradiction {node.concept} -> {edge.target}")
                    continue
                handled.add(pair)
                logger.info(f"Contradiction detected: {current.concept} contradicts {target.concept}")
                for endpoint in (current, target):
                    self.store.set_confidence(
                        endpoint.concept,
                        max(CONFIDENCE_FLOOR, endpoint.confidence * config.CONTRADICTION_PENALTY),
                    )
                self._mark_penalized(current.concept, target.concept)
                self._mark_penalized(target.concept, current.concept)
                applied += 1
        if applied:
            self.invalidate()
        return applied

    def _mark_penalized(self, source: str, target: str) -> None:
        node = self.store.get_node(source)
        if node is None:
            return
        edge = node.edge_to(target, RelationshipType.CONTRADICTS)
        if edge is None:
            return
        edge.penalized = True
        self.store.link_edges(source, [edge])

    def get_graph_stats(self) -> Dict[str, object]:
        nodes = self.store.all_nodes()
        total_edges = sum(len(n.relationships) for n in nodes)
        top = sorted(nodes, key=lambda n: len(n.relationships), reverse=True)[:10]
        return {
            "total_concepts": len(nodes),
            "total_relationships": total_edges,
            "average_connections": total_edges / len(nodes) if nodes else 0.0,
            "top_concepts": [n.concept for n in top],
        }
