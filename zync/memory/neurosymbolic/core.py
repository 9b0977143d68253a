"""Retrieval-augmented, explainable reasoning over the memory stores."""

from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .lattice import Lattice
from .schemas import (
    DreamReport,
    LatticeEdge,
    LatticeNode,
    LatticePath,
    MemoryNode,
    ReasoningOutcome,
    ReasoningResult,
    Subgraph,
    VectorSearchResult,
)
from .topology import TopologicalMemory
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

Reasoner = Callable[[str, str], ReasoningOutcome]

MIN_KEYWORD_LENGTH = 4
VECTOR_RECALL_TOP_K = 3
GRAPH_RECALL_LIMIT = 10
RECALL_EDGE_WEIGHT = 0.6
THEMATIC_LINK_WEIGHT = 0.4
HYPOTHETICAL_LINK_WEIGHT = 0.2
HYPOTHETICAL_LINK_PROBABILITY = 0.05
AXIOM_CONFIDENCE = 0.98
NO_PRIOR_CONFIDENCE = 0.5

BASE_CONCEPTS = (
    ("n1", "Neural Network", {"category": "AI"}, 0.9),
    ("n2", "Deep Learning", {"category": "AI"}, 0.95),
    ("n3", "Symbolic Logic", {"category": "Math"}, 1.0),
    ("n4", "Neuro-Symbolic AI", {"category": "Hybrid"}, 0.85),
    ("n5", "Explainability", {"importance": "high"}, 0.9),
    ("n6", "Causality", {"category": "Philosophy"}, 0.88),
    ("n7", "Ethics", {"category": "Philosophy"}, 0.92),
    ("n8", "Consciousness", {"category": "Metaphysics"}, 0.6),
    ("n9", "Recursion", {"category": "Math"}, 1.0),
    ("n10", "Entropy", {"category": "Physics"}, 0.99),
)

BASE_RELATIONS = (
    ("n1", "n2", "enables", 0.9),
    ("n1", "n4", "part_of", 0.8),
    ("n3", "n4", "part_of", 0.8),
    ("n4", "n5", "promotes", 0.95),
    ("n6", "n5", "requires", 0.85),
    ("n7", "n1", "constrains", 0.7),
    ("n9", "n8", "models", 0.4),
)


def extract_keywords(query: str) -> List[str]:
    """Whitespace tokens longer than three characters, punctuation trimmed."""

    words = (word.strip(string.punctuation) for word in query.split())
    return [word for word in words if len(word) >= MIN_KEYWORD_LENGTH]


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..."


@dataclass
class NeuroSymbolicCore:
    """Compose the lattice, vector store and topological memory into answers.

    ``reasoner`` synthesises the final trace from a query and a context
    description. When it fails, a locally built trace is returned instead.
    """

    vector_store: VectorStore
    memory: TopologicalMemory
    reasoner: Reasoner
    lattice: Lattice = field(default_factory=Lattice)
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        self._seed_base_knowledge()

    def _seed_base_knowledge(self) -> None:
        for node_id, label, tags, confidence in BASE_CONCEPTS:
            self.lattice.add_node(
                LatticeNode(
                    id=node_id,
                    label=label,
                    type="concept",
                    confidence=confidence,
                    symbolic_tags=dict(tags),
                )
            )
        for source_id, target_id, relation, weight in BASE_RELATIONS:
            self.lattice.add_edge(
                LatticeEdge(
                    source_id=source_id,
                    target_id=target_id,
                    relation_type=relation,
                    weight=weight,
                )
            )

    # ------------------------------------------------------------------
    # Reasoning pipeline
    # ------------------------------------------------------------------
    def reason(self, query: str) -> ReasoningResult:
        """Answer ``query`` over the lattice plus query-scoped context.

        Query concepts, retrieved facts and recalled memories are added to the
        lattice only for the duration of the call.
        """

        keywords = extract_keywords(query)
        retrieved = self._retrieve_vector_memories(query)
        recalled = self._retrieve_graph_memories(keywords)
        dynamic_nodes, scoped_ids = self._inject_context(keywords, retrieved, recalled)
        try:
            subgraph = self.lattice.get_activated_subgraph(keywords)
            if not subgraph.nodes:
                subgraph = Subgraph(nodes=list(dynamic_nodes), edges=[])

            context = self._describe_context(subgraph, retrieved)
            outcome = self._invoke_reasoner(query, context, subgraph)
        finally:
            self.lattice.remove_nodes(scoped_ids)
        return ReasoningResult(
            reasoning_trace=outcome.trace,
            confidence=max(0.0, min(1.0, float(outcome.confidence))),
            graph=subgraph,
        )

    def _retrieve_vector_memories(self, query: str) -> List[VectorSearchResult]:
        try:
            return self.vector_store.search(query, VECTOR_RECALL_TOP_K)
        except Exception as exc:
            logger.warning("Vector recall failed, continuing without it: %s", exc)
            return []

    def _retrieve_graph_memories(self, keywords: Sequence[str]) -> List[MemoryNode]:
        if not keywords:
            return []
        lowered = [keyword.lower() for keyword in keywords]
        matches = [
            node
            for node in self.memory.get_all_nodes()
            if any(keyword in node.content.lower() for keyword in lowered)
        ]
        return matches[:GRAPH_RECALL_LIMIT]

    def _inject_context(
        self,
        keywords: Sequence[str],
        retrieved: Sequence[VectorSearchResult],
        recalled: Sequence[MemoryNode],
    ) -> Tuple[List[LatticeNode], List[str]]:
        dynamic_nodes = [
            LatticeNode(
                id=f"dyn-{idx}",
                label=keyword[:1].upper() + keyword[1:],
                type="concept",
                confidence=0.8,
                symbolic_tags={"category": "Query Concept"},
            )
            for idx, keyword in enumerate(keywords)
        ]
        for idx, result in enumerate(retrieved):
            document = result.document
            dynamic_nodes.append(
                LatticeNode(
                    id=f"rag-{idx}",
                    label=_truncate(document.content, 20),
                    type="entity",
                    confidence=max(0.0, min(1.0, result.score)),
                    symbolic_tags={
                        "category": "Retrieved Fact",
                        "sentiment": document.sentiment or "neutral",
                    },
                    vector=list(document.embedding),
                )
            )
        scoped_ids = [node.id for node in dynamic_nodes]
        for node in dynamic_nodes:
            self.lattice.add_node(node)

        for memory_node in recalled:
            if self.lattice.get_node(memory_node.id) is None:
                self.lattice.add_node(self._memory_to_lattice(memory_node))
                scoped_ids.append(memory_node.id)
            for dynamic in dynamic_nodes:
                if self.lattice.has_edge(memory_node.id, dynamic.id, "recalls"):
                    continue
                self.lattice.add_edge(
                    LatticeEdge(
                        source_id=memory_node.id,
                        target_id=dynamic.id,
                        relation_type="recalls",
                        weight=RECALL_EDGE_WEIGHT,
                    )
                )
        return dynamic_nodes, scoped_ids

    @staticmethod
    def _memory_to_lattice(node: MemoryNode) -> LatticeNode:
        return LatticeNode(
            id=node.id,
            label=_truncate(node.content, 30),
            type="memory",
            confidence=node.confidence,
            symbolic_tags={"category": "Long-Term Memory", "source": "Topological"},
        )

    @staticmethod
    def _describe_context(subgraph: Subgraph, retrieved: Sequence[VectorSearchResult]) -> str:
        concepts = ", ".join(node.label for node in subgraph.nodes)
        relations = ", ".join(
            f"{edge.source_id}->{edge.target_id} ({edge.relation_type})" for edge in subgraph.edges
        )
        facts = "; ".join(result.document.content for result in retrieved)
        return (
            f"Active Concepts: {concepts}\n"
            f"Relationships: {relations}\n"
            f"Retrieved Facts: {facts}"
        )

    def _invoke_reasoner(self, query: str, context: str, subgraph: Subgraph) -> ReasoningOutcome:
        try:
            return self.reasoner(query, context)
        except Exception as exc:
            logger.warning("Reasoning gateway failed, using local trace: %s", exc)
            return self._local_trace(subgraph)

    @staticmethod
    def _local_trace(subgraph: Subgraph) -> ReasoningOutcome:
        lines = ["Neuro-Symbolic Reasoning Trace:"]
        if not subgraph.nodes:
            lines.append("- No existing symbolic priors found. No additional context available.")
            return ReasoningOutcome(trace="\n".join(lines), confidence=NO_PRIOR_CONFIDENCE)

        labels = {node.id: node.label for node in subgraph.nodes}
        lines.append(f"- Activated {len(subgraph.nodes)} concepts: {', '.join(labels.values())}")
        for edge in subgraph.edges:
            source = labels.get(edge.source_id)
            target = labels.get(edge.target_id)
            if source and target:
                lines.append(
                    f"- Inference: {source} --[{edge.relation_type}]--> {target} (Weight: {edge.weight})"
                )
        confidence = sum(node.confidence for node in subgraph.nodes) / len(subgraph.nodes)
        return ReasoningOutcome(trace="\n".join(lines), confidence=confidence)

    # ------------------------------------------------------------------
    # Memory write-back
    # ------------------------------------------------------------------
    def record_turn(
        self,
        user_text: str,
        ai_text: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        parent_id: Optional[str] = None,
        ai_confidence: float = 1.0,
    ) -> str:
        """Store a conversation turn and return the id of its deepest node.

        ``ai_confidence`` is the confidence the reply was produced with. Pass
        the returned id as ``parent_id`` of the next turn to keep the
        conversation in one branch.
        """

        tag_list = [tag for tag in (tags or []) if tag and tag.strip()]
        leaf_id = self.memory.add_memory(user_text, parent_id=parent_id, tags=tag_list)
        if ai_text:
            leaf_id = self.memory.add_memory(
                ai_text, parent_id=leaf_id, confidence=ai_confidence, tags=tag_list
            )

        leaf = self.memory.get_node(leaf_id)
        if leaf is not None:
            self.lattice.add_node(self._memory_to_lattice(leaf))
        if tag_list:
            self.lattice.ingest_semantic_tags(tag_list, source_id=leaf_id)
        return leaf_id

    def reseed_from_memory(self, limit: Optional[int] = None) -> int:
        """Rebuild memory vertices in the lattice from the topological forest."""

        nodes = self.memory.get_all_nodes()
        if limit is not None:
            nodes = sorted(nodes, key=lambda node: node.confidence, reverse=True)[:limit]
        seeded = {node.id for node in nodes}
        for node in nodes:
            self.lattice.add_node(self._memory_to_lattice(node))
        for node in nodes:
            if node.parent_id in seeded:
                self.lattice.add_edge(
                    LatticeEdge(
                        source_id=node.parent_id,
                        target_id=node.id,
                        relation_type="leads_to",
                        weight=node.confidence,
                    )
                )
            if node.tags:
                self.lattice.ingest_semantic_tags(sorted(node.tags), source_id=node.id)
        return len(nodes)

    def find_connection(self, start_label: str, end_label: str) -> Optional[LatticePath]:
        return self.lattice.find_activation_path(start_label, end_label)

    # ------------------------------------------------------------------
    # Maintenance and introspection
    # ------------------------------------------------------------------
    def dream(self) -> DreamReport:
        """Speculatively link lattice nodes that are not yet connected.

        Pairs sharing a symbolic tag value are linked thematically; other
        pairs get a weak hypothetical link with a small probability.
        """

        report = DreamReport()
        nodes = self.lattice.get_nodes()
        connected = {frozenset((edge.source_id, edge.target_id)) for edge in self.lattice.get_edges()}

        for idx, first in enumerate(nodes):
            for second in nodes[idx + 1 :]:
                pair = frozenset((first.id, second.id))
                if pair in connected:
                    continue
                shared = [
                    key
                    for key, value in first.symbolic_tags.items()
                    if second.symbolic_tags.get(key) == value
                ]
                if shared:
                    relation, weight = "thematically_linked", THEMATIC_LINK_WEIGHT
                    insight = (
                        f"Linked [{first.label}] and [{second.label}] via shared context: "
                        f"{', '.join(shared)}"
                    )
                elif self.rng.random() < HYPOTHETICAL_LINK_PROBABILITY:
                    relation, weight = "hypothetical_link", HYPOTHETICAL_LINK_WEIGHT
                    insight = f"Hypothesized connection between [{first.label}] and [{second.label}]"
                else:
                    continue
                self.lattice.add_edge(
                    LatticeEdge(
                        source_id=first.id,
                        target_id=second.id,
                        relation_type=relation,
                        weight=weight,
                    )
                )
                connected.add(pair)
                report.new_edges += 1
                report.insights.append(insight)

        logger.info("Dream pass created %s new edges", report.new_edges)
        return report

    def validate_consistency(self, content: str) -> List[str]:
        """Flag denials of axioms and conclusions that restate their premise."""

        issues: List[str] = []
        lowered = content.lower()
        for node in self.lattice.get_nodes():
            if node.confidence <= AXIOM_CONFIDENCE:
                continue
            label = node.label.lower()
            if f"not {label}" in lowered or f"{label} is false" in lowered:
                issues.append(
                    f"Contradiction detected: Content denies high-confidence axiom [{node.label}]."
                )

        if "therefore" in lowered and "because" in lowered:
            premise, conclusion = lowered.split("therefore", 1)
            conclusion = conclusion.strip().rstrip(".!?").strip()
            if conclusion and conclusion in premise:
                issues.append("Potential Circular Logic detected: Conclusion appears in Premise.")
        return issues

    def simulate_counterfactuals(self, query: str) -> List[str]:
        nodes = self.lattice.get_nodes()
        scenarios: List[str] = []

        confident = [node for node in nodes if node.confidence > 0.9]
        if confident:
            target = self.rng.choice(confident)
            scenarios.append(f"Counterfactual: What if [{target.label}] was FALSE? (Skeptic Persona)")

        if len(nodes) >= 2:
            scenarios.append(
                f"Counterfactual: What if [{nodes[0].label}] implies [{nodes[1].label}]? (Visionary Persona)"
            )

        subject = f" for '{query.strip()}'" if query and query.strip() else ""
        scenarios.append(
            "Counterfactual: If we ignore resource constraints, how does the solution space"
            f"{subject} expand? (Engineer Persona)"
        )
        return scenarios


__all__ = ["NeuroSymbolicCore", "extract_keywords"]
