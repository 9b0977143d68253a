from __future__ import annotations

import random
from typing import List, Tuple

import pytest

from zync.memory.neurosymbolic.core import NeuroSymbolicCore, extract_keywords
from zync.memory.neurosymbolic.schemas import ReasoningOutcome
from zync.memory.neurosymbolic.topology import TopologicalMemory
from zync.memory.neurosymbolic.vector_store import VectorStore


class FakeReasoner:
    def __init__(self, confidence: float = 0.9) -> None:
        self.confidence = confidence
        self.calls: List[Tuple[str, str]] = []

    def __call__(self, query: str, context: str) -> ReasoningOutcome:
        self.calls.append((query, context))
        return ReasoningOutcome(trace="model trace", confidence=self.confidence)


class BrokenReasoner:
    def __call__(self, query: str, context: str) -> ReasoningOutcome:
        raise ConnectionError("gateway unreachable")


class BrokenVectorStore:
    def search(self, query: str, top_k: int = 3):
        raise RuntimeError("vector backend down")


class FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def reasoner() -> FakeReasoner:
    return FakeReasoner()


@pytest.fixture
def core(vector_store: VectorStore, memory: TopologicalMemory, reasoner: FakeReasoner) -> NeuroSymbolicCore:
    return NeuroSymbolicCore(vector_store, memory, reasoner, rng=FixedRandom(0.99))


def test_extract_keywords_drops_short_words_and_punctuation() -> None:
    assert extract_keywords("Why is the Neural Network, in short, opaque?") == [
        "Neural",
        "Network",
        "short",
        "opaque",
    ]
    assert extract_keywords("a b c") == []


def test_reason_activates_base_concepts_and_retrieved_facts(
    core: NeuroSymbolicCore, vector_store: VectorStore, reasoner: FakeReasoner
) -> None:
    vector_store.add("Neural networks learn representations")

    result = core.reason("Tell me about Neural Network basics")

    assert result.reasoning_trace == "model trace"
    assert result.confidence == pytest.approx(0.9)
    graph_ids = result.graph.node_ids()
    assert "n1" in graph_ids
    assert "dyn-0" in graph_ids

    assert len(reasoner.calls) == 1
    query, context = reasoner.calls[0]
    assert query == "Tell me about Neural Network basics"
    assert context.startswith("Active Concepts: ")
    assert "Neural Network" in context
    assert "Retrieved Facts: Neural networks learn representations" in context

    rag = next(node for node in result.graph.nodes if node.id == "rag-0")
    assert rag.type == "entity"
    assert rag.label == "Neural networks lear..."
    assert rag.symbolic_tags["category"] == "Retrieved Fact"


def test_reason_without_keywords_uses_injected_nodes(core: NeuroSymbolicCore, vector_store: VectorStore) -> None:
    vector_store.add("Stored fact about nothing in particular")

    result = core.reason("hey")

    assert [node.id for node in result.graph.nodes] == ["rag-0"]
    assert result.graph.edges == []


def test_reason_falls_back_to_local_trace(vector_store: VectorStore, memory: TopologicalMemory) -> None:
    core = NeuroSymbolicCore(vector_store, memory, BrokenReasoner())

    result = core.reason("Symbolic Logic")

    assert result.reasoning_trace.startswith("Neuro-Symbolic Reasoning Trace:")
    assert "Symbolic Logic --[part_of]--> Neuro-Symbolic AI" in result.reasoning_trace
    assert result.confidence == pytest.approx((1.0 + 0.85 + 0.8 + 0.8) / 4)


def test_local_trace_without_priors(vector_store: VectorStore, memory: TopologicalMemory) -> None:
    core = NeuroSymbolicCore(vector_store, memory, BrokenReasoner())

    result = core.reason("so")

    assert result.graph.nodes == []
    assert "No existing symbolic priors found" in result.reasoning_trace
    assert result.confidence == pytest.approx(0.5)


def test_reason_clamps_confidence(vector_store: VectorStore, memory: TopologicalMemory) -> None:
    core = NeuroSymbolicCore(vector_store, memory, FakeReasoner(confidence=1.7))
    assert core.reason("Entropy").confidence == 1.0


def test_reason_survives_vector_failure(memory: TopologicalMemory, reasoner: FakeReasoner) -> None:
    core = NeuroSymbolicCore(BrokenVectorStore(), memory, reasoner)  # type: ignore[arg-type]

    result = core.reason("Explainability matters")

    assert "n5" in result.graph.node_ids()
    assert reasoner.calls[0][1].endswith("Retrieved Facts: ")


def test_reason_links_recalled_memories(core: NeuroSymbolicCore, memory: TopologicalMemory) -> None:
    node_id = memory.add_memory("Quantum entanglement notes", confidence=0.7)

    result = core.reason("entanglement")

    assert result.graph.node_ids() == {"dyn-0", node_id}
    recalled = next(node for node in result.graph.nodes if node.id == node_id)
    assert recalled.type == "memory"
    assert recalled.label == "Quantum entanglement notes..."
    assert recalled.symbolic_tags["category"] == "Long-Term Memory"
    assert [(edge.source_id, edge.target_id, edge.relation_type, edge.weight) for edge in result.graph.edges] == [
        (node_id, "dyn-0", "recalls", 0.6)
    ]


def test_query_context_does_not_leak_into_later_calls(core: NeuroSymbolicCore) -> None:
    base_ids = {node.id for node in core.lattice.get_nodes()}
    base_edges = len(core.lattice.get_edges())

    core.reason("alpha bravo charlie delta")
    result = core.reason("delta")

    assert [(node.id, node.label) for node in result.graph.nodes] == [("dyn-0", "Delta")]
    assert {node.id for node in core.lattice.get_nodes()} == base_ids
    assert len(core.lattice.get_edges()) == base_edges


def test_repeated_recall_does_not_duplicate_edges(core: NeuroSymbolicCore, memory: TopologicalMemory) -> None:
    node_id = memory.add_memory("Quantum entanglement notes", confidence=0.7)
    base_edges = len(core.lattice.get_edges())

    for _ in range(3):
        result = core.reason("entanglement")
        recalls = [edge for edge in result.graph.edges if edge.relation_type == "recalls"]
        assert [(edge.source_id, edge.target_id) for edge in recalls] == [(node_id, "dyn-0")]

    assert len(core.lattice.get_edges()) == base_edges
    assert core.lattice.get_node(node_id) is None


def test_reason_keeps_recorded_memories_in_lattice(core: NeuroSymbolicCore) -> None:
    leaf_id = core.record_turn("Notes on entanglement experiments")

    result = core.reason("entanglement")

    assert leaf_id in result.graph.node_ids()
    assert core.lattice.get_node(leaf_id) is not None
    assert not [edge for edge in core.lattice.get_edges() if edge.relation_type == "recalls"]


def test_dream_links_shared_context_only(core: NeuroSymbolicCore) -> None:
    report = core.dream()

    assert report.new_edges == 2
    assert report.insights == [
        "Linked [Symbolic Logic] and [Recursion] via shared context: category",
        "Linked [Causality] and [Ethics] via shared context: category",
    ]
    thematic = [edge for edge in core.lattice.get_edges() if edge.relation_type == "thematically_linked"]
    assert [(edge.source_id, edge.target_id, edge.weight) for edge in thematic] == [
        ("n3", "n9", 0.4),
        ("n6", "n7", 0.4),
    ]

    assert core.dream().new_edges == 0


def test_dream_hypothesizes_every_free_pair(vector_store: VectorStore, memory: TopologicalMemory) -> None:
    core = NeuroSymbolicCore(vector_store, memory, FakeReasoner(), rng=FixedRandom(0.0))

    report = core.dream()

    assert report.new_edges == 45 - 7
    hypothetical = [edge for edge in core.lattice.get_edges() if edge.relation_type == "hypothetical_link"]
    assert len(hypothetical) == 36
    assert all(edge.weight == pytest.approx(0.2) for edge in hypothetical)
    assert core.dream().new_edges == 0


def test_validate_consistency_flags_axiom_denials(core: NeuroSymbolicCore) -> None:
    assert core.validate_consistency("Entropy is false") == [
        "Contradiction detected: Content denies high-confidence axiom [Entropy]."
    ]
    assert core.validate_consistency("This is not Recursion at all") == [
        "Contradiction detected: Content denies high-confidence axiom [Recursion]."
    ]
    assert core.validate_consistency("Deep Learning is false") == []


def test_validate_consistency_flags_circular_logic(core: NeuroSymbolicCore) -> None:
    circular = "The sky is blue because the sky is blue, therefore the sky is blue."
    assert core.validate_consistency(circular) == [
        "Potential Circular Logic detected: Conclusion appears in Premise."
    ]
    assert core.validate_consistency("It rained because clouds formed, therefore the ground is wet.") == []


def test_simulate_counterfactuals_returns_three_personas(
    vector_store: VectorStore, memory: TopologicalMemory
) -> None:
    core = NeuroSymbolicCore(vector_store, memory, FakeReasoner(), rng=random.Random(7))

    skeptic, visionary, engineer = core.simulate_counterfactuals("scale the cluster")

    confident = {"Deep Learning", "Symbolic Logic", "Ethics", "Recursion", "Entropy"}
    assert skeptic.endswith("was FALSE? (Skeptic Persona)")
    assert skeptic.split("[")[1].split("]")[0] in confident
    assert visionary == "Counterfactual: What if [Neural Network] implies [Deep Learning]? (Visionary Persona)"
    assert "for 'scale the cluster'" in engineer
    assert engineer.endswith("(Engineer Persona)")


def test_record_turn_stores_branch_and_tags(core: NeuroSymbolicCore, memory: TopologicalMemory) -> None:
    leaf_id = core.record_turn("User asks about graphs", "Assistant explains graphs", tags=["Graph Theory", " "])

    leaf = memory.get_node(leaf_id)
    assert leaf.content == "Assistant explains graphs"
    assert leaf.tags == {"Graph Theory"}
    user = memory.get_node(leaf.parent_id)
    assert user.content == "User asks about graphs"

    assert core.lattice.get_node(leaf_id).type == "memory"
    assert core.lattice.get_node("graph-theory").label == "Graph Theory"
    related = [edge for edge in core.lattice.get_edges() if edge.relation_type == "related_to"]
    assert [(edge.source_id, edge.target_id) for edge in related] == [(leaf_id, "graph-theory")]

    follow_up = core.record_turn("And trees?", parent_id=leaf_id)
    assert [node.id for node in memory.get_trace(follow_up)] == [user.id, leaf_id, follow_up]


def test_record_turn_keeps_reply_confidence(core: NeuroSymbolicCore, memory: TopologicalMemory) -> None:
    leaf_id = core.record_turn("Is the bridge safe?", "Probably, pending inspection", ai_confidence=0.72)

    leaf = memory.get_node(leaf_id)
    assert leaf.confidence == pytest.approx(0.72)
    assert memory.get_node(leaf.parent_id).confidence == 1.0
    assert core.lattice.get_node(leaf_id).confidence == pytest.approx(0.72)


def test_reseed_from_memory(vector_store: VectorStore, memory: TopologicalMemory) -> None:
    root = memory.add_memory("Root thought", confidence=0.9)
    child = memory.add_memory("Child thought", parent_id=root, confidence=0.6, tags=["alpha"])

    core = NeuroSymbolicCore(vector_store, memory, FakeReasoner())
    assert core.reseed_from_memory() == 2

    leads_to = [edge for edge in core.lattice.get_edges() if edge.relation_type == "leads_to"]
    assert [(edge.source_id, edge.target_id, edge.weight) for edge in leads_to] == [(root, child, 0.6)]
    assert core.lattice.get_node("alpha") is not None

    fresh = NeuroSymbolicCore(vector_store, memory, FakeReasoner())
    assert fresh.reseed_from_memory(limit=1) == 1
    assert fresh.lattice.get_node(root) is not None
    assert fresh.lattice.get_node(child) is None


def test_find_connection_walks_base_relations(core: NeuroSymbolicCore) -> None:
    path = core.find_connection("Neural Network", "Explainability")

    assert [node.id for node in path.nodes] == ["n1", "n4", "n5"]
    assert path.confidence == pytest.approx(0.9 * 0.8 * 0.85 * 0.95 * 0.9)
    assert core.find_connection("Explainability", "Neural Network") is None
