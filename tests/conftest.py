from __future__ import annotations

import re
import zlib
from typing import Iterable, Iterator, List

import pytest

from zync.memory.neurosymbolic.storage import CollectionStore
from zync.memory.neurosymbolic.topology import TopologicalMemory
from zync.memory.neurosymbolic.vector_store import VectorStore

HOUR_MS = 3600 * 1000.0
DAY_MS = 24 * HOUR_MS


class FakeClock:
    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, *, hours: float = 0.0, days: float = 0.0) -> None:
        self.now += hours * HOUR_MS + days * DAY_MS


class HashingEmbedder:
    """Bag-of-words vectors: each lower-cased word bumps one hashed slot."""

    def __init__(self, dimensions: int = 64) -> None:
        self.dimensions = dimensions
        self.calls: List[str] = []

    def __call__(self, text: str) -> List[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimensions
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vector[zlib.crc32(word.encode("utf-8")) % self.dimensions] += 1.0
        return vector

    def embed(self, texts: Iterable[str]) -> List[List[float]]:
        return [self(text) for text in texts]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> Iterator[CollectionStore]:
    store = CollectionStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def vector_store(storage: CollectionStore, embedder: HashingEmbedder, clock: FakeClock) -> VectorStore:
    return VectorStore(storage, embedder, clock=clock)


@pytest.fixture
def memory(storage: CollectionStore, clock: FakeClock) -> Iterator[TopologicalMemory]:
    topology = TopologicalMemory(storage, clock=clock)
    yield topology
    topology.close()


def assert_tree_invariant(memory: TopologicalMemory) -> None:
    nodes = {node.id: node for node in memory.get_all_nodes()}
    seen_children: List[str] = []
    for node in nodes.values():
        for child_id in node.children_ids:
            assert child_id in nodes, f"{node.id} lists missing child {child_id}"
            assert nodes[child_id].parent_id == node.id
            seen_children.append(child_id)
    assert len(seen_children) == len(set(seen_children))
    for node in nodes.values():
        if node.parent_id is None:
            assert node.id not in seen_children
        else:
            assert node.parent_id in nodes
            assert node.id in nodes[node.parent_id].children_ids
