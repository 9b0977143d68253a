"""In-memory concept graph used for explainable retrieval."""

from __future__ import annotations

import re
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from .schemas import LatticeEdge, LatticeNode, LatticePath, Subgraph

INGESTED_TAG_CONFIDENCE = 0.8
TAG_REINFORCEMENT = 0.05
CO_OCCURRENCE_WEIGHT = 0.3
SOURCE_LINK_WEIGHT = 0.5


def slugify(label: str) -> str:
    return re.sub(r"\s+", "-", label.strip().lower())


class Lattice:
    """Directed, possibly cyclic graph of labelled nodes and weighted edges.

    Edges may reference ids that were never added; traversal skips them.
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, LatticeNode] = {}
        self._edges: List[LatticeEdge] = []
        self._outgoing: Dict[str, List[LatticeEdge]] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def add_node(self, node: LatticeNode) -> None:
        self._nodes[node.id] = node

    def add_edge(self, edge: LatticeEdge) -> None:
        self._edges.append(edge)
        self._outgoing.setdefault(edge.source_id, []).append(edge)

    def has_edge(self, source_id: str, target_id: str, relation_type: str) -> bool:
        return any(
            edge.target_id == target_id and edge.relation_type == relation_type
            for edge in self._outgoing.get(source_id, [])
        )

    def remove_nodes(self, node_ids: Iterable[str]) -> None:
        """Drop the nodes and every edge touching them."""

        doomed = {node_id for node_id in node_ids if node_id in self._nodes}
        if not doomed:
            return
        for node_id in doomed:
            del self._nodes[node_id]
        self._edges = [
            edge
            for edge in self._edges
            if edge.source_id not in doomed and edge.target_id not in doomed
        ]
        self._rebuild_outgoing()

    def _rebuild_outgoing(self) -> None:
        self._outgoing = {}
        for edge in self._edges:
            self._outgoing.setdefault(edge.source_id, []).append(edge)

    def get_node(self, node_id: str) -> Optional[LatticeNode]:
        return self._nodes.get(node_id)

    def get_nodes(self) -> List[LatticeNode]:
        return list(self._nodes.values())

    def get_edges(self) -> List[LatticeEdge]:
        return list(self._edges)

    def _first_matching(self, fragment: str) -> Optional[LatticeNode]:
        return next((node for node in self._nodes.values() if fragment in node.label), None)

    def find_activation_path(self, start_label: str, end_label: str) -> Optional[LatticePath]:
        """Breadth-first search between the first nodes whose labels match.

        Neighbours are expanded in edge-insertion order and the first path to
        reach the end node is returned, even if a later one is more confident.
        """

        start = self._first_matching(start_label)
        end = self._first_matching(end_label)
        if start is None or end is None:
            return None

        queue: Deque[Tuple[LatticeNode, LatticePath]] = deque(
            [(start, LatticePath(nodes=[start], edges=[], confidence=start.confidence))]
        )
        visited: Set[str] = {start.id}
        while queue:
            node, path = queue.popleft()
            if node.id == end.id:
                return path
            for edge in self._outgoing.get(node.id, []):
                target = self._nodes.get(edge.target_id)
                if target is None or target.id in visited:
                    continue
                visited.add(target.id)
                queue.append(
                    (
                        target,
                        LatticePath(
                            nodes=path.nodes + [target],
                            edges=path.edges + [edge],
                            confidence=path.confidence * edge.weight * target.confidence,
                        ),
                    )
                )
        return None

    def get_activated_subgraph(self, query_tokens: Iterable[str]) -> Subgraph:
        tokens = [token.lower() for token in query_tokens if token]
        nodes = [
            node
            for node in self._nodes.values()
            if any(token in node.label.lower() for token in tokens)
        ]
        activated = {node.id for node in nodes}
        edges = [
            edge
            for edge in self._edges
            if edge.source_id in activated and edge.target_id in activated
        ]
        return Subgraph(nodes=nodes, edges=edges)

    def ingest_semantic_tags(self, tags: Iterable[str], source_id: Optional[str] = None) -> List[str]:
        """Add or reinforce concept nodes for ``tags``.

        Returns the ids of the nodes created by this call.
        """

        created: List[LatticeNode] = []
        for tag in tags:
            label = tag.strip()
            if not label:
                continue
            node_id = slugify(label)
            existing = self._nodes.get(node_id)
            if existing is not None:
                existing.confidence = min(1.0, existing.confidence + TAG_REINFORCEMENT)
                continue
            node = LatticeNode(
                id=node_id,
                label=label,
                type="concept",
                confidence=INGESTED_TAG_CONFIDENCE,
            )
            self.add_node(node)
            created.append(node)
            if source_id and source_id in self._nodes and source_id != node_id:
                self.add_edge(
                    LatticeEdge(
                        source_id=source_id,
                        target_id=node_id,
                        relation_type="related_to",
                        weight=SOURCE_LINK_WEIGHT,
                    )
                )

        for idx, first in enumerate(created):
            for second in created[idx + 1 :]:
                self.add_edge(
                    LatticeEdge(
                        source_id=first.id,
                        target_id=second.id,
                        relation_type="co_occurring",
                        weight=CO_OCCURRENCE_WEIGHT,
                    )
                )
        return [node.id for node in created]


__all__ = ["Lattice", "slugify"]
