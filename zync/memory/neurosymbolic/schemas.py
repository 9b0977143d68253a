"""Typed data structures used by the neuro-symbolic memory engine."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Set

SENTIMENTS = ("positive", "neutral", "negative", "analytical")
LATTICE_NODE_TYPES = ("concept", "entity", "memory", "ghost")


def now_ms() -> float:
    """Wall-clock time in milliseconds."""

    return time.time() * 1000.0


@dataclass
class VectorDocument:
    """A piece of text stored together with its embedding."""

    id: str
    content: str
    embedding: List[float]
    metadata: MutableMapping[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=now_ms)
    sentiment: Optional[str] = None

    def __post_init__(self) -> None:
        if self.sentiment is not None and self.sentiment not in SENTIMENTS:
            raise ValueError(f"Unsupported sentiment '{self.sentiment}'")

    def to_payload(self) -> Mapping[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "VectorDocument":
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            embedding=[float(x) for x in data.get("embedding") or []],
            metadata=dict(data.get("metadata") or {}),
            timestamp=float(data.get("timestamp") or 0.0),
            sentiment=data.get("sentiment"),
        )


@dataclass
class VectorSearchResult:
    document: VectorDocument
    score: float
    similarity: float
    temporal_weight: float

    def to_payload(self) -> Mapping[str, Any]:
        payload = dict(self.document.to_payload())
        payload.pop("embedding", None)
        payload.update(
            {
                "score": self.score,
                "similarity": self.similarity,
                "temporal_weight": self.temporal_weight,
            }
        )
        return payload


@dataclass
class MemoryNode:
    """A reasoning step kept in the topological memory forest."""

    id: str
    content: str
    timestamp: float = field(default_factory=now_ms)
    confidence: float = 1.0
    tags: Set[str] = field(default_factory=set)
    parent_id: Optional[str] = None
    children_ids: List[str] = field(default_factory=list)
    ghost_branch_ids: List[str] = field(default_factory=list)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "timestamp": self.timestamp,
            "confidence": self.confidence,
            "tags": sorted(self.tags),
            "parent_id": self.parent_id,
            "children_ids": list(self.children_ids),
            "ghost_branch_ids": list(self.ghost_branch_ids),
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "MemoryNode":
        return cls(
            id=str(data["id"]),
            content=str(data.get("content") or ""),
            timestamp=float(data.get("timestamp") or 0.0),
            confidence=float(data.get("confidence", 1.0)),
            tags=set(data.get("tags") or []),
            parent_id=data.get("parent_id"),
            children_ids=list(data.get("children_ids") or []),
            ghost_branch_ids=list(data.get("ghost_branch_ids") or []),
        )


@dataclass
class GhostBranch:
    """An alternative continuation that was considered and rejected."""

    id: str
    origin_node_id: str
    content: str
    reason_for_rejection: str
    timestamp: float = field(default_factory=now_ms)

    def to_payload(self) -> Mapping[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "GhostBranch":
        return cls(
            id=str(data["id"]),
            origin_node_id=str(data.get("origin_node_id") or ""),
            content=str(data.get("content") or ""),
            reason_for_rejection=str(data.get("reason_for_rejection") or ""),
            timestamp=float(data.get("timestamp") or 0.0),
        )


@dataclass
class OptimizationReport:
    clusters: int = 0
    pruned: int = 0
    consolidated: int = 0

    def to_payload(self) -> Mapping[str, Any]:
        return asdict(self)


@dataclass
class LatticeNode:
    """A concept, entity, memory or ghost vertex of the lattice."""

    id: str
    label: str
    type: str = "concept"
    confidence: float = 1.0
    symbolic_tags: MutableMapping[str, str] = field(default_factory=dict)
    vector: Optional[List[float]] = None

    def __post_init__(self) -> None:
        if self.type not in LATTICE_NODE_TYPES:
            raise ValueError(f"Unsupported lattice node type '{self.type}'")

    def to_payload(self) -> Mapping[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "confidence": self.confidence,
            "symbolic_tags": dict(self.symbolic_tags),
        }
        if self.vector:
            payload["vector"] = list(self.vector)
        return payload


@dataclass
class LatticeEdge:
    source_id: str
    target_id: str
    relation_type: str
    weight: float = 1.0

    def to_payload(self) -> Mapping[str, Any]:
        return asdict(self)


@dataclass
class LatticePath:
    nodes: List[LatticeNode] = field(default_factory=list)
    edges: List[LatticeEdge] = field(default_factory=list)
    confidence: float = 0.0

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "nodes": [node.to_payload() for node in self.nodes],
            "edges": [edge.to_payload() for edge in self.edges],
            "confidence": self.confidence,
        }


@dataclass
class Subgraph:
    """The part of the lattice activated by a query."""

    nodes: List[LatticeNode] = field(default_factory=list)
    edges: List[LatticeEdge] = field(default_factory=list)

    def node_ids(self) -> Set[str]:
        return {node.id for node in self.nodes}

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "nodes": [node.to_payload() for node in self.nodes],
            "edges": [edge.to_payload() for edge in self.edges],
        }


@dataclass
class DreamReport:
    new_edges: int = 0
    insights: List[str] = field(default_factory=list)

    def to_payload(self) -> Mapping[str, Any]:
        return {"new_edges": self.new_edges, "insights": list(self.insights)}


@dataclass
class ReasoningOutcome:
    """What the reasoning gateway returns for a query and its context."""

    trace: str
    confidence: float


@dataclass
class ReasoningResult:
    reasoning_trace: str
    confidence: float
    graph: Subgraph

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "reasoning_trace": self.reasoning_trace,
            "confidence": self.confidence,
            "graph": self.graph.to_payload(),
        }


def dumps_payload(data: Mapping[str, Any]) -> str:
    """Render ``data`` as formatted JSON."""

    return json.dumps(data, ensure_ascii=False, indent=2)


__all__ = [
    "DreamReport",
    "GhostBranch",
    "LATTICE_NODE_TYPES",
    "LatticeEdge",
    "LatticeNode",
    "LatticePath",
    "MemoryNode",
    "OptimizationReport",
    "ReasoningOutcome",
    "ReasoningResult",
    "SENTIMENTS",
    "Subgraph",
    "VectorDocument",
    "VectorSearchResult",
    "dumps_payload",
    "now_ms",
]
