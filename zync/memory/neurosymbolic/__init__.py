"""Local long-term memory engine for the Zync chat application.

This subpackage combines

* a similarity-searchable vector store with temporal decay,
* a symbolic lattice graph used for explainable ("glass box") retrieval,
* a persisted provenance forest of memories and rejected ghost branches, and
* an orchestrator that turns queries into retrieval-augmented reasoning traces
  and periodically consolidates everything during a dream cycle.
"""

from .clients import LLMClient
from .core import NeuroSymbolicCore
from .dream import DreamCycleReport, DreamService
from .lattice import Lattice
from .personas import Persona, PersonaSimulator
from .runtime import MemoryRuntime, main as runtime_main
from .schemas import (
    DreamReport,
    GhostBranch,
    LatticeEdge,
    LatticeNode,
    LatticePath,
    MemoryNode,
    OptimizationReport,
    ReasoningOutcome,
    ReasoningResult,
    Subgraph,
    VectorDocument,
    VectorSearchResult,
)
from .storage import CollectionStore, StorageQuotaError
from .tools import ClusterSummaryTool
from .topology import TopologicalMemory
from .vector_store import VectorStore, cosine_similarity

__all__ = [
    "ClusterSummaryTool",
    "CollectionStore",
    "DreamCycleReport",
    "DreamReport",
    "DreamService",
    "GhostBranch",
    "LLMClient",
    "Lattice",
    "LatticeEdge",
    "LatticeNode",
    "LatticePath",
    "MemoryNode",
    "MemoryRuntime",
    "NeuroSymbolicCore",
    "OptimizationReport",
    "Persona",
    "PersonaSimulator",
    "ReasoningOutcome",
    "ReasoningResult",
    "StorageQuotaError",
    "Subgraph",
    "TopologicalMemory",
    "VectorDocument",
    "VectorSearchResult",
    "VectorStore",
    "cosine_similarity",
    "runtime_main",
]
