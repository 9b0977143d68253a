"""Runtime helpers for deploying the neuro-symbolic memory engine."""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .clients import SUPPORTED_PROVIDERS, LLMClient
from .core import NeuroSymbolicCore
from .dream import DreamCycleReport, DreamService
from .personas import PersonaSimulator, SimulationResult
from .schemas import MemoryNode, ReasoningResult, VectorSearchResult, dumps_payload
from .storage import CollectionStore
from .tools import ClusterSummaryTool
from .topology import DEFAULT_OPTIMIZE_THRESHOLD_BYTES, TopologicalMemory
from .vector_store import DEFAULT_MAX_DOCUMENTS, VectorStore

logger = logging.getLogger(__name__)


@dataclass
class MemoryRuntime:
    """Application root that builds and wires every memory component."""

    db_path: str = "zync_memory.sqlite"
    llm_url: str = "http://localhost:1109"
    llm_model: str = "Qwen3-8B"
    llm_provider: str = "vllm"
    embed_url: str = "http://localhost:1108"
    embed_model: str = "Qwen3-Embedding-8B"
    embed_provider: str = "vllm"
    max_documents: int = DEFAULT_MAX_DOCUMENTS
    optimize_threshold_bytes: int = DEFAULT_OPTIMIZE_THRESHOLD_BYTES
    dream_interval_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.db_path != ":memory:":
            db_parent = Path(self.db_path).expanduser().resolve().parent
            db_parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(Path(self.db_path).expanduser())

        self.storage = CollectionStore(self.db_path)

        self.llm_client = LLMClient(
            base_url=self.llm_url,
            model=self.llm_model,
            provider=self.llm_provider,
        )
        self.embedding_client = LLMClient(
            base_url=self.embed_url,
            model=self.embed_model,
            provider=self.embed_provider,
        )

        self.vector_store = VectorStore(
            self.storage,
            self.embedding_client.embed_one,
            max_documents=self.max_documents,
        )
        self.memory = TopologicalMemory(
            self.storage,
            vector_store=self.vector_store,
            optimize_threshold_bytes=self.optimize_threshold_bytes,
        )
        self.core = NeuroSymbolicCore(
            vector_store=self.vector_store,
            memory=self.memory,
            reasoner=self.llm_client.reason,
        )
        self.core.reseed_from_memory()
        self.dream_service = DreamService(self.memory, self.core)
        self.personas = PersonaSimulator(client=self.llm_client)
        self.summary_tool = ClusterSummaryTool(self.llm_client)

        if self.dream_interval_seconds:
            self.dream_service.start(self.dream_interval_seconds)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def remember(
        self,
        content: str,
        *,
        parent_id: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        ai_response: Optional[str] = None,
        ai_confidence: float = 1.0,
    ) -> str:
        return self.core.record_turn(
            content, ai_response, tags=tags, parent_id=parent_id, ai_confidence=ai_confidence
        )

    def search(self, query: str, top_k: int = 5) -> List[VectorSearchResult]:
        return self.vector_store.search(query, top_k)

    def reason(self, query: str) -> ReasoningResult:
        return self.core.reason(query)

    def trace(self, node_id: str) -> List[MemoryNode]:
        return self.memory.get_trace(node_id)

    def dream(self) -> Optional[DreamCycleReport]:
        return self.dream_service.run_cycle(lambda stage: logger.info("Dream stage: %s", stage))

    def prune(self, threshold: float) -> int:
        return self.memory.prune_memory(threshold)

    def compress(self, node_ids: Sequence[str], summary: Optional[str] = None) -> Optional[str]:
        if summary is None:
            nodes = [node for node in (self.memory.get_node(nid) for nid in node_ids) if node]
            summary = self.summary_tool(nodes)
        return self.memory.compress_cluster(node_ids, summary)

    def simulate(self, query: str) -> List[SimulationResult]:
        return self.personas.simulate(query)

    def close(self) -> None:
        self.dream_service.stop()
        self.memory.wait_for_indexing()
        self.memory.close()
        self.storage.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Zync long-term memory engine")
    parser.add_argument("--db", default="zync_memory.sqlite", help="SQLite file for storing memories")
    parser.add_argument("--llm-url", default="http://localhost:1109", help="Base URL of the LLM server")
    parser.add_argument("--llm-model", default="Qwen3-8B", help="LLM model name exposed by the server")
    parser.add_argument(
        "--llm-provider",
        choices=list(SUPPORTED_PROVIDERS),
        default="vllm",
        help="LLM provider type",
    )
    parser.add_argument("--embed-url", default="http://localhost:1108", help="Base URL of the embedding server")
    parser.add_argument(
        "--embed-model",
        default="Qwen3-Embedding-8B",
        help="Embedding model name exposed by the server",
    )
    parser.add_argument(
        "--embed-provider",
        choices=list(SUPPORTED_PROVIDERS),
        default="vllm",
        help="Embedding provider type",
    )
    parser.add_argument(
        "--max-documents",
        type=int,
        default=DEFAULT_MAX_DOCUMENTS,
        help="Capacity of the vector store before the oldest entries are evicted",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging to trace prompt/response payloads.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    remember = commands.add_parser("remember", help="Store a memory")
    remember.add_argument("content")
    remember.add_argument("--parent", help="Id of the parent memory node")
    remember.add_argument("--tag", action="append", default=[], help="Semantic tag (repeatable)")
    remember.add_argument("--response", help="AI response stored as a child of the memory")
    remember.add_argument(
        "--response-confidence",
        type=float,
        default=1.0,
        help="Confidence of the AI response (0.0-1.0)",
    )

    search = commands.add_parser("search", help="Similarity search over stored memories")
    search.add_argument("query")
    search.add_argument("--top-k", type=int, default=5)

    reason = commands.add_parser("reason", help="Answer a query with a reasoning trace")
    reason.add_argument("query")

    trace = commands.add_parser("trace", help="Show the provenance of a memory node")
    trace.add_argument("node_id")

    commands.add_parser("dream", help="Run one maintenance cycle")

    prune = commands.add_parser("prune", help="Delete memories below a confidence threshold")
    prune.add_argument("threshold", type=float)

    compress = commands.add_parser("compress", help="Replace memory nodes with one summary node")
    compress.add_argument("node_ids", nargs="+")
    compress.add_argument("--summary", help="Summary text; generated by the LLM when omitted")

    simulate = commands.add_parser("simulate", help="Answer a query from several personas")
    simulate.add_argument("query")
    return parser


def _dispatch(runtime: MemoryRuntime, args: argparse.Namespace) -> Mapping[str, Any]:
    if args.command == "remember":
        node_id = runtime.remember(
            args.content,
            parent_id=args.parent,
            tags=args.tag,
            ai_response=args.response,
            ai_confidence=args.response_confidence,
        )
        return {"node_id": node_id}
    if args.command == "search":
        return {"results": [result.to_payload() for result in runtime.search(args.query, args.top_k)]}
    if args.command == "reason":
        return runtime.reason(args.query).to_payload()
    if args.command == "trace":
        return {
            "trace": [node.to_payload() for node in runtime.trace(args.node_id)],
            "ghost_branches": [
                ghost.to_payload() for ghost in runtime.memory.get_ghost_branches_for_trace(args.node_id)
            ],
        }
    if args.command == "dream":
        report = runtime.dream()
        return report.to_payload() if report else {"skipped": True}
    if args.command == "prune":
        return {"pruned": runtime.prune(args.threshold)}
    if args.command == "compress":
        return {"summary_id": runtime.compress(args.node_ids, args.summary)}
    if args.command == "simulate":
        return {"results": [result.to_payload() for result in runtime.simulate(args.query)]}
    raise ValueError(f"Unknown command '{args.command}'")


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _build_parser().parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    runtime = MemoryRuntime(
        db_path=str(args.db),
        llm_url=args.llm_url,
        llm_model=args.llm_model,
        llm_provider=args.llm_provider,
        embed_url=args.embed_url,
        embed_model=args.embed_model,
        embed_provider=args.embed_provider,
        max_documents=args.max_documents,
    )
    try:
        result = _dispatch(runtime, args)
    finally:
        runtime.close()

    print(dumps_payload(result))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
