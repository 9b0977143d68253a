"""Persisted provenance forest of reasoning steps and rejected alternatives."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .schemas import GhostBranch, MemoryNode, OptimizationReport, now_ms
from .storage import CollectionStore, StorageQuotaError
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

NODE_COLLECTION = "topology_nodes"
GHOST_COLLECTION = "topology_ghosts"
GHOST_RETENTION_MS = 7 * 24 * 3600 * 1000.0
CONSOLIDATION_BOOST = 0.1
CONFIDENCE_DECAY = 0.995
MIN_CONFIDENCE = 0.1
DEFAULT_OPTIMIZE_THRESHOLD_BYTES = 4_500_000

Records = List[Tuple[str, Mapping[str, object]]]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class TopologicalMemory:
    """Forest of :class:`MemoryNode` records plus their ghost branches.

    Every mutating call rewrites both collections in ``storage``. New memories
    are indexed into ``vector_store`` on a single background worker; indexing
    errors are logged and never reach the caller.

    Deleting a node re-parents its children onto the deleted node's parent
    (or makes them roots), so every node stays reachable.
    """

    def __init__(
        self,
        storage: CollectionStore,
        *,
        vector_store: Optional[VectorStore] = None,
        clock: Callable[[], float] = now_ms,
        ghost_retention_ms: float = GHOST_RETENTION_MS,
        optimize_threshold_bytes: int = DEFAULT_OPTIMIZE_THRESHOLD_BYTES,
    ) -> None:
        self.storage = storage
        self.vector_store = vector_store
        self.clock = clock
        self.ghost_retention_ms = ghost_retention_ms
        self.optimize_threshold_bytes = optimize_threshold_bytes
        self._nodes: Dict[str, MemoryNode] = {}
        self._ghosts: Dict[str, GhostBranch] = {}
        self._merged_into: Dict[str, str] = {}
        self._lock = threading.RLock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: List[Future] = []
        self._pending_lock = threading.Lock()
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self) -> None:
        try:
            for row in self.storage.get_all(NODE_COLLECTION):
                node = MemoryNode.from_payload(row)
                self._nodes[node.id] = node
            for row in self.storage.get_all(GHOST_COLLECTION):
                ghost = GhostBranch.from_payload(row)
                self._ghosts[ghost.id] = ghost
        except (sqlite3.Error, KeyError, TypeError, ValueError):
            logger.exception("Failed to load topological memory")
            self._nodes.clear()
            self._ghosts.clear()

    def _snapshot(self) -> Tuple[Records, Records]:
        nodes = [(node.id, node.to_payload()) for node in self._nodes.values()]
        ghosts = [(ghost.id, ghost.to_payload()) for ghost in self._ghosts.values()]
        return nodes, ghosts

    @staticmethod
    def _serialized_size(*collections: Records) -> int:
        return sum(
            len(json.dumps(payload, ensure_ascii=False))
            for records in collections
            for _, payload in records
        )

    def _write(self, nodes: Records, ghosts: Records) -> None:
        self.storage.replace_all(NODE_COLLECTION, nodes)
        self.storage.replace_all(GHOST_COLLECTION, ghosts)

    def _save(self, *, allow_shrink: bool = True) -> None:
        nodes, ghosts = self._snapshot()
        if allow_shrink and self._serialized_size(nodes, ghosts) > self.optimize_threshold_bytes:
            logger.warning("Topological memory approaching storage limit; optimizing")
            self._optimize_locked()
            nodes, ghosts = self._snapshot()
        try:
            self._write(nodes, ghosts)
        except StorageQuotaError as exc:
            if not allow_shrink:
                logger.error("Failed to save topological memory: %s", exc)
                return
            logger.warning("Storage quota exceeded (%s); optimizing and retrying", exc)
            self._optimize_locked()
            nodes, ghosts = self._snapshot()
            try:
                self._write(nodes, ghosts)
            except (StorageQuotaError, sqlite3.Error):
                logger.exception("Failed to save topological memory after optimizing")
        except sqlite3.Error:
            logger.exception("Failed to save topological memory")

    # ------------------------------------------------------------------
    # Background indexing
    # ------------------------------------------------------------------
    def _schedule_indexing(self, node: MemoryNode) -> None:
        if self.vector_store is None:
            return
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="topology-index")
        future = self._executor.submit(
            self.vector_store.add,
            node.content,
            {"type": "memory_node", "node_id": node.id},
            "analytical",
        )
        future.add_done_callback(self._log_indexing_failure)
        with self._pending_lock:
            self._pending = [item for item in self._pending if not item.done()]
            self._pending.append(future)

    @staticmethod
    def _log_indexing_failure(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Failed to index memory node to vector store: %s", exc)

    def wait_for_indexing(self, timeout: Optional[float] = None) -> bool:
        """Block until queued indexing jobs finish; ``False`` on timeout."""

        with self._pending_lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ------------------------------------------------------------------
    # Tree helpers
    # ------------------------------------------------------------------
    def _detach_from_parent(self, node: MemoryNode) -> None:
        if not node.parent_id:
            return
        parent = self._nodes.get(node.parent_id)
        if parent is not None:
            parent.children_ids = [cid for cid in parent.children_ids if cid != node.id]

    def _attach(self, node: MemoryNode, parent_id: Optional[str]) -> None:
        parent = self._nodes.get(parent_id) if parent_id else None
        if parent is None:
            node.parent_id = None
            return
        node.parent_id = parent.id
        if node.id not in parent.children_ids:
            parent.children_ids.append(node.id)

    def _trace_locked(self, node_id: str) -> List[MemoryNode]:
        trace: List[MemoryNode] = []
        seen: Set[str] = set()
        current = self._nodes.get(node_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            trace.append(current)
            current = self._nodes.get(current.parent_id) if current.parent_id else None
        trace.reverse()
        return trace

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def add_memory(
        self,
        content: str,
        parent_id: Optional[str] = None,
        confidence: float = 1.0,
        tags: Optional[Iterable[str]] = None,
    ) -> str:
        node = MemoryNode(
            id=f"mem-{uuid.uuid4().hex}",
            content=content,
            timestamp=self.clock(),
            confidence=_clamp(confidence),
            tags=set(tags or ()),
        )
        with self._lock:
            self._merged_into.clear()
            self._nodes[node.id] = node
            if parent_id is not None:
                if parent_id in self._nodes:
                    self._attach(node, parent_id)
                else:
                    logger.warning("Parent %s not found; storing %s as a root", parent_id, node.id)
            self._save()
            survivor_id = self._resolve_merged(node.id)
        if survivor_id != node.id:
            # the size-triggered optimize folded the new node into an older duplicate
            logger.info("Memory %s consolidated into %s on save", node.id, survivor_id)
            return survivor_id
        self._schedule_indexing(node)
        return node.id

    def _resolve_merged(self, node_id: str) -> str:
        seen: Set[str] = set()
        while node_id in self._merged_into and node_id not in seen:
            seen.add(node_id)
            node_id = self._merged_into[node_id]
        return node_id

    def add_ghost_branch(self, origin_node_id: str, content: str, reason: str) -> str:
        ghost = GhostBranch(
            id=f"ghost-{uuid.uuid4().hex}",
            origin_node_id=origin_node_id,
            content=content,
            reason_for_rejection=reason,
            timestamp=self.clock(),
        )
        with self._lock:
            self._ghosts[ghost.id] = ghost
            origin = self._nodes.get(origin_node_id)
            if origin is not None:
                origin.ghost_branch_ids.append(ghost.id)
            self._save()
        return ghost.id

    def get_node(self, node_id: str) -> Optional[MemoryNode]:
        return self._nodes.get(node_id)

    def get_all_nodes(self) -> List[MemoryNode]:
        with self._lock:
            return list(self._nodes.values())

    def get_all_ghost_branches(self) -> List[GhostBranch]:
        with self._lock:
            return list(self._ghosts.values())

    def get_trace(self, node_id: str) -> List[MemoryNode]:
        """Return the path from the root down to ``node_id`` inclusive."""

        with self._lock:
            return self._trace_locked(node_id)

    def get_ghost_branches_for_trace(self, node_id: str) -> List[GhostBranch]:
        with self._lock:
            ghosts: List[GhostBranch] = []
            for node in self._trace_locked(node_id):
                for ghost_id in node.ghost_branch_ids:
                    ghost = self._ghosts.get(ghost_id)
                    if ghost is not None:
                        ghosts.append(ghost)
            return ghosts

    def optimize(self) -> OptimizationReport:
        """Consolidate duplicates, prune stale ghosts and decay confidence."""

        with self._lock:
            self._merged_into.clear()
            report = self._optimize_locked()
            self._save(allow_shrink=False)
        logger.info(
            "Optimized topological memory: clusters=%s pruned=%s consolidated=%s",
            report.clusters,
            report.pruned,
            report.consolidated,
        )
        return report

    def _optimize_locked(self) -> OptimizationReport:
        report = OptimizationReport()

        groups: Dict[str, List[MemoryNode]] = {}
        for node in self._nodes.values():
            groups.setdefault(node.content.strip().lower(), []).append(node)
        report.clusters = len(groups)

        for members in groups.values():
            if len(members) < 2:
                continue
            # min() keeps the first of equal timestamps, i.e. insertion order
            primary = min(members, key=lambda item: item.timestamp)
            for duplicate in members:
                if duplicate is primary or duplicate.id not in self._nodes:
                    continue
                self._merge_into(primary, duplicate)
                primary.confidence = min(1.0, primary.confidence + CONSOLIDATION_BOOST)
                report.consolidated += 1

        cutoff = self.clock() - self.ghost_retention_ms
        expired = {gid for gid, ghost in self._ghosts.items() if ghost.timestamp < cutoff}
        if expired:
            for gid in expired:
                del self._ghosts[gid]
            for node in self._nodes.values():
                node.ghost_branch_ids = [gid for gid in node.ghost_branch_ids if gid not in expired]
        report.pruned = len(expired)

        for node in self._nodes.values():
            node.confidence = max(MIN_CONFIDENCE, node.confidence * CONFIDENCE_DECAY)
        return report

    def _merge_into(self, primary: MemoryNode, duplicate: MemoryNode) -> None:
        lineage = {node.id for node in self._trace_locked(primary.id)}
        self._detach_from_parent(duplicate)
        for child_id in duplicate.children_ids:
            child = self._nodes.get(child_id)
            if child is None or child.parent_id != duplicate.id:
                continue
            # moving an ancestor of the primary under it would close a cycle
            target = duplicate.parent_id if child.id in lineage else primary.id
            self._attach(child, target)
        for ghost_id in duplicate.ghost_branch_ids:
            ghost = self._ghosts.get(ghost_id)
            if ghost is not None:
                ghost.origin_node_id = primary.id
            if ghost_id not in primary.ghost_branch_ids:
                primary.ghost_branch_ids.append(ghost_id)
        del self._nodes[duplicate.id]
        self._merged_into[duplicate.id] = primary.id

    def delete_node(self, node_id: str) -> bool:
        with self._lock:
            deleted = self._delete_locked(node_id)
            if deleted:
                self._save()
        return deleted

    def _delete_locked(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        self._detach_from_parent(node)
        for child_id in node.children_ids:
            child = self._nodes.get(child_id)
            if child is not None and child.parent_id == node.id:
                self._attach(child, node.parent_id)
        ghost_ids = set(node.ghost_branch_ids)
        ghost_ids.update(gid for gid, ghost in self._ghosts.items() if ghost.origin_node_id == node_id)
        for ghost_id in ghost_ids:
            self._ghosts.pop(ghost_id, None)
        del self._nodes[node_id]
        return True

    def prune_memory(self, threshold: float) -> int:
        """Delete every node whose confidence is below ``threshold``."""

        with self._lock:
            doomed = [nid for nid, node in self._nodes.items() if node.confidence < threshold]
            pruned = sum(1 for nid in doomed if self._delete_locked(nid))
            if pruned:
                self._save()
        return pruned

    def compress_cluster(self, node_ids: Sequence[str], summary_content: str) -> Optional[str]:
        """Replace ``node_ids`` with one summary node that adopts their children.

        The summary takes the first node's parent. Returns its id, or ``None``
        when ``node_ids`` is empty or the first id is unknown.
        """

        if not node_ids:
            return None
        with self._lock:
            first = self._nodes.get(node_ids[0])
            if first is None:
                return None
            cluster = [self._nodes[nid] for nid in dict.fromkeys(node_ids) if nid in self._nodes]
            cluster_ids = {node.id for node in cluster}

            parent_id = first.parent_id
            climbed: Set[str] = set()
            while parent_id in cluster_ids and parent_id not in climbed:
                climbed.add(parent_id)
                parent_id = self._nodes[parent_id].parent_id
            if parent_id in cluster_ids or (parent_id and parent_id not in self._nodes):
                parent_id = None

            summary = MemoryNode(
                id=f"summary-{uuid.uuid4().hex}",
                content=summary_content,
                timestamp=self.clock(),
                confidence=1.0,
                tags={"compressed", "summary"},
            )
            adopted: List[str] = []
            for node in cluster:
                for child_id in node.children_ids:
                    if child_id in cluster_ids or child_id not in self._nodes or child_id in adopted:
                        continue
                    adopted.append(child_id)
                for ghost_id in node.ghost_branch_ids:
                    if ghost_id not in summary.ghost_branch_ids:
                        summary.ghost_branch_ids.append(ghost_id)

            for child_id in adopted:
                child = self._nodes[child_id]
                if child.parent_id not in cluster_ids:
                    self._detach_from_parent(child)
                child.parent_id = summary.id
            for node in cluster:
                self._detach_from_parent(node)
            for node in cluster:
                del self._nodes[node.id]
            summary.children_ids = adopted
            self._nodes[summary.id] = summary
            self._attach(summary, parent_id)
            for ghost_id in summary.ghost_branch_ids:
                ghost = self._ghosts.get(ghost_id)
                if ghost is not None:
                    ghost.origin_node_id = summary.id
            self._save()
        return summary.id

    def clear(self) -> None:
        with self._lock:
            self._nodes.clear()
            self._ghosts.clear()
            self.storage.clear(NODE_COLLECTION)
            self.storage.clear(GHOST_COLLECTION)
        logger.info("Topological memory wiped")


__all__ = ["TopologicalMemory"]
