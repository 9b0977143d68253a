"""Persistent document storage shared by the vector store and topological memory."""

from __future__ import annotations

import json
import sqlite3
import threading
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple


class StorageQuotaError(Exception):
    """Raised when a write would push a collection past its byte quota."""

    def __init__(self, collection: str, size: int, quota: int) -> None:
        super().__init__(
            f"Collection '{collection}' would hold {size} bytes, quota is {quota}"
        )
        self.collection = collection
        self.size = size
        self.quota = quota


class CollectionStore:
    """Small SQLite wrapper storing JSON documents in named collections.

    Documents keep the order in which they were first written. ``put`` on an
    existing id replaces the payload in place.
    """

    def __init__(self, db_path: str = ":memory:", *, quota_bytes: Optional[int] = None) -> None:
        self.connection = sqlite3.connect(db_path, check_same_thread=False)
        self.connection.row_factory = sqlite3.Row
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()
        self._create_schema()

    def _create_schema(self) -> None:
        with self._lock:
            cur = self.connection.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_records_seq
                ON records(collection, seq)
                """
            )
            self.connection.commit()

    @staticmethod
    def _serialize(payload: Mapping[str, Any]) -> str:
        return json.dumps(payload, ensure_ascii=False)

    def _check_quota(self, collection: str, size: int) -> None:
        if self.quota_bytes is not None and size > self.quota_bytes:
            raise StorageQuotaError(collection, size, self.quota_bytes)

    def get_all(self, collection: str) -> List[Mapping[str, Any]]:
        cur = self.connection.execute(
            "SELECT payload FROM records WHERE collection = ? ORDER BY seq ASC",
            (collection,),
        )
        return [json.loads(row["payload"]) for row in cur.fetchall()]

    def get(self, collection: str, record_id: str) -> Optional[Mapping[str, Any]]:
        cur = self.connection.execute(
            "SELECT payload FROM records WHERE collection = ? AND id = ?",
            (collection, record_id),
        )
        row = cur.fetchone()
        return json.loads(row["payload"]) if row else None

    def count(self, collection: str) -> int:
        cur = self.connection.execute(
            "SELECT COUNT(*) FROM records WHERE collection = ?",
            (collection,),
        )
        return int(cur.fetchone()[0])

    def size_bytes(self, collection: str) -> int:
        cur = self.connection.execute(
            "SELECT COALESCE(SUM(LENGTH(payload)), 0) FROM records WHERE collection = ?",
            (collection,),
        )
        return int(cur.fetchone()[0])

    def put(self, collection: str, record_id: str, payload: Mapping[str, Any]) -> None:
        """Insert or replace one document."""

        blob = self._serialize(payload)
        with self._lock:
            cur = self.connection.cursor()
            cur.execute(
                """
                SELECT
                    COALESCE(SUM(LENGTH(payload)), 0),
                    COALESCE(MAX(seq), -1),
                    COALESCE(SUM(CASE WHEN id = ? THEN LENGTH(payload) ELSE 0 END), 0)
                FROM records WHERE collection = ?
                """,
                (record_id, collection),
            )
            total, max_seq, replaced = cur.fetchone()
            self._check_quota(collection, int(total) - int(replaced) + len(blob))
            cur.execute(
                """
                INSERT INTO records(collection, id, seq, payload)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(collection, id) DO UPDATE SET payload = excluded.payload
                """,
                (collection, record_id, int(max_seq) + 1, blob),
            )
            self.connection.commit()

    def replace_all(
        self, collection: str, records: Iterable[Tuple[str, Mapping[str, Any]]]
    ) -> int:
        """Atomically swap the whole collection for ``records``.

        Returns the number of bytes written.
        """

        rows = [(record_id, self._serialize(payload)) for record_id, payload in records]
        size = sum(len(blob) for _, blob in rows)
        self._check_quota(collection, size)
        with self._lock:
            try:
                cur = self.connection.cursor()
                cur.execute("DELETE FROM records WHERE collection = ?", (collection,))
                cur.executemany(
                    "INSERT INTO records(collection, id, seq, payload) VALUES (?, ?, ?, ?)",
                    [(collection, record_id, seq, blob) for seq, (record_id, blob) in enumerate(rows)],
                )
                self.connection.commit()
            except sqlite3.Error:
                self.connection.rollback()
                raise
        return size

    def delete(self, collection: str, record_id: str) -> None:
        self.delete_many(collection, [record_id])

    def delete_many(self, collection: str, record_ids: Sequence[str]) -> None:
        if not record_ids:
            return
        with self._lock:
            self.connection.executemany(
                "DELETE FROM records WHERE collection = ? AND id = ?",
                [(collection, record_id) for record_id in record_ids],
            )
            self.connection.commit()

    def clear(self, collection: str) -> None:
        with self._lock:
            self.connection.execute("DELETE FROM records WHERE collection = ?", (collection,))
            self.connection.commit()

    def close(self) -> None:
        with self._lock:
            self.connection.close()


__all__ = ["CollectionStore", "StorageQuotaError"]
