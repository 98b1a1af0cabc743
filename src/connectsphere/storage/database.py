"""SQLite-backed document store with write serialization and vector search."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import aiosqlite
import numpy as np

from connectsphere.core.errors import DocumentNotFoundError, ValidationError
from connectsphere.log import get_logger
from connectsphere.storage.document_store import (
    Document,
    DocumentStore,
    Filter,
    Transaction,
    WriteBatch,
    WriteOp,
    apply_query,
    check_collection_path,
    resolve_write,
    split_document_path,
)

logger = get_logger(__name__)

T = TypeVar("T")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    path        TEXT PRIMARY KEY,
    collection  TEXT NOT NULL,
    doc_id      TEXT NOT NULL,
    data        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_collection
    ON documents(collection);
"""


class SqliteDocumentStore(DocumentStore):
    """Document store on a single aiosqlite connection.

    Every write path (single writes, batches, transactions) holds one asyncio
    lock around ``BEGIN IMMEDIATE ... COMMIT``, so a transaction's
    read-check-write sequence cannot interleave with another writer.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection and create the schema."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: transactions are opened explicitly below
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        if self._db_path != ":memory:":
            await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA_SQL)
        logger.info("document_store_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Document store not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("document_store_closed")

    # -- reads ---------------------------------------------------------------

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        split_document_path(path)
        cursor = await self.conn.execute("SELECT data FROM documents WHERE path = ?", (path,))
        row = await cursor.fetchone()
        return json.loads(row["data"]) if row else None

    async def _load_collection(self, collection: str) -> list[Document]:
        collection = check_collection_path(collection)
        cursor = await self.conn.execute(
            "SELECT path, doc_id, data FROM documents WHERE collection = ? ORDER BY rowid",
            (collection,),
        )
        rows = await cursor.fetchall()
        return [Document(path=r["path"], id=r["doc_id"], data=json.loads(r["data"])) for r in rows]

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        docs = await self._load_collection(collection)
        return apply_query(docs, filters, order_by, descending, limit)

    async def find_nearest(
        self,
        collection: str,
        vector_field: str,
        query_vector: Sequence[float],
        limit: int,
        distance: str = "cosine",
    ) -> list[tuple[Document, float]]:
        if distance != "cosine":
            raise ValidationError(f"Unsupported distance measure: {distance!r}")
        query = np.asarray(query_vector, dtype=float)
        query_norm = np.linalg.norm(query)
        scored: list[tuple[Document, float]] = []
        for doc in await self._load_collection(collection):
            raw = doc.data.get(vector_field)
            if not isinstance(raw, list) or len(raw) != len(query):
                continue
            vec = np.asarray(raw, dtype=float)
            denom = query_norm * np.linalg.norm(vec)
            dist = 1.0 if denom == 0 else float(1.0 - np.dot(query, vec) / denom)
            scored.append((doc, dist))
        scored.sort(key=lambda pair: pair[1])
        return scored[: max(limit, 0)]

    # -- writes --------------------------------------------------------------

    async def _write_row(self, path: str, data: dict[str, Any]) -> None:
        collection, doc_id = split_document_path(path)
        await self.conn.execute(
            """INSERT INTO documents (path, collection, doc_id, data)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(path) DO UPDATE SET data = excluded.data""",
            (path, collection, doc_id, json.dumps(data)),
        )

    async def _apply(self, op: WriteOp) -> bool:
        """Apply one write inside an open transaction."""
        if op.kind == "delete":
            cursor = await self.conn.execute("DELETE FROM documents WHERE path = ?", (op.path,))
            return cursor.rowcount > 0
        existing = await self.get(op.path)
        if op.kind == "update" and existing is None:
            raise DocumentNotFoundError(op.path)
        await self._write_row(op.path, resolve_write(existing, op.data, op.merge))
        return True

    async def _run_atomic(self, fn: Callable[[], Awaitable[T]]) -> T:
        async with self._write_lock:
            await self.conn.execute("BEGIN IMMEDIATE")
            try:
                result = await fn()
            except BaseException:
                await self.conn.execute("ROLLBACK")
                raise
            await self.conn.execute("COMMIT")
            return result

    async def _commit_ops(self, ops: list[WriteOp]) -> None:
        async def _all() -> None:
            for op in ops:
                await self._apply(op)

        await self._run_atomic(_all)

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        await self._run_atomic(lambda: self._apply(WriteOp("set", path, data, merge)))

    async def update(self, path: str, data: dict[str, Any]) -> None:
        await self._run_atomic(lambda: self._apply(WriteOp("update", path, data, True)))

    async def delete(self, path: str) -> bool:
        split_document_path(path)
        return await self._run_atomic(lambda: self._apply(WriteOp("delete", path)))

    def batch(self) -> WriteBatch:
        return WriteBatch(self._commit_ops)

    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        return await self._run_atomic(lambda: fn(_SqliteTransaction(self)))


class _SqliteTransaction(Transaction):
    """Runs on the store's connection while the write lock is held."""

    def __init__(self, store: SqliteDocumentStore):
        self._store = store

    async def get(self, path: str) -> Optional[dict[str, Any]]:
        return await self._store.get(path)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        return await self._store.query(collection, filters, order_by, descending, limit)

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        await self._store._apply(WriteOp("set", path, data, merge))

    async def update(self, path: str, data: dict[str, Any]) -> None:
        await self._store._apply(WriteOp("update", path, data, True))

    async def delete(self, path: str) -> bool:
        return await self._store._apply(WriteOp("delete", path))
