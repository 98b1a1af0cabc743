"""Knowledge base ingestion and retrieval-context assembly."""

from __future__ import annotations

import hashlib
import re
from typing import Optional

from connectsphere.core.errors import KnowledgeUnavailableError, ValidationError
from connectsphere.knowledge.embedding import Embedder
from connectsphere.knowledge.rag_cache import RAGCache
from connectsphere.log import get_logger
from connectsphere.storage import paths
from connectsphere.storage.document_store import MAX_BATCH_OPERATIONS, SERVER_TIMESTAMP, DocumentStore, join_path
from connectsphere.storage.models import KnowledgeSource

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def chunk_text(text: str, size: int = 800, overlap: int = 100) -> list[str]:
    """Split text into overlapping chunks, preferring to end on a sentence.

    A sentence break is used only when it falls past the middle of the chunk.
    """
    clean = _WHITESPACE.sub(" ", text or "").strip()
    if not clean:
        return []
    if len(clean) <= size:
        return [clean]

    chunks: list[str] = []
    start = 0
    while start < len(clean):
        end = start + size
        if end < len(clean):
            break_point = clean.rfind(".", 0, end + 1)
            if break_point > start + size // 2:
                end = break_point + 1
        chunk = clean[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= len(clean):
            break
        start = max(end - overlap, start + 1)
    return chunks


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def chunk_id(source: str, index: int, content: str) -> str:
    """Deterministic id so re-ingesting identical content overwrites, never duplicates."""
    return _sha256(f"{source}|{index}|{_sha256(content)}")[:40]


def source_id(source: str) -> str:
    return _sha256(source)[:40]


class KnowledgeService:
    def __init__(
        self,
        store: DocumentStore,
        embedder: Embedder,
        rag: RAGCache,
        chunk_size: int = 800,
        chunk_overlap: int = 100,
    ):
        self._store = store
        self._embedder = embedder
        self._rag = rag
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    async def add_knowledge(
        self, tenant_id: str, content: str, source: str = "manual", category: str = "general"
    ) -> int:
        """Chunk, embed and upsert ``content``; returns the number of chunks stored.

        Raises KnowledgeUnavailableError when embeddings cannot be produced at all.
        """
        pieces = chunk_text(content, self._chunk_size, self._chunk_overlap)
        if not pieces:
            raise ValidationError("Knowledge content is empty")

        collection = paths.knowledge_chunks(tenant_id)
        rows: list[tuple[str, dict]] = []
        for index, piece in enumerate(pieces):
            try:
                vector = await self._embedder.embed(piece, task_type="retrieval_document")
            except KnowledgeUnavailableError:
                raise
            except Exception as e:
                logger.error("knowledge_chunk_embed_failed", tenant_id=tenant_id, source=source, index=index, error=str(e))
                continue
            rows.append(
                (
                    join_path(collection, chunk_id(source, index, piece)),
                    {
                        "content": piece,
                        "source": source,
                        "category": category,
                        "index": index,
                        "contentHash": _sha256(piece),
                        "embedding": vector,
                        "updatedAt": SERVER_TIMESTAMP,
                    },
                )
            )

        for start in range(0, len(rows), MAX_BATCH_OPERATIONS):
            batch = self._store.batch()
            for path, data in rows[start : start + MAX_BATCH_OPERATIONS]:
                batch.set(path, data)
            await batch.commit()

        total = len(await self._store.query(collection, [("source", "==", source)]))
        await self._store.set(
            join_path(paths.knowledge_sources(tenant_id), source_id(source)),
            {"source": source, "category": category, "chunks": total, "updatedAt": SERVER_TIMESTAMP},
        )
        self._rag.invalidate_tenant(tenant_id)
        logger.info("knowledge_added", tenant_id=tenant_id, source=source, chunks=len(rows), source_total=total)
        return len(rows)

    async def list_sources(self, tenant_id: str) -> list[KnowledgeSource]:
        docs = await self._store.query(paths.knowledge_sources(tenant_id))
        sources = [
            KnowledgeSource(
                source=d.get("source", ""),
                category=d.get("category", "general"),
                chunks=int(d.get("chunks") or 0),
                updated_at=d.get("updatedAt"),
            )
            for d in docs
        ]
        sources.sort(key=lambda s: s.updated_at or "", reverse=True)
        return sources

    async def delete_source(self, tenant_id: str, source: str) -> int:
        """Remove every chunk of ``source``; returns how many were deleted."""
        docs = await self._store.query(paths.knowledge_chunks(tenant_id), [("source", "==", source)])
        for start in range(0, len(docs), MAX_BATCH_OPERATIONS):
            batch = self._store.batch()
            for doc in docs[start : start + MAX_BATCH_OPERATIONS]:
                batch.delete(doc.path)
            await batch.commit()
        await self._store.delete(join_path(paths.knowledge_sources(tenant_id), source_id(source)))
        self._rag.invalidate_tenant(tenant_id)
        logger.info("knowledge_source_deleted", tenant_id=tenant_id, source=source, chunks=len(docs))
        return len(docs)

    async def build_context(self, tenant_id: str, message: str, limit: Optional[int] = None) -> str:
        """Prompt section with the chunks most relevant to ``message``, or ""."""
        chunks = await self._rag.search(tenant_id, message, limit)
        if not chunks:
            return ""
        lines = ["--- RELEVANT KNOWLEDGE ---"]
        for i, chunk in enumerate(chunks, start=1):
            lines.append(f"\n[{i}] (Source: {chunk.source})\n{chunk.content}")
        return "\n".join(lines) + "\n"
