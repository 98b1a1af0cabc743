"""Cached, category-filtered retrieval over a tenant's knowledge chunks."""

from __future__ import annotations

import hashlib
import re
import time
from collections import OrderedDict
from typing import Callable, Optional

from connectsphere.core.errors import KnowledgeUnavailableError
from connectsphere.knowledge.categorizer import GENERAL, CategoryClassifier, KeywordCategoryClassifier
from connectsphere.knowledge.embedding import Embedder
from connectsphere.log import get_logger
from connectsphere.storage import paths
from connectsphere.storage.document_store import DocumentStore
from connectsphere.storage.models import KnowledgeChunk

logger = get_logger(__name__)

# Nearest-neighbour search cannot filter by category, so fetch extra candidates.
OVERFETCH_FACTOR = 3

_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    return _WHITESPACE.sub(" ", (query or "").strip().lower())


class RAGCache:
    """Retrieval results keyed by (tenant, normalized query, categories, limit).

    Bounded; the oldest inserted entry is evicted first. If the embedding or
    vector backend reports missing or rejected credentials, retrieval is
    switched off for the rest of the process and every call returns ``[]``.
    """

    def __init__(
        self,
        store: DocumentStore,
        embedder: Embedder,
        classifier: Optional[CategoryClassifier] = None,
        ttl_seconds: float = 300.0,
        max_entries: int = 200,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._embedder = embedder
        self._classifier = classifier or KeywordCategoryClassifier()
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        # key -> (tenant_id, stored_at, results)
        self._entries: OrderedDict[str, tuple[str, float, list[KnowledgeChunk]]] = OrderedDict()
        self._disabled = False

    @property
    def disabled(self) -> bool:
        return self._disabled

    @staticmethod
    def cache_key(tenant_id: str, query: str, categories: tuple[str, ...], limit: int) -> str:
        raw = f"{tenant_id}|{normalize_query(query)}|{','.join(sorted(categories))}|{limit}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    async def search(self, tenant_id: str, query: str, limit: Optional[int] = None) -> list[KnowledgeChunk]:
        if self._disabled or not normalize_query(query):
            return []

        match = self._classifier.categorize(query)
        limit = limit or match.chunk_limit
        key = self.cache_key(tenant_id, query, match.categories, limit)

        entry = self._entries.get(key)
        if entry is not None:
            _, stored_at, results = entry
            if self._clock() - stored_at < self._ttl:
                return list(results)
            del self._entries[key]

        try:
            vector = await self._embedder.embed(query, task_type="retrieval_query")
            candidates = await self._store.find_nearest(
                paths.knowledge_chunks(tenant_id),
                "embedding",
                vector,
                limit=limit * OVERFETCH_FACTOR if match.filtered else limit,
                distance="cosine",
            )
        except KnowledgeUnavailableError as e:
            if not self._disabled:
                self._disabled = True
                logger.warning("knowledge_retrieval_disabled", error=str(e))
            return []

        allowed = set(match.categories)
        results: list[KnowledgeChunk] = []
        for doc, distance in candidates:
            chunk = KnowledgeChunk.from_document(doc, distance=distance)
            if match.filtered and chunk.category != GENERAL and chunk.category not in allowed:
                continue
            results.append(chunk)
            if len(results) >= limit:
                break

        self._put(key, tenant_id, results)
        logger.debug(
            "knowledge_search",
            tenant_id=tenant_id,
            categories=list(match.categories),
            candidates=len(candidates),
            results=len(results),
        )
        return list(results)

    def _put(self, key: str, tenant_id: str, results: list[KnowledgeChunk]) -> None:
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = (tenant_id, self._clock(), results)

    def invalidate_tenant(self, tenant_id: str) -> int:
        doomed = [k for k, (tenant, _, _) in self._entries.items() if tenant == tenant_id]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)
