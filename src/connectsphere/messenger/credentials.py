"""Per-tenant channel credentials persisted in the document store."""

from __future__ import annotations

import json
from typing import Any, Optional

from connectsphere.log import get_logger
from connectsphere.storage import paths
from connectsphere.storage.document_store import DocumentStore, join_path

logger = get_logger(__name__)


class CredentialStore:
    """JSON values under ``tenant/{id}/credential/{key}`` for a session transport."""

    def __init__(self, store: DocumentStore, tenant_id: str):
        self._store = store
        self._tenant_id = tenant_id
        self._collection = paths.credentials(tenant_id)

    async def read(self, key: str) -> Optional[Any]:
        """Stored value, or None when absent or unreadable."""
        try:
            data = await self._store.get(join_path(self._collection, key))
            return json.loads(data["value"]) if data else None
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("credential_unreadable", tenant_id=self._tenant_id, key=key, error=str(e))
            return None

    async def write(self, key: str, value: Any) -> None:
        """Store a value and mark the tenant root so bulk restore can find it."""
        batch = self._store.batch()
        batch.set(join_path(self._collection, key), {"value": json.dumps(value)}, merge=True)
        batch.set(paths.tenant(self._tenant_id), {"channelPaired": True}, merge=True)
        await batch.commit()

    async def remove(self, key: str) -> None:
        await self._store.delete(join_path(self._collection, key))

    async def exists(self) -> bool:
        return bool(await self._store.query(self._collection, limit=1))

    async def clear(self) -> int:
        docs = await self._store.list_documents(self._collection)
        if docs:
            batch = self._store.batch()
            for doc in docs:
                batch.delete(doc.path)
            await batch.commit()
        logger.info("credentials_cleared", tenant_id=self._tenant_id, removed=len(docs))
        return len(docs)
