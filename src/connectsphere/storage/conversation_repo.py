"""Conversation persistence: one document per (tenant, counterparty).

Messages are embedded in the conversation document as an array capped at
``max_messages``, so an exchange costs one read and one write regardless of
conversation length. Two older layouts are still readable:

* a per-conversation ``message`` subcollection (one document per message),
* a flat per-tenant ``message`` collection.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from connectsphere.core.cache import MISS, TTLCache
from connectsphere.core.timeutil import to_iso, utc_now_iso
from connectsphere.core.types import Channel, Role
from connectsphere.log import get_logger
from connectsphere.storage import paths
from connectsphere.storage.document_store import SERVER_TIMESTAMP, Document, DocumentStore
from connectsphere.storage.models import HistoryEntry, Message
from connectsphere.storage.tenant_repo import TenantRepository

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

HistoryReader = Callable[[str, str, int], Awaitable[list[HistoryEntry]]]


def sanitize_conversation_key(raw: str | None) -> str:
    clean = str(raw or "").strip()
    if not clean:
        return "default"
    return _UNSAFE_KEY_CHARS.sub("_", clean)


def channel_for(key: str) -> Channel:
    return Channel.WHATSAPP if key.startswith("wa_") else Channel.APP


class ConversationStore:
    """Append, read, trim and purge conversation history."""

    def __init__(
        self,
        store: DocumentStore,
        cache: TTLCache,
        tenants: TenantRepository,
        max_messages: int = 100,
        delete_batch_size: int = 450,
    ):
        self._store = store
        self._cache = cache
        self._tenants = tenants
        self._max_messages = max_messages
        self._delete_batch_size = delete_batch_size
        # Tenants whose flat legacy collection was already checked this process
        self._flat_legacy_checked: set[str] = set()
        # Tried in order; the first non-empty result wins.
        # TODO: drop the two legacy readers once every tenant has been migrated
        # to embedded conversation arrays.
        self._history_readers: list[HistoryReader] = [
            self._read_embedded,
            self._read_conversation_subcollection,
            self._read_flat_legacy,
        ]

    # -- writes --------------------------------------------------------------

    async def append_exchange(
        self,
        tenant_id: str,
        user_text: str,
        model_text: str,
        conversation_key: str | None = None,
    ) -> None:
        """Persist one user message and its reply as a pair."""
        key = sanitize_conversation_key(conversation_key)
        timestamp = utc_now_iso()
        await self._append(
            tenant_id,
            key,
            [
                Message(Role.USER.value, user_text, timestamp),
                Message(Role.MODEL.value, model_text, timestamp),
            ],
        )
        await self._tenants.record_interaction(tenant_id)
        logger.debug("exchange_saved", tenant_id=tenant_id, conversation=key)

    async def append_message(
        self, tenant_id: str, role: str, content: str, conversation_key: str | None = None
    ) -> None:
        """Single-message append kept for callers that predate exchanges."""
        key = sanitize_conversation_key(conversation_key)
        await self._append(tenant_id, key, [Message(role, content, utc_now_iso())])

    async def _append(self, tenant_id: str, key: str, new_messages: list[Message]) -> None:
        # Read-modify-write: concurrent appends to one conversation are last-write-wins
        doc_path = paths.conversation(tenant_id, key)
        existing = await self._store.get(doc_path)
        messages: list[dict[str, Any]] = list((existing or {}).get("messages") or [])
        messages.extend(m.to_dict() for m in new_messages)
        if len(messages) > self._max_messages:
            messages = messages[-self._max_messages :]

        await self._store.set(
            doc_path,
            {
                "conversationId": key,
                "channel": channel_for(key).value,
                "participantKey": key,
                "messages": messages,
                "messageCount": len(messages),
                "updatedAt": SERVER_TIMESTAMP,
            },
            merge=True,
        )
        self._invalidate_history(tenant_id, key)

    def _invalidate_history(self, tenant_id: str, key: str) -> None:
        self._cache.invalidate(f"history:{tenant_id}:{key}:")

    # -- reads ---------------------------------------------------------------

    async def get_history(
        self, tenant_id: str, conversation_key: str | None = None, limit: int = 10
    ) -> list[HistoryEntry]:
        """Last ``limit`` messages in chronological order."""
        key = sanitize_conversation_key(conversation_key)
        cache_key = f"{tenant_id}:{key}:{limit}"
        cached = self._cache.get("history", cache_key)
        if cached is not MISS:
            return cached

        try:
            for reader in self._history_readers:
                history = await reader(tenant_id, key, limit)
                if history:
                    self._cache.set("history", cache_key, history)
                    return history
        except Exception as e:
            logger.error("history_read_failed", tenant_id=tenant_id, conversation=key, error=str(e))
        return []

    async def _read_embedded(self, tenant_id: str, key: str, limit: int) -> list[HistoryEntry]:
        data = await self._store.get(paths.conversation(tenant_id, key))
        messages = (data or {}).get("messages") or []
        recent = messages[-limit:] if limit > 0 else []
        return [HistoryEntry(m.get("role", ""), m.get("content", "")) for m in recent]

    async def _read_conversation_subcollection(
        self, tenant_id: str, key: str, limit: int
    ) -> list[HistoryEntry]:
        docs = await self._store.query(
            paths.conversation_messages(tenant_id, key),
            order_by="createdAt",
            descending=True,
            limit=limit,
        )
        return [_entry(d) for d in reversed(docs)]

    async def _read_flat_legacy(self, tenant_id: str, key: str, limit: int) -> list[HistoryEntry]:
        if tenant_id in self._flat_legacy_checked:
            return []
        docs = await self._store.query(
            paths.flat_messages(tenant_id),
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
        self._flat_legacy_checked.add(tenant_id)
        return [_entry(d) for d in reversed(docs)]

    # -- retention -------------------------------------------------------------

    async def purge_older_than(self, tenant_id: str, retention: timedelta) -> int:
        """Drop messages older than ``retention``; returns how many were removed."""
        cutoff = to_iso(datetime.now(timezone.utc) - retention)
        deleted = 0

        for conv in await self._store.list_documents(paths.conversations(tenant_id)):
            messages = conv.get("messages")
            if isinstance(messages, list) and messages:
                kept = [m for m in messages if not m.get("timestamp") or m["timestamp"] >= cutoff]
                dropped = len(messages) - len(kept)
                if dropped:
                    await self._store.update(
                        conv.path,
                        {"messages": kept, "messageCount": len(kept), "updatedAt": SERVER_TIMESTAMP},
                    )
                    self._invalidate_history(tenant_id, conv.id)
                    deleted += dropped

            old = await self._store.query(
                paths.conversation_messages(tenant_id, conv.id), [("createdAt", "<", cutoff)]
            )
            deleted += await self._delete_in_batches(old)

        old_flat = await self._store.query(paths.flat_messages(tenant_id), [("timestamp", "<", cutoff)])
        deleted += await self._delete_in_batches(old_flat)

        # Usage records are kept indefinitely for billing
        if deleted:
            logger.info("messages_purged", tenant_id=tenant_id, deleted=deleted, cutoff=cutoff)
        return deleted

    async def purge_all_tenants(self, retention: timedelta) -> dict[str, int]:
        """Retention sweep across tenants; one tenant's failure does not stop the rest."""
        logger.info("retention_sweep_started")
        processed = 0
        total_deleted = 0
        for tenant_id in await self._tenants.list_tenant_ids():
            try:
                total_deleted += await self.purge_older_than(tenant_id, retention)
                processed += 1
            except Exception as e:
                logger.error("retention_sweep_tenant_failed", tenant_id=tenant_id, error=str(e))
        logger.info("retention_sweep_completed", tenants_processed=processed, messages_deleted=total_deleted)
        return {"tenants_processed": processed, "messages_deleted": total_deleted}

    async def wipe_all(self, tenant_id: str) -> dict[str, int]:
        """Delete every conversation and legacy message of a tenant.

        Failing sub-batches are logged and skipped; a failure to list the
        conversations at all propagates.
        """
        conversations = await self._store.list_documents(paths.conversations(tenant_id))
        conversations_deleted = 0
        messages_deleted = 0

        for conv in conversations:
            try:
                nested = await self._store.list_documents(paths.conversation_messages(tenant_id, conv.id))
                messages_deleted += await self._delete_in_batches(nested, tolerate_failures=True)
                await self._store.delete(conv.path)
                conversations_deleted += 1
            except Exception as e:
                logger.error("conversation_wipe_failed", tenant_id=tenant_id, conversation=conv.id, error=str(e))
            self._invalidate_history(tenant_id, conv.id)

        try:
            flat = await self._store.list_documents(paths.flat_messages(tenant_id))
            messages_deleted += await self._delete_in_batches(flat, tolerate_failures=True)
        except Exception as e:
            logger.error("flat_legacy_wipe_failed", tenant_id=tenant_id, error=str(e))

        self._cache.invalidate(f"history:{tenant_id}:")
        logger.info(
            "conversations_wiped",
            tenant_id=tenant_id,
            conversations=conversations_deleted,
            messages=messages_deleted,
        )
        return {"conversations": conversations_deleted, "messages": messages_deleted}

    async def _delete_in_batches(self, docs: list[Document], tolerate_failures: bool = False) -> int:
        deleted = 0
        for start in range(0, len(docs), self._delete_batch_size):
            chunk = docs[start : start + self._delete_batch_size]
            batch = self._store.batch()
            for doc in chunk:
                batch.delete(doc.path)
            try:
                await batch.commit()
            except Exception as e:
                if not tolerate_failures:
                    raise
                logger.error("delete_batch_failed", size=len(chunk), error=str(e))
                continue
            deleted += len(chunk)
        return deleted


def _entry(doc: Document) -> HistoryEntry:
    return HistoryEntry(doc.get("role", ""), doc.get("content", ""))
