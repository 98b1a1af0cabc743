"""Tenant-level records: activity counters, token usage, settings and profile."""

from __future__ import annotations

from typing import Any, Optional

from connectsphere.core.cache import TTLCache
from connectsphere.log import get_logger
from connectsphere.storage import paths
from connectsphere.storage.document_store import SERVER_TIMESTAMP, DocumentStore, Increment

logger = get_logger(__name__)

# Reads allowed when back-filling the token aggregate from usage records.
USAGE_BACKFILL_LIMIT = 50


class TenantRepository:
    """Tenant document, usage log and per-tenant settings documents."""

    def __init__(self, store: DocumentStore, cache: TTLCache):
        self._store = store
        self._cache = cache

    async def record_interaction(self, tenant_id: str) -> None:
        await self._store.set(
            paths.tenant(tenant_id),
            {"lastActive": SERVER_TIMESTAMP, "interactionCount": Increment(1)},
            merge=True,
        )

    async def log_token_usage(self, tenant_id: str, input_tokens: int, output_tokens: int) -> None:
        """Bump the tenant's token aggregate and append a usage record."""
        input_tokens = int(input_tokens or 0)
        output_tokens = int(output_tokens or 0)
        total = input_tokens + output_tokens

        await self._store.set(
            paths.tenant(tenant_id),
            {"totalTokensUsed": Increment(total), "lastTokenUpdate": SERVER_TIMESTAMP},
            merge=True,
        )
        self._cache.invalidate(f"dashboard:{tenant_id}")

        await self._store.add(
            paths.usage(tenant_id),
            {
                "inputTokens": input_tokens,
                "outputTokens": output_tokens,
                "totalTokens": total,
                "createdAt": SERVER_TIMESTAMP,
            },
        )

    async def get_dashboard_stats(self, tenant_id: str) -> dict[str, Any]:
        cached = self._cache.get("dashboard", tenant_id)
        if cached:
            return cached

        tenant = await self._store.get(paths.tenant(tenant_id))
        interaction_count = 0
        total_tokens = 0
        if tenant is not None:
            interaction_count = int(tenant.get("interactionCount") or 0)
            total_tokens = int(tenant.get("totalTokensUsed") or 0)

            # Tenants from before the aggregate existed: back-fill once
            if total_tokens == 0:
                total_tokens = await self._backfill_token_total(tenant_id)

        result = {
            "tenantId": tenant_id,
            "interactionCount": interaction_count,
            "totalTokens": total_tokens,
            "lastActive": tenant.get("lastActive") if tenant else None,
        }
        self._cache.set("dashboard", tenant_id, result)
        return result

    async def _backfill_token_total(self, tenant_id: str) -> int:
        records = await self._store.query(paths.usage(tenant_id), limit=USAGE_BACKFILL_LIMIT)
        total = 0
        for record in records:
            if isinstance(record.get("totalTokens"), (int, float)):
                total += int(record.get("totalTokens"))
            else:
                total += int(record.get("inputTokens") or 0) + int(record.get("outputTokens") or 0)
        if total > 0:
            await self._store.update(paths.tenant(tenant_id), {"totalTokensUsed": total})
            logger.info("token_total_backfilled", tenant_id=tenant_id, total=total)
        return total

    async def get_assistant_settings(self, tenant_id: str) -> Optional[dict[str, Any]]:
        """Assistant context/model, or None when the tenant never configured one."""
        return await self._cache.get_or_load(
            "settings", tenant_id, lambda: self._store.get(paths.settings(tenant_id, "assistant"))
        )

    async def update_assistant_settings(self, tenant_id: str, settings: dict[str, Any]) -> None:
        update: dict[str, Any] = {}
        if isinstance(settings.get("context"), str):
            update["context"] = settings["context"]
        if isinstance(settings.get("model"), str):
            update["model"] = settings["model"]
        update["updatedAt"] = SERVER_TIMESTAMP
        await self._store.set(paths.settings(tenant_id, "assistant"), update, merge=True)
        self._cache.invalidate(f"settings:{tenant_id}")

    async def get_profile(self, tenant_id: str) -> Optional[dict[str, Any]]:
        return await self._cache.get_or_load(
            "profile", tenant_id, lambda: self._store.get(paths.settings(tenant_id, "profile"))
        )

    async def update_profile(self, tenant_id: str, profile: dict[str, Any]) -> None:
        await self._store.set(
            paths.settings(tenant_id, "profile"),
            {**profile, "updatedAt": SERVER_TIMESTAMP},
            merge=True,
        )
        self._cache.invalidate(f"profile:{tenant_id}")

    async def list_tenant_ids(self) -> list[str]:
        return [doc.id for doc in await self._store.list_documents(paths.TENANTS)]
