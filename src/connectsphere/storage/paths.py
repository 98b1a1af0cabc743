"""Document paths for every persisted entity, all rooted at ``tenant/{id}``."""

from __future__ import annotations

TENANTS = "tenant"


def tenant(tenant_id: str) -> str:
    return f"{TENANTS}/{tenant_id}"


def conversations(tenant_id: str) -> str:
    return f"{tenant(tenant_id)}/conversation"


def conversation(tenant_id: str, key: str) -> str:
    return f"{conversations(tenant_id)}/{key}"


def conversation_messages(tenant_id: str, key: str) -> str:
    """Legacy per-message subcollection of a conversation."""
    return f"{conversation(tenant_id, key)}/message"


def flat_messages(tenant_id: str) -> str:
    """Oldest legacy format: one flat message collection per tenant."""
    return f"{tenant(tenant_id)}/message"


def usage(tenant_id: str) -> str:
    return f"{tenant(tenant_id)}/usage"


def knowledge_chunks(tenant_id: str) -> str:
    return f"{tenant(tenant_id)}/knowledgeChunk"


def knowledge_sources(tenant_id: str) -> str:
    return f"{tenant(tenant_id)}/knowledgeSource"


def bookings(tenant_id: str) -> str:
    return f"{tenant(tenant_id)}/booking"


def booking(tenant_id: str, booking_id: str) -> str:
    return f"{bookings(tenant_id)}/{booking_id}"


def settings(tenant_id: str, name: str) -> str:
    """Singleton settings documents: ``assistant``, ``consultant``, ``profile``."""
    return f"{tenant(tenant_id)}/settings/{name}"


def credentials(tenant_id: str) -> str:
    return f"{tenant(tenant_id)}/credential"
