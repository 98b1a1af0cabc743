"""Data models for the storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from connectsphere.storage.document_store import Document


@dataclass(frozen=True)
class HistoryEntry:
    role: str  # "user" | "model"
    text: str


@dataclass
class Message:
    """One embedded message of a conversation document."""

    role: str
    content: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}


@dataclass
class Booking:
    id: str
    phone: str
    name: str
    reason: str
    date: str
    time_slot: str
    token_number: int
    status: str
    created_at: Optional[str] = None
    confirmed_at: Optional[str] = None
    updated_at: Optional[str] = None
    staff_note: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Document) -> Booking:
        d = doc.data
        return cls(
            id=doc.id,
            phone=d.get("phone", ""),
            name=d.get("name", ""),
            reason=d.get("reason", ""),
            date=d.get("date", ""),
            time_slot=d.get("timeSlot", ""),
            token_number=int(d.get("tokenNumber") or 0),
            status=d.get("status", ""),
            created_at=d.get("createdAt"),
            confirmed_at=d.get("confirmedAt"),
            updated_at=d.get("updatedAt"),
            staff_note=d.get("staffNote"),
        )


@dataclass
class KnowledgeChunk:
    id: str
    content: str
    source: str
    category: str
    index: int
    embedding: list[float] = field(default_factory=list, repr=False)
    distance: Optional[float] = None

    @classmethod
    def from_document(cls, doc: Document, distance: Optional[float] = None) -> KnowledgeChunk:
        d = doc.data
        return cls(
            id=doc.id,
            content=d.get("content", ""),
            source=d.get("source", ""),
            category=d.get("category", "general"),
            index=int(d.get("index") or 0),
            distance=distance,
        )


@dataclass
class KnowledgeSource:
    source: str
    category: str
    chunks: int
    updated_at: Optional[str] = None
