"""Hierarchical document store interface.

Paths alternate collection and document segments::

    tenant/{tenant_id}                          document
    tenant/{tenant_id}/conversation             collection
    tenant/{tenant_id}/conversation/{key}       document

The interface mirrors what a Firestore-like backend offers: point reads and
writes with merge semantics, equality/range queries inside one collection,
batched writes, serializable transactions, server timestamps, atomic
increments and nearest-neighbour search over a vector field.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

from connectsphere.core.errors import BatchLimitError, ValidationError
from connectsphere.core.timeutil import utc_now_iso

T = TypeVar("T")

MAX_BATCH_OPERATIONS = 500

Filter = tuple[str, str, Any]


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Atomic numeric increment applied to the stored value at write time."""

    amount: int | float = 1


@dataclass
class Document:
    path: str
    id: str
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)


def join_path(*segments: str) -> str:
    return "/".join(str(s).strip("/") for s in segments)


def split_document_path(path: str) -> tuple[str, str]:
    """Return ``(collection_path, document_id)`` for a document path."""
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise ValidationError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def check_collection_path(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    if not parts or len(parts) % 2 == 0:
        raise ValidationError(f"Not a collection path: {path!r}")
    return "/".join(parts)


def new_document_id() -> str:
    return uuid.uuid4().hex[:20]


def resolve_write(
    existing: Optional[dict[str, Any]], data: dict[str, Any], merge: bool
) -> dict[str, Any]:
    """Apply ``data`` onto ``existing`` resolving timestamp and increment sentinels.

    Merge is shallow: top-level fields are replaced, nested maps are not merged.
    """
    result: dict[str, Any] = dict(existing) if (merge and existing) else {}
    for name, value in data.items():
        if value is SERVER_TIMESTAMP:
            result[name] = utc_now_iso()
        elif isinstance(value, Increment):
            current = result.get(name)
            if isinstance(current, bool) or not isinstance(current, (int, float)):
                current = 0
            result[name] = current + value.amount
        else:
            result[name] = value
    return result


def _compare(op: str, actual: Any, expected: Any) -> bool:
    try:
        match op:
            case "==":
                return actual == expected
            case "!=":
                return actual != expected
            case "in":
                return actual in expected
            case "<":
                return actual < expected
            case "<=":
                return actual <= expected
            case ">":
                return actual > expected
            case ">=":
                return actual >= expected
    except TypeError:
        return False
    raise ValidationError(f"Unsupported query operator: {op!r}")


def matches(data: dict[str, Any], filters: Iterable[Filter]) -> bool:
    for name, op, expected in filters:
        if name not in data or data[name] is None and op != "==":
            return False
        if not _compare(op, data[name], expected):
            return False
    return True


def apply_query(
    docs: Iterable[Document],
    filters: Sequence[Filter] = (),
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
) -> list[Document]:
    """Filter, order and limit documents client side.

    Like Firestore, ordering by a field drops documents that lack it.
    """
    selected = [d for d in docs if matches(d.data, filters)]
    if order_by:
        selected = [d for d in selected if d.data.get(order_by) is not None]
        selected.sort(key=lambda d: d.data[order_by], reverse=descending)
    if limit is not None:
        selected = selected[: max(limit, 0)]
    return selected


@dataclass
class WriteOp:
    kind: str  # "set" | "update" | "delete"
    path: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False


class WriteBatch:
    """Collects writes and commits them atomically."""

    def __init__(self, committer: Callable[[list[WriteOp]], Awaitable[None]]):
        self._committer = committer
        self._ops: list[WriteOp] = []
        self._committed = False

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> WriteBatch:
        return self._add(WriteOp("set", path, data, merge))

    def update(self, path: str, data: dict[str, Any]) -> WriteBatch:
        return self._add(WriteOp("update", path, data, True))

    def delete(self, path: str) -> WriteBatch:
        return self._add(WriteOp("delete", path))

    def _add(self, op: WriteOp) -> WriteBatch:
        if self._committed:
            raise RuntimeError("Batch already committed")
        if len(self._ops) >= MAX_BATCH_OPERATIONS:
            raise BatchLimitError(f"A batch may hold at most {MAX_BATCH_OPERATIONS} operations")
        split_document_path(op.path)
        self._ops.append(op)
        return self

    def __len__(self) -> int:
        return len(self._ops)

    async def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Batch already committed")
        self._committed = True
        if self._ops:
            await self._committer(list(self._ops))


class Transaction(ABC):
    """Reads and writes executed atomically inside ``DocumentStore.transaction``."""

    @abstractmethod
    async def get(self, path: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        ...

    @abstractmethod
    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    async def update(self, path: str, data: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, path: str) -> bool:
        ...

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = new_document_id()
        await self.set(join_path(check_collection_path(collection), doc_id), data)
        return doc_id


class DocumentStore(ABC):
    """Async hierarchical document database."""

    @abstractmethod
    async def get(self, path: str) -> Optional[dict[str, Any]]:
        """Return document data or None if it does not exist."""
        ...

    @abstractmethod
    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    async def update(self, path: str, data: dict[str, Any]) -> None:
        """Merge ``data`` into an existing document; raises DocumentNotFoundError."""
        ...

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete one document (never its subcollections). True if it existed."""
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        ...

    @abstractmethod
    def batch(self) -> WriteBatch:
        ...

    @abstractmethod
    async def transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``fn`` atomically; writes are rolled back if it raises."""
        ...

    @abstractmethod
    async def find_nearest(
        self,
        collection: str,
        vector_field: str,
        query_vector: Sequence[float],
        limit: int,
        distance: str = "cosine",
    ) -> list[tuple[Document, float]]:
        """Nearest-neighbour search, closest first, as ``(document, distance)``."""
        ...

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = new_document_id()
        await self.set(join_path(check_collection_path(collection), doc_id), data)
        return doc_id

    async def list_documents(self, collection: str) -> list[Document]:
        return await self.query(collection)
