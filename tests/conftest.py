"""Shared pytest fixtures for the connectsphere test suite.

Provides:
  - store: in-memory SqliteDocumentStore, initialized and closed per test
  - clock: manually advanced monotonic clock for TTL tests
  - cache: TTLCache on the fake clock
  - slot_engine: SlotEngine pinned to Monday 2025-01-20 08:00 Asia/Kolkata
  - FakeAIClient: scripted AIClient that records every call
  - FakeEmbedder: keyword-vector embedder, no network
  - FakeSession: ChannelSession that records outgoing messages
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from connectsphere.ai.client import AIClient, AIResponse
from connectsphere.booking.service import SlotEngine
from connectsphere.core.cache import TTLCache
from connectsphere.core.types import ConnectionStatus, DisconnectReason
from connectsphere.knowledge.embedding import Embedder
from connectsphere.messenger.base import ChannelSession
from connectsphere.messenger.models import IncomingMessage, OutgoingMessage
from connectsphere.storage.database import SqliteDocumentStore
from connectsphere.storage.tenant_repo import TenantRepository

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
TZ = ZoneInfo("Asia/Kolkata")

# 2025-01-20 is a Monday.
MONDAY = "2025-01-20"
TUESDAY = "2025-01-21"
SATURDAY = "2025-01-25"
NEXT_MONDAY = "2025-01-27"

CACHE_TTLS = {"settings": 120.0, "consultant": 60.0, "profile": 120.0, "dashboard": 60.0, "history": 30.0}

WEEKDAY = {"enabled": True, "start": "09:00", "end": "17:00", "breakStart": "12:00", "breakEnd": "13:00"}


def consultant_settings(slot_duration: int = 60, **overrides: Any) -> dict[str, Any]:
    """Raw settings payload: Monday to Friday 09-17 with a lunch break, weekends off."""
    raw: dict[str, Any] = {
        "enabled": True,
        "bookingType": "hourly",
        "slotDuration": slot_duration,
        "schedule": {
            **{day: dict(WEEKDAY) for day in ("monday", "tuesday", "wednesday", "thursday", "friday")},
            "saturday": {"enabled": False},
            "sunday": {"enabled": False},
        },
    }
    raw.update(overrides)
    return raw


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Fake AI client
# ---------------------------------------------------------------------------


class FakeAIClient(AIClient):
    """Returns queued responses in order; the last one repeats."""

    def __init__(self, *responses: AIResponse) -> None:
        self._responses = list(responses) or [AIResponse(text="Mock response", input_tokens=50, output_tokens=10)]
        self.calls: list[dict[str, Any]] = []

    async def chat(
        self,
        system: str,
        messages: list[dict[str, Any]],
        model: str = "",
        max_tokens: int = 400,
        temperature: float = 0.7,
        tools: list[dict[str, Any]] | None = None,
        tool_choice: dict[str, Any] | None = None,
    ) -> AIResponse:
        self.calls.append(
            {
                "system": system,
                "messages": [dict(m) for m in messages],
                "model": model,
                "tools": tools,
                "tool_choice": tool_choice,
            }
        )
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


# ---------------------------------------------------------------------------
# Fake embedder
# ---------------------------------------------------------------------------

VOCABULARY = ("price", "refund", "hours", "laptop", "repair", "policy", "open", "delivery")


class FakeEmbedder(Embedder):
    """One dimension per vocabulary word plus a small constant dimension."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def embed(self, text: str, task_type: str = "retrieval_query") -> list[float]:
        self.calls.append((text, task_type))
        if self.error is not None:
            raise self.error
        lowered = text.lower()
        return [1.0 if word in lowered else 0.0 for word in VOCABULARY] + [0.1]


# ---------------------------------------------------------------------------
# Fake channel session
# ---------------------------------------------------------------------------


class FakeSession(ChannelSession):
    """Connects instantly unless told to hang (until ``gate`` is set) or fail."""

    def __init__(self, tenant_id: str, hang: bool = False, fail: bool = False) -> None:
        super().__init__(tenant_id)
        self.hang = hang
        self.fail = fail
        self.sent: list[OutgoingMessage] = []
        self.started = 0
        self.gate: Optional[asyncio.Event] = None
        self.stopped_with: list[bool] = []

    async def start(self) -> None:
        self.started += 1
        if self.fail:
            raise ConnectionError("pairing failed")
        if self.hang:
            self.gate = asyncio.Event()
            await self.gate.wait()
        self.status = ConnectionStatus.CONNECTED

    async def stop(self, logout: bool = False) -> None:
        self.stopped_with.append(logout)
        self.status = ConnectionStatus.DISCONNECTED

    async def send_message(self, message: OutgoingMessage) -> None:
        self.sent.append(message)

    async def drop(self, reason: DisconnectReason = DisconnectReason.CONNECTION_LOST) -> None:
        await self._emit_disconnect(reason)

    async def receive(self, message: IncomingMessage) -> None:
        await self._emit_message(message)


def incoming(text: str = "", sender: str = "15550001111", button_id: Optional[str] = None, **kwargs: Any) -> IncomingMessage:
    return IncomingMessage(
        tenant_id=kwargs.pop("tenant_id", TENANT),
        sender_id=sender,
        text=text,
        timestamp=datetime(2025, 1, 20, 8, 0, tzinfo=TZ),
        button_id=button_id,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def store() -> AsyncIterator[SqliteDocumentStore]:
    """Fresh in-memory document store."""
    db = SqliteDocumentStore(":memory:")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(CACHE_TTLS, clock=clock)


@pytest.fixture
def tenants(store: SqliteDocumentStore, cache: TTLCache) -> TenantRepository:
    return TenantRepository(store, cache)


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 1, 20, 8, 0, tzinfo=TZ)


@pytest.fixture
def slot_engine(store: SqliteDocumentStore, cache: TTLCache, now: datetime) -> SlotEngine:
    return SlotEngine(store, cache, timezone="Asia/Kolkata", now=lambda: now)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
