"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

from connectsphere.ai.assistant import Assistant
from connectsphere.ai.client import AIClient, AnthropicClient
from connectsphere.ai.handler import MessageHandler
from connectsphere.booking.flow import BookingFlow
from connectsphere.booking.notifier import BookingNotifier
from connectsphere.booking.service import (
    AvailableDate,
    BookingRequest,
    BookingResult,
    SlotAvailability,
    SlotEngine,
)
from connectsphere.booking.slots import ConsultantSettings
from connectsphere.booking.state import BookingStateMachine
from connectsphere.config import AppConfig
from connectsphere.core.background import drain, spawn_detached
from connectsphere.core.cache import TTLCache
from connectsphere.core.types import BookingStatus
from connectsphere.knowledge.embedding import Embedder, GeminiEmbedder
from connectsphere.knowledge.rag_cache import RAGCache
from connectsphere.knowledge.service import KnowledgeService
from connectsphere.log import get_logger
from connectsphere.messenger.session_manager import ChannelSessionManager, SessionFactory
from connectsphere.services.scheduler import SchedulerService
from connectsphere.services.service_manager import ServiceManager
from connectsphere.storage.conversation_repo import ConversationStore
from connectsphere.storage.database import SqliteDocumentStore
from connectsphere.storage.models import Booking, HistoryEntry, KnowledgeSource
from connectsphere.storage.tenant_repo import TenantRepository

logger = get_logger(__name__)

SHUTDOWN_DRAIN_SECONDS = 5.0


class ConnectSphereApp:
    """Top-level application orchestrator.

    Also the facade an outer HTTP layer calls into; every method takes the
    tenant id explicitly and never touches another tenant's data.
    """

    def __init__(
        self,
        config: AppConfig,
        session_factory: Optional[SessionFactory] = None,
        ai_client: Optional[AIClient] = None,
        embedder: Optional[Embedder] = None,
    ):
        self.config = config
        self.store = SqliteDocumentStore(config.storage.db_path)
        self.cache = TTLCache(config.cache.ttl)
        self.tenants = TenantRepository(self.store, self.cache)
        self.conversations = ConversationStore(
            self.store,
            self.cache,
            self.tenants,
            max_messages=config.conversation.max_messages,
            delete_batch_size=config.conversation.delete_batch_size,
        )

        booking_cfg = config.booking
        self.slots = SlotEngine(
            self.store,
            self.cache,
            timezone=booking_cfg.timezone,
            min_lead_minutes=booking_cfg.min_lead_minutes,
            scan_days=booking_cfg.scan_days,
        )
        self.booking_states = BookingStateMachine(ttl_seconds=booking_cfg.state_ttl_minutes * 60)
        self.booking_flow = BookingFlow(self.slots, self.booking_states, dates_per_page=booking_cfg.dates_per_page)

        embedding_cfg = config.embedding
        self.embedder = embedder or GeminiEmbedder(
            embedding_cfg.api_key, model=embedding_cfg.model, timeout=embedding_cfg.timeout_seconds
        )
        self.rag = RAGCache(
            self.store,
            self.embedder,
            ttl_seconds=config.cache.rag_ttl_seconds,
            max_entries=config.cache.rag_max_entries,
        )
        self.knowledge = KnowledgeService(
            self.store,
            self.embedder,
            self.rag,
            chunk_size=embedding_cfg.chunk_size,
            chunk_overlap=embedding_cfg.chunk_overlap,
        )

        self.ai_client = ai_client or self._create_ai_client()
        self.assistant = Assistant(
            self.ai_client,
            config.assistant,
            self.tenants,
            self.conversations,
            self.knowledge,
            self.slots,
        )
        self.handler = MessageHandler(self.assistant, self.booking_flow, config.assistant.error_message)

        self.channels = ChannelSessionManager(
            self.store,
            self.tenants,
            config.channel,
            session_factory=session_factory,
            dispatcher=self.handler.dispatch,
        )
        self.notifier = BookingNotifier(self.channels.get)
        self.scheduler = SchedulerService(config.scheduler)
        self.service_manager = ServiceManager([self.scheduler, self.channels])

    def _create_ai_client(self) -> Optional[AIClient]:
        if self.config.anthropic is None:
            logger.warning("ai_backend_unconfigured", hint="replies fall back to the offline message")
            return None
        return AnthropicClient(self.config.anthropic)

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Document store
        await self.store.initialize()

        # 2. Maintenance jobs
        self._register_jobs()

        # 3. Services (scheduler, channel sessions)
        await self.service_manager.start_all()

        logger.info("connectsphere_started", ai_enabled=self.ai_client is not None)

    def _register_jobs(self) -> None:
        conv = self.config.conversation
        self.scheduler.add_interval_job(
            "cache_sweep",
            self._sweep_caches,
            timedelta(seconds=self.config.cache.sweep_interval_seconds),
        )
        self.scheduler.add_interval_job(
            "booking_state_sweep",
            self._sweep_booking_states,
            timedelta(minutes=self.config.booking.state_sweep_minutes),
        )
        self.scheduler.add_interval_job(
            "retention_cleanup",
            self.run_retention_cleanup,
            timedelta(hours=conv.cleanup_interval_hours),
            first_run_after=timedelta(minutes=conv.initial_cleanup_delay_minutes),
        )

    async def _sweep_caches(self) -> int:
        return self.cache.sweep()

    async def _sweep_booking_states(self) -> int:
        return self.booking_states.sweep_stale()

    async def run_retention_cleanup(self) -> dict[str, int]:
        return await self.conversations.purge_all_tenants(timedelta(days=self.config.conversation.retention_days))

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.service_manager.stop_all()
        await drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        await self.store.close()
        logger.info("connectsphere_stopped")

    # -- assistant settings and profile -----------------------------------------

    async def get_assistant_settings(self, tenant_id: str) -> Optional[dict[str, Any]]:
        return await self.tenants.get_assistant_settings(tenant_id)

    async def update_assistant_settings(self, tenant_id: str, settings: dict[str, Any]) -> None:
        await self.tenants.update_assistant_settings(tenant_id, settings)

    async def get_profile(self, tenant_id: str) -> Optional[dict[str, Any]]:
        return await self.tenants.get_profile(tenant_id)

    async def update_profile(self, tenant_id: str, profile: dict[str, Any]) -> None:
        await self.tenants.update_profile(tenant_id, profile)

    async def get_dashboard_stats(self, tenant_id: str) -> dict[str, Any]:
        return await self.tenants.get_dashboard_stats(tenant_id)

    # -- knowledge ----------------------------------------------------------------

    async def add_knowledge(
        self, tenant_id: str, content: str, source: str = "manual", category: str = "general"
    ) -> int:
        return await self.knowledge.add_knowledge(tenant_id, content, source=source, category=category)

    async def list_knowledge(self, tenant_id: str) -> list[KnowledgeSource]:
        return await self.knowledge.list_sources(tenant_id)

    async def delete_knowledge(self, tenant_id: str, source: str) -> int:
        return await self.knowledge.delete_source(tenant_id, source)

    # -- conversations --------------------------------------------------------------

    async def get_history(
        self, tenant_id: str, conversation_key: Optional[str] = None, limit: int = 10
    ) -> list[HistoryEntry]:
        return await self.conversations.get_history(tenant_id, conversation_key, limit)

    async def clear_conversations(self, tenant_id: str) -> dict[str, int]:
        return await self.conversations.wipe_all(tenant_id)

    # -- bookings -------------------------------------------------------------------

    async def get_booking_settings(self, tenant_id: str) -> ConsultantSettings:
        return await self.slots.get_settings(tenant_id)

    async def update_booking_settings(self, tenant_id: str, raw: dict[str, Any]) -> ConsultantSettings:
        return await self.slots.update_settings(tenant_id, raw)

    async def get_available_slots(self, tenant_id: str, date_str: str) -> SlotAvailability:
        return await self.slots.get_available_slots(tenant_id, date_str)

    async def get_next_available_dates(self, tenant_id: str, count: int = 5) -> list[AvailableDate]:
        return await self.slots.get_next_available_dates(tenant_id, count)

    async def create_booking(self, tenant_id: str, request: BookingRequest) -> BookingResult:
        return await self.slots.create_booking(tenant_id, request)

    async def get_bookings(
        self, tenant_id: str, status: Optional[str] = None, date_str: Optional[str] = None
    ) -> list[Booking]:
        return await self.slots.get_bookings(tenant_id, status=status, date_str=date_str)

    async def update_booking_status(
        self, tenant_id: str, booking_id: str, status: str, note: Optional[str] = None
    ) -> Booking:
        """Change a booking's status and notify the customer in the background."""
        booking = await self.slots.update_booking_status(tenant_id, booking_id, status, note)
        if booking.status == BookingStatus.CONFIRMED.value:
            spawn_detached(self.notifier.send_confirmation(tenant_id, booking), name=f"notify_confirm_{booking_id}")
        elif booking.status == BookingStatus.REJECTED.value:
            spawn_detached(
                self.notifier.send_rejection(tenant_id, booking, note), name=f"notify_reject_{booking_id}"
            )
        return booking
