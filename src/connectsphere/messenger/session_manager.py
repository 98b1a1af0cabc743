"""Owns one channel session per tenant: connect, reconnect and bulk restore."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from connectsphere.config import ChannelConfig
from connectsphere.core.background import spawn_detached
from connectsphere.core.types import ConnectionStatus, DisconnectReason
from connectsphere.log import get_logger
from connectsphere.messenger.base import ChannelSession
from connectsphere.messenger.credentials import CredentialStore
from connectsphere.messenger.models import IncomingMessage
from connectsphere.services.base import Service
from connectsphere.storage.document_store import DocumentStore
from connectsphere.storage.tenant_repo import TenantRepository

logger = get_logger(__name__)

SessionFactory = Callable[[str, CredentialStore], ChannelSession]
MessageDispatcher = Callable[[ChannelSession, IncomingMessage], Awaitable[None]]

ACTIVE_STATUSES = (ConnectionStatus.CONNECTED, ConnectionStatus.CONNECTING, ConnectionStatus.SCANNING)

# Disconnects after which reconnecting would only fail again.
NO_RECONNECT = (DisconnectReason.LOGGED_OUT, DisconnectReason.QR_TIMEOUT)


class ChannelSessionManager(Service):
    """Per-tenant session registry.

    Unexpected disconnects reconnect after a fixed delay. Logout, QR timeout
    and manual disconnects do not. ``sync_all`` restores every tenant with
    stored credentials, one at a time, each attempt time-boxed so that an
    unreachable tenant cannot stall the rest.
    """

    def __init__(
        self,
        store: DocumentStore,
        tenants: TenantRepository,
        config: ChannelConfig,
        session_factory: Optional[SessionFactory] = None,
        dispatcher: Optional[MessageDispatcher] = None,
    ):
        self._store = store
        self._tenants = tenants
        self._config = config
        self._factory = session_factory
        self._dispatcher = dispatcher
        self._sessions: dict[str, ChannelSession] = {}
        self._reconnects: dict[str, asyncio.Task] = {}
        self._manually_disconnected: set[str] = set()
        self._sync_lock = asyncio.Lock()
        self._startup_task: Optional[asyncio.Task] = None

    @property
    def service_name(self) -> str:
        return "channels"

    async def start(self) -> None:
        self.running = True
        if self._factory is None:
            logger.warning("channel_transport_unconfigured", hint="no session factory; running without channels")
            return
        self._startup_task = spawn_detached(self._startup_sync(), name="channel_startup_sync")
        logger.info("channel_manager_started", startup_delay=self._config.startup_delay_seconds)

    async def _startup_sync(self) -> None:
        await asyncio.sleep(self._config.startup_delay_seconds)
        await self.sync_all("startup")

    async def stop(self) -> None:
        self.running = False
        if self._startup_task and not self._startup_task.done():
            self._startup_task.cancel()
        for task in self._reconnects.values():
            task.cancel()
        self._reconnects.clear()
        for tenant_id, session in list(self._sessions.items()):
            try:
                await session.stop(logout=False)
            except Exception as e:
                logger.error("channel_stop_failed", tenant_id=tenant_id, error=str(e))
        self._sessions.clear()
        logger.info("channel_manager_stopped")

    # -- lookup ------------------------------------------------------------------

    def get(self, tenant_id: str) -> Optional[ChannelSession]:
        return self._sessions.get(tenant_id)

    def status(self, tenant_id: str) -> ConnectionStatus:
        session = self._sessions.get(tenant_id)
        return session.status if session else ConnectionStatus.DISCONNECTED

    # -- lifecycle -----------------------------------------------------------------

    async def initialize(self, tenant_id: str) -> ChannelSession:
        """Connect a tenant on explicit request; a no-op while already active."""
        self._manually_disconnected.discard(tenant_id)
        return await self._connect(tenant_id)

    async def _connect(self, tenant_id: str) -> ChannelSession:
        existing = self._sessions.get(tenant_id)
        if existing is not None and existing.status in ACTIVE_STATUSES:
            return existing
        if self._factory is None:
            raise RuntimeError("No channel session factory configured")

        session = self._factory(tenant_id, CredentialStore(self._store, tenant_id))
        session.on_message(lambda message: self._on_message(session, message))
        session.on_disconnect(lambda reason: self._on_disconnect(tenant_id, session, reason))
        self._sessions[tenant_id] = session
        session.status = ConnectionStatus.CONNECTING
        logger.info("channel_connecting", tenant_id=tenant_id)
        try:
            await session.start()
        except Exception:
            session.status = ConnectionStatus.DISCONNECTED
            if self._sessions.get(tenant_id) is session:
                del self._sessions[tenant_id]
            raise
        return session

    async def _on_message(self, session: ChannelSession, message: IncomingMessage) -> None:
        if self._dispatcher is None:
            logger.warning("channel_message_dropped", tenant_id=session.tenant_id, reason="no dispatcher")
            return
        await self._dispatcher(session, message)

    async def _on_disconnect(self, tenant_id: str, session: ChannelSession, reason: DisconnectReason) -> None:
        if self._sessions.get(tenant_id) is not session:
            return  # superseded session

        if tenant_id in self._manually_disconnected or reason in NO_RECONNECT or not self.running:
            self._sessions.pop(tenant_id, None)
            if reason == DisconnectReason.LOGGED_OUT:
                await CredentialStore(self._store, tenant_id).clear()
            logger.info("channel_closed", tenant_id=tenant_id, reason=reason.value)
            return

        logger.info(
            "channel_reconnect_scheduled",
            tenant_id=tenant_id,
            reason=reason.value,
            delay=self._config.reconnect_delay_seconds,
        )
        previous = self._reconnects.pop(tenant_id, None)
        if previous is not None:
            previous.cancel()
        self._reconnects[tenant_id] = spawn_detached(self._reconnect_later(tenant_id), name=f"reconnect_{tenant_id}")

    async def _reconnect_later(self, tenant_id: str) -> None:
        try:
            await asyncio.sleep(self._config.reconnect_delay_seconds)
            if tenant_id in self._manually_disconnected or not self.running:
                return
            await self._connect(tenant_id)
        finally:
            if self._reconnects.get(tenant_id) is asyncio.current_task():
                del self._reconnects[tenant_id]

    async def disconnect(self, tenant_id: str, logout: bool = False) -> None:
        """Stop a tenant's session and suppress reconnects until ``initialize``."""
        self._manually_disconnected.add(tenant_id)
        task = self._reconnects.pop(tenant_id, None)
        if task is not None:
            task.cancel()
        session = self._sessions.pop(tenant_id, None)
        if session is not None:
            await session.stop(logout=logout)
        if logout:
            await CredentialStore(self._store, tenant_id).clear()
        logger.info("channel_disconnected", tenant_id=tenant_id, logout=logout)

    async def sync_all(self, reason: str = "manual") -> dict[str, int]:
        """Connect every tenant that has stored credentials and no active session."""
        counts = {"attempted": 0, "skipped": 0, "failed": 0}
        if self._factory is None or self._sync_lock.locked():
            return counts

        async with self._sync_lock:
            tenant_ids = []
            for tenant_id in await self._tenants.list_tenant_ids():
                if await CredentialStore(self._store, tenant_id).exists():
                    tenant_ids.append(tenant_id)
            logger.info("channel_sync_started", reason=reason, tenants=len(tenant_ids))

            for tenant_id in tenant_ids:
                if self.status(tenant_id) in ACTIVE_STATUSES or tenant_id in self._manually_disconnected:
                    counts["skipped"] += 1
                    continue
                counts["attempted"] += 1
                task = spawn_detached(self._connect(tenant_id), name=f"connect_{tenant_id}")
                done, _ = await asyncio.wait({task}, timeout=self._config.init_timeout_seconds)
                if not done:
                    logger.warning("channel_init_timeout", tenant_id=tenant_id, timeout=self._config.init_timeout_seconds)
                elif task.exception() is not None:
                    counts["failed"] += 1
                await asyncio.sleep(self._config.init_gap_seconds)

        logger.info("channel_sync_completed", reason=reason, **counts)
        return counts
