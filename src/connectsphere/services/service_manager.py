"""Service lifecycle manager."""

from __future__ import annotations

from connectsphere.log import get_logger
from connectsphere.services.base import Service

logger = get_logger(__name__)


class ServiceManager:
    """Starts services in registration order and stops them in reverse."""

    def __init__(self, services: list[Service]):
        self._services = list(services)

    async def start_all(self) -> None:
        for service in self._services:
            await service.start()
        logger.info("all_services_started", services=[s.service_name for s in self._services])

    async def stop_all(self) -> None:
        """Stop all services; one failing to stop does not keep the others running."""
        for service in reversed(self._services):
            try:
                await service.stop()
            except Exception as e:
                logger.error("service_stop_failed", service=service.service_name, error=str(e))
        logger.info("all_services_stopped")

    async def health_check_all(self) -> dict[str, bool]:
        return {s.service_name: await s.health_check() for s in self._services}
