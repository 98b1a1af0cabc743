"""Lifecycle interface shared by the scheduler and the channel session manager."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """A component started with the application and stopped on shutdown.

    Subclasses set ``running`` from ``start``/``stop``; the default health
    check reports it.
    """

    running: bool = False

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    async def health_check(self) -> bool:
        return self.running
