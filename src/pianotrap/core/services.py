"""Lifecycle interfaces for long-lived collaborators and their ordered supervisor."""

from __future__ import annotations

import asyncio
from typing import Protocol, Sequence

from pianotrap.cli.logging_utils import ERROR_LOG_LABEL, LOGGER, SHUTDOWN_LOG_LABEL


class Service(Protocol):
    """Minimal lifecycle interface."""

    name: str
    ready: asyncio.Event

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class BaseService(Service):
    """Track readiness and ensure idempotent start/stop semantics."""

    def __init__(self, name: str):
        self.name = name
        self.ready = asyncio.Event()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        await self._start()
        self.ready.set()
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        try:
            await self._stop()
        finally:
            self._started = False
            self.ready.clear()

    async def _start(self) -> None:
        raise NotImplementedError

    async def _stop(self) -> None:
        raise NotImplementedError


class ServiceSupervisor:
    """Start services in order and stop them in reverse, rolling back on failure."""

    def __init__(self, services: Sequence[Service]):
        self._services = list(services)
        self._started: list[Service] = []

    async def start_all(self) -> None:
        for service in self._services:
            try:
                await service.start()
            except Exception:
                await self._stop_started()
                raise
            self._started.append(service)

    async def stop_all(self) -> None:
        await self._stop_started()

    async def _stop_started(self) -> None:
        while self._started:
            service = self._started.pop()
            LOGGER.verbose(SHUTDOWN_LOG_LABEL, f"Stopping {service.name}")
            try:
                await service.stop()
            except Exception as exc:
                LOGGER.log(
                    ERROR_LOG_LABEL,
                    f"Failed to stop service {service.name}: {exc}",
                    error=True,
                )


__all__ = ["BaseService", "Service", "ServiceSupervisor"]
