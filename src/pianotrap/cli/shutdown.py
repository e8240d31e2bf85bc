"""Single-shot teardown shared by every shutdown trigger."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from pianotrap.cli.logging_utils import ERROR_LOG_LABEL, LOGGER, SHUTDOWN_LOG_LABEL

logger = logging.getLogger(__name__)


class _ClosableController(Protocol):
    async def close(self, *, reason: str = ...) -> None: ...


class _ServiceStack(Protocol):
    async def stop_all(self) -> None: ...


class ShutdownCoordinator:
    """Run the teardown sequence exactly once.

    The quit key, a termination signal, the client exiting and a hard
    terminal error all funnel into :meth:`request` or :meth:`shutdown`. The
    first caller fixes the reason; everyone awaits the same teardown, which
    closes the controller, discarding any in-progress recording, and then
    stops the service stack in reverse start order.
    """

    def __init__(self, controller: _ClosableController, services: _ServiceStack):
        self._controller = controller
        self._services = services
        self._task: Optional[asyncio.Task[None]] = None
        self.stopping = asyncio.Event()
        self.done = asyncio.Event()
        self.reason: Optional[str] = None
        self.failed = False

    @property
    def requested(self) -> bool:
        return self._task is not None

    def request(self, reason: str, *, failed: bool = False) -> asyncio.Task[None]:
        """Start the teardown from synchronous callbacks (signals, stdin readers)."""

        if self._task is None:
            self.reason = reason
            self.failed = failed
            self.stopping.set()
            LOGGER.log(SHUTDOWN_LOG_LABEL, f"Shutting down: {reason}")
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name="pianotrap-shutdown"
            )
        else:
            logger.debug("Shutdown already in progress; ignoring %s", reason)
        return self._task

    async def shutdown(self, reason: str, *, failed: bool = False) -> None:
        await asyncio.shield(self.request(reason, failed=failed))

    async def _run(self) -> None:
        try:
            try:
                await self._controller.close(reason="shutdown")
            except Exception as exc:
                LOGGER.log(
                    ERROR_LOG_LABEL,
                    f"Failed to discard the active recording: {exc}",
                    error=True,
                )
            await self._services.stop_all()
        finally:
            self.done.set()
            outcome = "with errors" if self.failed else "cleanly"
            LOGGER.verbose(SHUTDOWN_LOG_LABEL, f"Shutdown finished {outcome}")


__all__ = ["ShutdownCoordinator"]
