"""Periodic producer timeout check."""

import asyncio
import logging

from .store import IngestionStore

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Expires the producer when it has been silent for too long.

    Runs on its own cadence, independent of message traffic.
    """

    def __init__(self, store: IngestionStore, check_interval_seconds: float = 5.0):
        self.store = store
        self.check_interval = check_interval_seconds
        self._task: asyncio.Task | None = None
        self._running = False
        self.expirations = 0

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Liveness monitor started (check every {self.check_interval}s, "
            f"timeout {self.store.timeout.total_seconds():.0f}s)"
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def check(self) -> bool:
        """Run one check; returns True if the producer was expired."""
        expired = self.store.expire_if_stale()
        if expired:
            self.expirations += 1
        return expired

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.check_interval)
            try:
                self.check()
            except Exception as e:
                logger.error(f"Liveness check failed: {e}")
