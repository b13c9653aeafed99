"""Single-writer ingestion queue."""

import asyncio
import logging
from typing import Any, Callable

from .router import Ack

logger = logging.getLogger(__name__)

Handler = Callable[[], Ack]


class IngestionQueue:
    """Serializes every store mutation through one worker task.

    HTTP handlers submit work and await the resulting Ack; the MQTT
    subscriber uses submit_nowait from the event loop thread.
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[tuple[Handler, asyncio.Future | None]] = asyncio.Queue(
            maxsize=maxsize
        )
        self._worker: asyncio.Task | None = None
        self.processed = 0
        self.dropped = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run())
        logger.debug("Ingestion worker started")

    async def stop(self) -> None:
        """Stop the worker; queued items that were not processed are dropped."""
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if future is not None and not future.done():
                future.cancel()
        logger.debug("Ingestion worker stopped")

    async def submit(self, handler: Handler) -> Ack:
        """Queue a handler and wait for its Ack."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((handler, future))
        return await future

    def submit_nowait(self, handler: Handler) -> bool:
        """Queue a handler without waiting; returns False if the queue is full."""
        try:
            self._queue.put_nowait((handler, None))
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Ingestion queue full, dropping message")
            return False
        return True

    async def _run(self) -> None:
        while True:
            handler, future = await self._queue.get()
            try:
                ack = handler()
            except Exception as e:
                self.failed += 1
                logger.error(f"Ingestion failed: {e}", exc_info=True)
                if future is not None and not future.done():
                    future.set_exception(e)
            else:
                self.processed += 1
                if future is not None and not future.done():
                    future.set_result(ack)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued item has been processed."""
        await self._queue.join()

    def stats(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "pending": self.pending,
            "processed": self.processed,
            "dropped": self.dropped,
            "failed": self.failed,
        }
