"""Periodic producer cycle: collect, detect, dispatch."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..transport.messages import heartbeat_envelope
from .collector import SnapshotCollector
from .detector import ChangeDetector
from .dispatcher import BatchDispatcher, DispatchResult

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Outcome of one sync cycle."""

    kind: str  # "snapshot", "delta", "unchanged", "skipped", "failed"
    nodes: int = 0
    changes: int = 0
    dispatch: DispatchResult | None = None
    error: str | None = None


class SyncLoop:
    """Drives the producer side on a fixed tick.

    A tick fires every ``interval_seconds`` whether or not the previous
    cycle has finished; a tick that finds a cycle still running is skipped.
    Heartbeats are sent by a separate task on their own cadence.
    """

    def __init__(
        self,
        collector: SnapshotCollector,
        detector: ChangeDetector,
        dispatcher: BatchDispatcher,
        interval_seconds: float = 0.5,
        heartbeat_interval_seconds: float = 10.0,
    ):
        """Initialize the sync loop.

        Args:
            collector: Produces snapshots of the live graph.
            detector: Diffs snapshots against the previous cycle.
            dispatcher: Sends snapshots and deltas.
            interval_seconds: Seconds between ticks.
            heartbeat_interval_seconds: Seconds between heartbeats.
        """
        self.collector = collector
        self.detector = detector
        self.dispatcher = dispatcher
        self.interval = interval_seconds
        self.heartbeat_interval = heartbeat_interval_seconds

        self._busy = False
        self._needs_full_sync = True
        self._running = False
        self._tick_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._cycle_tasks: set[asyncio.Task] = set()

        self.cycles_run = 0
        self.ticks_skipped = 0
        self.last_cycle: CycleResult | None = None
        self.last_cycle_at: datetime | None = None

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def needs_full_sync(self) -> bool:
        return self._needs_full_sync

    def request_full_sync(self) -> None:
        """Make the next cycle send a full snapshot."""
        self._needs_full_sync = True

    async def start(self) -> None:
        """Start the tick and heartbeat tasks."""
        if self._running:
            return

        self._running = True
        self._tick_task = asyncio.create_task(self._run_ticks())
        self._heartbeat_task = asyncio.create_task(self._run_heartbeats())
        logger.info(
            f"Sync loop started (interval={self.interval}s, "
            f"heartbeat={self.heartbeat_interval}s)"
        )

    async def stop(self) -> None:
        """Stop the loop and wait for any running cycle to be cancelled."""
        self._running = False
        tasks = [t for t in (self._tick_task, self._heartbeat_task) if t]
        tasks.extend(self._cycle_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tick_task = None
        self._heartbeat_task = None
        self._cycle_tasks.clear()
        logger.info("Sync loop stopped")

    async def _run_ticks(self) -> None:
        """Fire a cycle task on every tick."""
        while self._running:
            task = asyncio.create_task(self.tick())
            self._cycle_tasks.add(task)
            task.add_done_callback(self._cycle_tasks.discard)
            await asyncio.sleep(self.interval)

    async def _run_heartbeats(self) -> None:
        while self._running:
            await self.send_heartbeat()
            await asyncio.sleep(self.heartbeat_interval)

    async def send_heartbeat(self) -> bool:
        """Send one heartbeat; returns True if it was delivered."""
        message = heartbeat_envelope(time.time(), self.dispatcher.producer_id)
        try:
            result = await self.dispatcher.transport.send(message)
        except Exception as e:
            logger.warning(f"Heartbeat failed: {e}")
            return False

        if result.resync_required:
            logger.info("Consumer requested a full resync")
            self.request_full_sync()
        if not result.ok:
            logger.debug(f"Heartbeat not delivered: {result.error}")
        return result.ok

    async def tick(self) -> CycleResult:
        """Run one cycle unless one is already in flight."""
        if self._busy:
            self.ticks_skipped += 1
            logger.debug("Previous cycle still running, skipping tick")
            return CycleResult(kind="skipped")

        self._busy = True
        try:
            result = await self._run_cycle()
        except Exception as e:
            logger.error(f"Sync cycle failed: {e}", exc_info=True)
            result = CycleResult(kind="failed", error=str(e))
        finally:
            self._busy = False

        self.cycles_run += 1
        self.last_cycle = result
        self.last_cycle_at = datetime.now()
        return result

    async def _run_cycle(self) -> CycleResult:
        nodes = self.collector.collect()

        if self._needs_full_sync:
            logger.info(f"Starting full sync with {len(nodes)} nodes")
            self.detector.prime(nodes)
            dispatch = await self.dispatcher.send_snapshot(nodes)
            # Stay in full-sync mode until every message of the snapshot got through
            self._needs_full_sync = not dispatch.ok or dispatch.resync_required
            if self._needs_full_sync:
                self.detector.reset()
                logger.warning(
                    f"Full sync incomplete ({dispatch.failed} message(s) failed), "
                    "retrying next cycle"
                )
            else:
                logger.info(f"Full sync completed ({dispatch.sent} message(s))")
            return CycleResult(kind="snapshot", nodes=len(nodes), dispatch=dispatch)

        delta = self.detector.detect(nodes)
        if delta.is_empty:
            return CycleResult(kind="unchanged", nodes=len(nodes))

        logger.info(
            f"Sending incremental update: {len(delta.added)} added, "
            f"{len(delta.modified)} modified, {len(delta.removed)} removed"
        )
        dispatch = await self.dispatcher.send_delta(delta)
        if dispatch.resync_required:
            logger.info("Consumer requested a full resync")
        elif not dispatch.ok:
            # detect() already replaced the hash table; only a snapshot restores the lost changes
            logger.warning(
                f"{dispatch.failed} delta message(s) failed, sending a full snapshot next cycle"
            )
        if dispatch.resync_required or not dispatch.ok:
            self.detector.reset()
            self._needs_full_sync = True
        return CycleResult(
            kind="delta", nodes=len(nodes), changes=delta.size, dispatch=dispatch
        )

    def get_status(self) -> dict[str, Any]:
        """Get current loop status."""
        return {
            "running": self._running,
            "busy": self._busy,
            "needs_full_sync": self._needs_full_sync,
            "cycles_run": self.cycles_run,
            "ticks_skipped": self.ticks_skipped,
            "known_paths": self.detector.known_paths,
            "last_cycle": self.last_cycle.kind if self.last_cycle else None,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
        }
