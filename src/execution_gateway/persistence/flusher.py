"""
Background ledger flushing.

The tracker mutates an in-memory ledger; the flusher periodically writes
it to the configured store when it changed since the last save. A failed
save is logged and retried on the next interval; the ledger stays dirty
until a save succeeds.
"""

import asyncio
from typing import Optional

import structlog

from execution_gateway.persistence.store import UsageStore
from execution_gateway.usage.tracker import UsageTracker

logger = structlog.get_logger(__name__)

DEFAULT_FLUSH_INTERVAL = 30.0


class UsageFlusher:
    """
    Interval flusher for a tracker's ledger.

    Attributes:
        tracker: Source of ledger snapshots
        store: Destination backend
        interval: Seconds between flush attempts
    """

    def __init__(self, tracker: UsageTracker, store: UsageStore, interval: float = DEFAULT_FLUSH_INTERVAL):
        if interval <= 0:
            raise ValueError("Flush interval must be positive")
        self.tracker = tracker
        self.store = store
        self.interval = interval
        self._saved_version = tracker.version
        self._task: Optional[asyncio.Task] = None

    @property
    def dirty(self) -> bool:
        return self.tracker.version != self._saved_version

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def mark_clean(self) -> None:
        """Treat the current ledger as persisted (e.g. right after loading it)."""
        self._saved_version = self.tracker.version

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="usage-flusher")
        logger.info("Usage flusher started", interval_seconds=self.interval)

    async def flush(self) -> bool:
        """
        Save the ledger if it changed since the last successful save.

        Returns:
            True if a save happened and succeeded
        """
        version, records = self.tracker.ledger_snapshot()
        if version == self._saved_version:
            return False
        try:
            await self.store.save(records)
        except Exception as e:
            logger.error(
                "Usage ledger flush failed, will retry",
                error=str(e),
                error_type=type(e).__name__,
                records=len(records),
            )
            return False
        self._saved_version = version
        return True

    async def stop(self) -> None:
        """Cancel the background loop and write a final snapshot."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()
        logger.info("Usage flusher stopped", dirty=self.dirty)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.flush()
