"""
Usage ledger storage backends.

The tracker keeps the ledger in memory; a store only persists snapshots
of it so history survives restarts. Every backend saves the full ledger
(records are append-only and small) and loads it back on startup.

Backends:
- InMemoryUsageStore: Process-local copy (tests, ephemeral deployments)
- JsonFileUsageStore: JSON array on disk, written atomically
- RedisUsageStore: Redis list of JSON records (see redis_store.py)
"""

import asyncio
import json
import os
from pathlib import Path
from typing import List, Protocol, Sequence, runtime_checkable

import structlog

from execution_gateway.models.usage_models import UsageRecord

logger = structlog.get_logger(__name__)


@runtime_checkable
class UsageStore(Protocol):
    """Persistence backend for the usage ledger."""

    async def save(self, records: Sequence[UsageRecord]) -> None:
        ...

    async def load(self) -> List[UsageRecord]:
        ...

    async def close(self) -> None:
        ...


class InMemoryUsageStore:
    """Keeps the last saved snapshot in process memory."""

    def __init__(self) -> None:
        self._records: List[UsageRecord] = []
        self.save_count = 0

    async def save(self, records: Sequence[UsageRecord]) -> None:
        self._records = list(records)
        self.save_count += 1

    async def load(self) -> List[UsageRecord]:
        return list(self._records)

    async def close(self) -> None:
        pass


class JsonFileUsageStore:
    """
    JSON file backend.

    Writes go to a temporary sibling file which then replaces the target,
    so a crash mid-write never leaves a truncated ledger behind. File I/O
    runs in a worker thread to keep the event loop free.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def save(self, records: Sequence[UsageRecord]) -> None:
        payload = json.dumps([r.model_dump(mode="json") for r in records])
        await asyncio.to_thread(self._write, payload)
        logger.debug("Usage ledger saved", path=str(self.path), records=len(records))

    async def load(self) -> List[UsageRecord]:
        if not self.path.exists():
            logger.info("No usage ledger file found, starting empty", path=str(self.path))
            return []
        raw = await asyncio.to_thread(self.path.read_text, "utf-8")
        if not raw.strip():
            return []
        return [UsageRecord.model_validate(item) for item in json.loads(raw)]

    async def close(self) -> None:
        pass

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self.path)
