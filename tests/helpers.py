from __future__ import annotations

import asyncio
import time
from typing import Iterable, List, Optional

from adaptive_assistant.errors import PersistenceFailure
from adaptive_assistant.memory import MemoryStore
from adaptive_assistant.models import ActionRecord, HandlerResult, Intent, PerformanceSample
from adaptive_assistant.handlers import BaseHandler
from adaptive_assistant.persistence import InMemoryKeyValueStore

MINUTE_MS = 60_000
HOUR_MS = 3_600_000


def sample(
    *,
    cpu_pct: float = 5.0,
    memory_mb: float = 100.0,
    disk_io_count: int = 0,
    active_connections: int = 0,
) -> PerformanceSample:
    return PerformanceSample(
        cpu_pct=cpu_pct,
        memory_mb=memory_mb,
        disk_io_count=disk_io_count,
        active_connections=active_connections,
        timestamp=0,
    )


class FixedSampler:
    """Returns queued samples, repeating the last one once the queue runs dry."""

    def __init__(self, samples: Iterable[PerformanceSample] = ()) -> None:
        self._queue: List[PerformanceSample] = list(samples) or [sample()]
        self.calls = 0

    def sample(self) -> PerformanceSample:
        self.calls += 1
        if len(self._queue) > 1:
            return self._queue.pop(0)
        return self._queue[0]


class BrokenBackend:
    """Backend whose every read and write fails."""

    def __init__(self) -> None:
        self.saves = 0

    def load(self, key: str) -> Optional[bytes]:
        raise PersistenceFailure(key, "disk unavailable")

    def save(self, key: str, value: bytes) -> None:
        self.saves += 1
        raise PersistenceFailure(key, "disk full")


class SlowHandler(BaseHandler):
    def __init__(self, name: str, delay_s: float, **kwargs) -> None:
        super().__init__(name, **kwargs)
        self.delay_s = delay_s

    async def execute(self, intent: Intent) -> HandlerResult:
        await asyncio.sleep(self.delay_s)
        return HandlerResult(success=True, message=f"{self.name} finished late")


def action(command: str, timestamp: int, **context) -> ActionRecord:
    return ActionRecord(
        id=f"act_{timestamp}_{command.replace(' ', '_')}",
        command=command,
        context=dict(context),
        timestamp=timestamp,
        success=True,
        duration_ms=1200,
    )


def fill_store(store: MemoryStore, records: Iterable[ActionRecord]) -> None:
    async def _fill() -> None:
        for record in records:
            await store.append(record)

    asyncio.run(_fill())


def routine(start: int, commands: Iterable[str], *, step_ms: int = MINUTE_MS, **context) -> List[ActionRecord]:
    return [action(command, start + idx * step_ms, **context) for idx, command in enumerate(commands)]


class SlowBackend(InMemoryKeyValueStore):
    """In-memory backend whose writes block the calling thread for ``delay_s``."""

    def __init__(self, delay_s: float) -> None:
        super().__init__()
        self.delay_s = delay_s

    def save(self, key: str, value: bytes) -> None:
        time.sleep(self.delay_s)
        super().save(key, value)
