"""Throttled polling observers for clipboard, window and similar host signals."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Union

from .memory import MemoryStore
from .models import ActionRecord
from .throttle import ThrottleController, wait_or_stop
from .utils import generate_id, timestamp_ms

logger = logging.getLogger(__name__)

Probe = Callable[[], Union[Hashable, None, Awaitable[Hashable]]]
Describe = Callable[[Hashable], Optional[str]]


class PollingObserver:
    """Polls ``probe`` at the interval the throttle controller hands out.

    A changed observation tightens the interval and, when ``describe`` turns
    it into a command string, is logged as an ``ActionRecord``. An unchanged
    observation (or a probe error) relaxes the interval.
    """

    def __init__(
        self,
        name: str,
        probe: Probe,
        throttle: ThrottleController,
        store: MemoryStore | None = None,
        *,
        describe: Describe | None = None,
        context: Callable[[Hashable], Dict[str, Any]] | None = None,
        min_interval_ms: float | None = None,
        max_interval_ms: float | None = None,
        backoff_multiplier: float | None = None,
        clock: Callable[[], int] = timestamp_ms,
    ) -> None:
        self.name = name
        self.probe = probe
        self.throttle = throttle
        self.store = store
        self.describe = describe
        self.context = context
        self._clock = clock
        self._last: Optional[Hashable] = None
        self.changes = 0
        self.polls = 0
        self.throttle.register(
            name,
            min_interval_ms=min_interval_ms,
            max_interval_ms=max_interval_ms,
            backoff_multiplier=backoff_multiplier,
        )

    async def poll_once(self) -> bool:
        """Take one observation; return True when it differs from the last one."""

        self.polls += 1
        try:
            observation = self.probe()
            if inspect.isawaitable(observation):
                observation = await observation
        except Exception as exc:  # noqa: BLE001
            logger.warning("Observer %s probe failed: %s", self.name, exc)
            self.throttle.increase_throttle(self.name)
            return False
        if observation is None or observation == self._last:
            self.throttle.increase_throttle(self.name)
            return False
        self._last = observation
        self.changes += 1
        self.throttle.decrease_throttle(self.name)
        try:
            await self._record(observation)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Observer %s could not record observation: %s", self.name, exc)
        return True

    async def _record(self, observation: Hashable) -> None:
        if self.store is None or self.describe is None:
            return
        command = self.describe(observation)
        if not command:
            return
        context = {"source": self.name}
        if self.context is not None:
            context.update(self.context(observation))
        await self.store.append(
            ActionRecord(
                id=generate_id("obs"),
                command=command,
                context=context,
                timestamp=self._clock(),
                success=True,
            )
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("Observer %s started", self.name)
        while not stop_event.is_set():
            await self.poll_once()
            interval_s = self.throttle.get_throttled_interval(self.name) / 1000
            if await wait_or_stop(stop_event, interval_s):
                break
        logger.info("Observer %s stopped", self.name)
