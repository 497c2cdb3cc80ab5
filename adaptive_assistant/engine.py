"""End-to-end wiring and lifecycle of the assistant engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

from .config import EngineConfig
from .handlers import CapabilityHandler, HandlerRegistry
from .intents import IntentClassifier
from .memory import MemoryStore
from .models import BehaviorPattern, PatternSuggestion, ResolveResult
from .observers import PollingObserver, Probe
from .orchestrator import FallbackOrchestrator
from .patterns import PatternMiner, PatternStore
from .performance import ResourceCounters, SystemSampler
from .persistence import InMemoryKeyValueStore, KeyValueStore, SQLiteKeyValueStore
from .reporting import behavior_report
from .throttle import Sampler, ThrottleController
from .utils import timestamp_ms

logger = logging.getLogger(__name__)


class AssistantEngine:
    """Coordinates the modules and owns their background tasks."""

    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        handlers: Iterable[CapabilityHandler] = (),
        backend: KeyValueStore | None = None,
        sampler: Sampler | None = None,
        classifier: IntentClassifier | None = None,
        clock: Callable[[], int] = timestamp_ms,
    ) -> None:
        self.config = config or EngineConfig()
        self._owns_backend = backend is None
        if backend is None:
            backend = (
                SQLiteKeyValueStore(self.config.state_path)
                if self.config.state_path
                else InMemoryKeyValueStore()
            )
        self.backend = backend
        self.throttle = ThrottleController(self.config.throttle)
        self.counters = ResourceCounters()
        self.store = MemoryStore(backend, self.config.memory, counters=self.counters)
        self.registry = HandlerRegistry(handlers)
        self.classifier = classifier or IntentClassifier(config=self.config.classifier)
        self.orchestrator = FallbackOrchestrator(
            self.classifier,
            self.store,
            self.registry,
            self.config.orchestrator,
            clock=clock,
        )
        self.pattern_store = PatternStore(backend, capacity=self.config.miner.max_patterns, counters=self.counters)
        self.miner = PatternMiner(
            self.store,
            self.throttle,
            self.pattern_store,
            self.config.miner,
            clock=clock,
        )
        self.sampler = sampler
        self.observers: List[PollingObserver] = []
        self._clock = clock
        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def register_handler(self, handler: CapabilityHandler) -> None:
        self.registry.register(handler)

    def add_observer(self, name: str, probe: Probe, **kwargs: Any) -> PollingObserver:
        if self.running:
            raise RuntimeError("observers must be added before the engine starts")
        kwargs.setdefault("clock", self._clock)
        observer = PollingObserver(name, probe, self.throttle, self.store, **kwargs)
        self.observers.append(observer)
        return observer

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self.store.load()
        self.pattern_store.load()
        if self.sampler is None:
            self.sampler = SystemSampler(self.counters)
        self._stop_event = asyncio.Event()
        stop = self._stop_event
        self._tasks = [
            asyncio.create_task(
                self.throttle.run_sampling(self.sampler, stop, interval_s=self.config.throttle.sample_interval_s),
                name="performance-sampling",
            ),
            asyncio.create_task(self.miner.run(stop), name="pattern-miner"),
        ]
        for observer in self.observers:
            self._tasks.append(asyncio.create_task(observer.run(stop), name=f"observer-{observer.name}"))
        logger.info("Assistant engine started with %d background tasks", len(self._tasks))

    async def stop(self, *, timeout_s: float = 5.0) -> None:
        if not self.running:
            return
        assert self._stop_event is not None
        self._stop_event.set()
        tasks, self._tasks = self._tasks, []
        done, pending = await asyncio.wait(tasks, timeout=timeout_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("Background task %s failed: %s", task.get_name(), task.exception())
        await self.pattern_store.save_async()
        logger.info("Assistant engine stopped")

    def close(self) -> None:
        if self._owns_backend and isinstance(self.backend, SQLiteKeyValueStore):
            self.backend.close()

    async def __aenter__(self) -> "AssistantEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
        self.close()

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    async def resolve(self, request_text: str, context: Mapping[str, Any] | None = None) -> ResolveResult:
        return await self.orchestrator.resolve(request_text, context)

    async def resolve_with(
        self, request_text: str, handler_name: str, context: Mapping[str, Any] | None = None
    ) -> ResolveResult:
        return await self.orchestrator.resolve_with(request_text, handler_name, context)

    def detect_patterns(self) -> List[BehaviorPattern]:
        return self.miner.detect_patterns()

    def suggestions(self) -> List[PatternSuggestion]:
        return self.miner.generate_suggestions()

    def report_text(self) -> str:
        return behavior_report(self.store.snapshot_actions(), self.suggestions()).render_text()
