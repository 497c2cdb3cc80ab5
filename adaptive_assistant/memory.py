"""Bounded preference and action history with best-effort persistence."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, Iterable, Iterator, List, Optional

from .config import MemoryConfig
from .models import ActionRecord, PreferenceRecord
from .performance import ResourceCounters
from .persistence import InMemoryKeyValueStore, KeyValueStore, safe_load_json, safe_save_json

logger = logging.getLogger(__name__)


class MemoryStore:
    """Holds the learned handler choices and the action log.

    Preferences are keyed by request signature and capped at
    ``max_preferences`` (oldest timestamp evicted first). Actions live in a
    ring buffer of ``max_actions``. Each mutation rewrites its collection as
    one value in the backend; backend failures are logged and the store keeps
    working from memory. Writes run in a worker thread while the collection
    lock is held, so they reach the backend in mutation order.
    """

    def __init__(
        self,
        backend: KeyValueStore | None = None,
        config: MemoryConfig | None = None,
        *,
        namespace: str = "assistant",
        counters: ResourceCounters | None = None,
    ) -> None:
        self.config = config or MemoryConfig()
        self.backend: KeyValueStore = backend if backend is not None else InMemoryKeyValueStore()
        self.preferences_key = f"{namespace}.preferences"
        self.actions_key = f"{namespace}.actions"
        self._preferences: Dict[str, PreferenceRecord] = {}
        self._actions: Deque[ActionRecord] = deque(maxlen=self.config.max_actions)
        self._preference_lock = asyncio.Lock()
        self._action_lock = asyncio.Lock()
        self.counters = counters
        self.persistence_errors = 0

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Replace in-memory state with whatever the backend holds."""

        raw_preferences = safe_load_json(self.backend, self.preferences_key)
        if isinstance(raw_preferences, list):
            records = self._decode(raw_preferences, PreferenceRecord.from_dict)
            records.sort(key=lambda record: record.timestamp)
            self._preferences = {}
            for record in records:
                self._preferences.pop(record.request_signature, None)
                self._preferences[record.request_signature] = record
            self._evict_preferences()
        raw_actions = safe_load_json(self.backend, self.actions_key)
        if isinstance(raw_actions, list):
            actions = self._decode(raw_actions, ActionRecord.from_dict)
            actions.sort(key=lambda record: record.timestamp)
            self._actions = deque(actions, maxlen=self.config.max_actions)
        logger.debug(
            "Loaded %d preferences and %d actions", len(self._preferences), len(self._actions)
        )

    @staticmethod
    def _decode(items: Iterable, factory) -> list:
        decoded = []
        for item in items:
            try:
                decoded.append(factory(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed stored record %r: %s", item, exc)
        return decoded

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def get(self, signature: str) -> Optional[PreferenceRecord]:
        return self._preferences.get(signature)

    async def upsert(self, record: PreferenceRecord) -> None:
        async with self._preference_lock:
            self._preferences.pop(record.request_signature, None)
            self._preferences[record.request_signature] = record
            self._evict_preferences()
            payload = [item.to_dict() for item in self._preferences.values()]
            await self._persist(self.preferences_key, payload)

    def preferences(self) -> List[PreferenceRecord]:
        return sorted(self._preferences.values(), key=lambda record: record.timestamp)

    def last_success(self, handler: str) -> Optional[int]:
        """Most recent timestamp at which ``handler`` was the successful choice."""

        stamps = [
            record.timestamp
            for record in self._preferences.values()
            if record.success and record.chosen_handler == handler
        ]
        return max(stamps) if stamps else None

    def _evict_preferences(self) -> None:
        while len(self._preferences) > self.config.max_preferences:
            oldest = min(self._preferences.values(), key=lambda record: record.timestamp)
            del self._preferences[oldest.request_signature]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def append(self, record: ActionRecord) -> None:
        async with self._action_lock:
            self._actions.append(record)
            payload = [item.to_dict() for item in self._actions]
            await self._persist(self.actions_key, payload)

    def recent_actions(self, limit: int) -> List[ActionRecord]:
        """Last ``limit`` actions, oldest first."""

        if limit <= 0:
            return []
        items = list(self._actions)
        return items[-limit:]

    def snapshot_actions(self) -> List[ActionRecord]:
        return list(self._actions)

    def actions_since(self, timestamp: int) -> List[ActionRecord]:
        return [record for record in self._actions if record.timestamp >= timestamp]

    def iter_recent(self) -> Iterator[ActionRecord]:
        return iter(reversed(self._actions))

    def __len__(self) -> int:
        return len(self._actions)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self, key: str, payload: list) -> None:
        saved = await asyncio.to_thread(safe_save_json, self.backend, key, payload)
        if self.counters is not None:
            self.counters.record_disk_io()
        if not saved:
            self.persistence_errors += 1
