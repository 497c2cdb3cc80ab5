"""Repeated action-sequence mining and automation suggestions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from .config import MinerConfig
from .memory import MemoryStore
from .models import ActionRecord, BehaviorPattern, PatternSuggestion, sequence_key
from .performance import ResourceCounters
from .persistence import InMemoryKeyValueStore, KeyValueStore, safe_load_json, safe_save_json
from .throttle import ThrottleController, wait_or_stop
from .utils import generate_id, timestamp_ms

logger = logging.getLogger(__name__)

MINER_THROTTLE = "pattern_miner"


def pattern_confidence(frequency: int, context_count: int) -> float:
    """Frequency dominates; context diversity corroborates."""

    return 0.7 * min(frequency / 5, 1.0) + 0.3 * min(context_count / 3, 1.0)


def pattern_name(actions: Sequence[str]) -> str:
    heads = []
    for action in actions[:2]:
        word = action.split(" ", 1)[0] if action else ""
        heads.append(word[:1].upper() + word[1:])
    suffix = "..." if len(actions) > 2 else ""
    return " → ".join(heads) + suffix


def context_label(context: Mapping[str, Any]) -> str:
    app = str(context.get("app") or context.get("active_app") or "").strip()
    title = str(context.get("window_title") or "").strip()
    label = " ".join(part for part in (app, title) if part).lower()
    return label or "general"


def automation_type(sequence_length: int) -> str:
    if sequence_length > 3:
        return "workflow"
    if sequence_length > 1:
        return "shortcut"
    return "reminder"


def _contains_run(longer: Sequence[str], shorter: Sequence[str]) -> bool:
    size = len(shorter)
    return any(tuple(longer[idx : idx + size]) == tuple(shorter) for idx in range(len(longer) - size + 1))


@dataclass(slots=True)
class SequenceOccurrences:
    sequence: Tuple[str, ...]
    starts: List[int] = field(default_factory=list)
    contexts: Set[str] = field(default_factory=set)

    @property
    def frequency(self) -> int:
        return len(self.starts)


@dataclass(slots=True)
class ScanStats:
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    actions_scanned: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated)


class PatternStore:
    """Persistent pattern set capped at ``capacity``, evicting least recently seen."""

    def __init__(
        self,
        backend: KeyValueStore | None = None,
        *,
        capacity: int = 200,
        namespace: str = "assistant",
        counters: ResourceCounters | None = None,
    ) -> None:
        self.backend: KeyValueStore = backend if backend is not None else InMemoryKeyValueStore()
        self.capacity = max(1, capacity)
        self.key = f"{namespace}.patterns"
        self.counters = counters
        self._patterns: Dict[str, BehaviorPattern] = {}

    def load(self) -> None:
        raw = safe_load_json(self.backend, self.key)
        if not isinstance(raw, list):
            return
        self._patterns = {}
        for item in raw:
            try:
                pattern = BehaviorPattern.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed stored pattern %r: %s", item, exc)
                continue
            self._patterns[pattern.key] = pattern
        self._evict()

    def save(self) -> bool:
        return self._write(self._payload())

    async def save_async(self) -> bool:
        """Snapshot on the event loop, write from a worker thread."""

        return await asyncio.to_thread(self._write, self._payload())

    def _payload(self) -> List[Dict[str, Any]]:
        return [pattern.to_dict() for pattern in self._patterns.values()]

    def _write(self, payload: List[Dict[str, Any]]) -> bool:
        saved = safe_save_json(self.backend, self.key, payload)
        if self.counters is not None:
            self.counters.record_disk_io()
        return saved

    def get_by_sequence(self, sequence: Sequence[str]) -> Optional[BehaviorPattern]:
        return self._patterns.get(sequence_key(list(sequence)))

    def get(self, pattern_id: str) -> Optional[BehaviorPattern]:
        for pattern in self._patterns.values():
            if pattern.id == pattern_id:
                return pattern
        return None

    def put(self, pattern: BehaviorPattern) -> None:
        self._patterns[pattern.key] = pattern
        self._evict()

    def all(self) -> List[BehaviorPattern]:
        return sorted(self._patterns.values(), key=lambda pattern: pattern.last_seen, reverse=True)

    def __len__(self) -> int:
        return len(self._patterns)

    def _evict(self) -> None:
        while len(self._patterns) > self.capacity:
            stale = min(self._patterns.values(), key=lambda pattern: pattern.last_seen)
            del self._patterns[stale.key]
            logger.debug("Evicted pattern %s", stale.name)


class PatternMiner:
    """Finds repeated command runs in the recent action log.

    Each scan works on a snapshot of the log, so actions appended meanwhile
    are picked up by the next scan. Occurrences are counted once: a pattern
    remembers the start of the newest occurrence it has absorbed, and later
    scans only add occurrences after it.
    """

    def __init__(
        self,
        store: MemoryStore,
        throttle: ThrottleController,
        patterns: PatternStore | None = None,
        config: MinerConfig | None = None,
        *,
        clock: Callable[[], int] = timestamp_ms,
    ) -> None:
        self.store = store
        self.throttle = throttle
        self.config = config or MinerConfig()
        self.patterns = patterns if patterns is not None else PatternStore(capacity=self.config.max_patterns)
        self._clock = clock
        self.last_scan = ScanStats()
        scan = self.config.scan_throttle
        self.throttle.register(
            MINER_THROTTLE,
            min_interval_ms=scan.min_interval_ms,
            max_interval_ms=scan.max_interval_ms,
            backoff_multiplier=scan.backoff_multiplier,
        )

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_patterns(self, now: int | None = None, *, save: bool = True) -> List[BehaviorPattern]:
        now = self._clock() if now is None else now
        window_start = now - int(self.config.window_hours * 3600 * 1000)
        actions = sorted(
            (action for action in self.store.snapshot_actions() if action.timestamp >= window_start and action.command),
            key=lambda action: action.timestamp,
        )
        stats = ScanStats(actions_scanned=len(actions))
        self.last_scan = stats
        if len(actions) < self.config.min_sequence:
            logger.debug("Not enough recent actions for pattern detection (%d)", len(actions))
            return []

        occurrences = self._extract_sequences(actions)
        detected: List[BehaviorPattern] = []
        for occurrence in occurrences.values():
            existing = self.patterns.get_by_sequence(occurrence.sequence)
            if existing is None:
                continue
            if self._merge(existing, occurrence, now):
                stats.updated += 1
            else:
                stats.unchanged += 1
            detected.append(existing)

        for occurrence in self._new_candidates(occurrences):
            pattern = BehaviorPattern(
                id=generate_id("pat"),
                name=pattern_name(occurrence.sequence),
                action_sequence=list(occurrence.sequence),
                frequency=occurrence.frequency,
                confidence=pattern_confidence(occurrence.frequency, len(occurrence.contexts)),
                contexts=set(occurrence.contexts),
                first_seen=now,
                last_seen=now,
                last_occurrence_ts=max(occurrence.starts),
            )
            self.patterns.put(pattern)
            stats.created += 1
            detected.append(pattern)

        if detected and save:
            self.patterns.save()
        logger.info(
            "Pattern scan: %d actions, %d new, %d updated, %d unchanged",
            stats.actions_scanned,
            stats.created,
            stats.updated,
            stats.unchanged,
        )
        return detected

    def _extract_sequences(self, actions: List[ActionRecord]) -> Dict[Tuple[str, ...], SequenceOccurrences]:
        gap_ms = int(self.config.max_gap_minutes * 60 * 1000)
        min_len = self.config.min_sequence
        max_len = max(self.config.max_sequence, min_len)
        found: Dict[Tuple[str, ...], SequenceOccurrences] = {}
        for idx, start in enumerate(actions):
            sequence = [start.command]
            label = context_label(start.context)
            for follower in actions[idx + 1 : idx + max_len]:
                if follower.timestamp - start.timestamp > gap_ms:
                    break
                sequence.append(follower.command)
                if len(sequence) < min_len:
                    continue
                key = tuple(sequence)
                entry = found.setdefault(key, SequenceOccurrences(sequence=key))
                entry.starts.append(start.timestamp)
                entry.contexts.add(label)
        return found

    def _new_candidates(self, occurrences: Dict[Tuple[str, ...], SequenceOccurrences]) -> List[SequenceOccurrences]:
        """Repeated sequences not stored yet, minus runs folded into longer ones."""

        repeated = [entry for entry in occurrences.values() if entry.frequency >= self.config.min_frequency]
        candidates = []
        for entry in repeated:
            if self.patterns.get_by_sequence(entry.sequence) is not None:
                continue
            folded = any(
                len(other.sequence) > len(entry.sequence)
                and other.frequency == entry.frequency
                and _contains_run(other.sequence, entry.sequence)
                for other in repeated
            )
            if not folded:
                candidates.append(entry)
        candidates.sort(key=lambda entry: entry.frequency, reverse=True)
        return candidates

    @staticmethod
    def _merge(pattern: BehaviorPattern, occurrence: SequenceOccurrences, now: int) -> bool:
        fresh = [start for start in occurrence.starts if start > pattern.last_occurrence_ts]
        pattern.contexts |= occurrence.contexts
        pattern.last_seen = max(pattern.last_seen, now)
        if not fresh:
            pattern.confidence = pattern_confidence(pattern.frequency, len(pattern.contexts))
            return False
        pattern.frequency += len(fresh)
        pattern.last_occurrence_ts = max(fresh)
        pattern.confidence = pattern_confidence(pattern.frequency, len(pattern.contexts))
        return True

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def estimate_time_savings(self, pattern: BehaviorPattern) -> float:
        manual = len(pattern.action_sequence) * self.config.per_action_cost_ms
        return (manual - self.config.automated_cost_ms) * pattern.frequency

    def generate_suggestions(self) -> List[PatternSuggestion]:
        suggestions: List[PatternSuggestion] = []
        for pattern in self.patterns.all():
            if pattern.frequency < self.config.min_frequency or pattern.is_automated:
                continue
            savings = self.estimate_time_savings(pattern)
            suggestions.append(
                PatternSuggestion(
                    pattern=pattern,
                    suggestion=(
                        f'Automate "{pattern.name}" to save about '
                        f"{round(savings / 1000)} seconds so far"
                    ),
                    confidence=pattern.confidence,
                    estimated_time_savings_ms=savings,
                    automation_type=automation_type(len(pattern.action_sequence)),
                )
            )
        suggestions.sort(key=lambda item: item.estimated_time_savings_ms, reverse=True)
        return suggestions

    def mark_automated(self, pattern_id: str) -> bool:
        pattern = self.patterns.get(pattern_id)
        if pattern is None:
            return False
        pattern.is_automated = True
        self.patterns.save()
        return True

    # ------------------------------------------------------------------
    # Background cadence
    # ------------------------------------------------------------------

    async def run(self, stop_event: asyncio.Event) -> None:
        """Scan on the miner's own throttle entry until ``stop_event`` is set."""

        logger.info("Pattern miner started")
        while True:
            interval_s = self.throttle.get_throttled_interval(MINER_THROTTLE) / 1000
            if await wait_or_stop(stop_event, interval_s):
                break
            try:
                if self.detect_patterns(save=False):
                    await self.patterns.save_async()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Pattern detection failed: %s", exc)
                self.throttle.increase_throttle(MINER_THROTTLE)
                continue
            if self.last_scan.changed:
                self.throttle.decrease_throttle(MINER_THROTTLE)
            else:
                self.throttle.increase_throttle(MINER_THROTTLE)
        logger.info("Pattern miner stopped")
