"""Adaptive polling intervals for background observers with an emergency mode."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from .config import ThrottleSettings
from .errors import ThresholdBreach
from .models import PerformanceSample, ThrottleConfig
from .performance import SampleWindow, check_critical, tier_warnings
from .utils import timestamp_ms

logger = logging.getLogger(__name__)

ThrottleListener = Callable[[Dict[str, Any]], Any]

EMERGENCY_ENTER = "emergency-mode-enter"
EMERGENCY_EXIT = "emergency-mode-exit"
PERFORMANCE_WARNING = "performance-warning"
LOW_PERFORMANCE = "low-performance-mode"
HIGH_PERFORMANCE = "high-performance-mode"


class Sampler(Protocol):
    def sample(self) -> PerformanceSample:
        ...


async def wait_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; return True if ``stop_event`` fired meanwhile."""

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, seconds))
    except asyncio.TimeoutError:
        return False
    return True


class ThrottleController:
    """Owns every observer's polling interval.

    ``current_interval_ms`` is only ever changed here and is clamped to
    ``[min_interval_ms, max_interval_ms]`` on every write. Emergency mode is
    global: it is entered when a sample crosses the critical tier and left
    when a later sample is clear of it, halving intervals on the way out
    instead of snapping back to the minimum.
    """

    def __init__(self, settings: ThrottleSettings | None = None) -> None:
        self.settings = settings or ThrottleSettings()
        self._configs: Dict[str, ThrottleConfig] = {}
        self._listeners: List[ThrottleListener] = []
        self._window = SampleWindow(self.settings.history_size)
        self._emergency = False

    # ------------------------------------------------------------------
    # Registration and lookups
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        min_interval_ms: float | None = None,
        max_interval_ms: float | None = None,
        backoff_multiplier: float | None = None,
    ) -> ThrottleConfig:
        existing = self._configs.get(name)
        if existing is not None:
            return existing
        defaults = self.settings.observers.get(name)
        if min_interval_ms is None:
            min_interval_ms = defaults.min_interval_ms if defaults else 2000.0
        if max_interval_ms is None:
            max_interval_ms = defaults.max_interval_ms if defaults else 60000.0
        if backoff_multiplier is None:
            backoff_multiplier = defaults.backoff_multiplier if defaults else 2.0
        if min_interval_ms <= 0:
            raise ValueError("min_interval_ms must be positive")
        if max_interval_ms < min_interval_ms:
            raise ValueError("max_interval_ms must be >= min_interval_ms")
        if backoff_multiplier <= 1.0:
            raise ValueError("backoff_multiplier must be greater than 1")
        config = ThrottleConfig(
            name=name,
            min_interval_ms=float(min_interval_ms),
            max_interval_ms=float(max_interval_ms),
            current_interval_ms=float(min_interval_ms),
            backoff_multiplier=float(backoff_multiplier),
        )
        self._configs[name] = config
        logger.debug("Registered throttle %s (%.0f-%.0fms)", name, min_interval_ms, max_interval_ms)
        return config

    def config(self, name: str) -> Optional[ThrottleConfig]:
        return self._configs.get(name)

    def configs(self) -> List[ThrottleConfig]:
        return list(self._configs.values())

    def get_throttled_interval(self, name: str) -> float:
        config = self._configs.get(name)
        if config is None:
            return self.settings.default_interval_ms
        if self._emergency:
            return config.max_interval_ms
        return config.current_interval_ms

    @property
    def emergency_mode(self) -> bool:
        return self._emergency

    # ------------------------------------------------------------------
    # Per-observer adjustments
    # ------------------------------------------------------------------

    def increase_throttle(self, name: str) -> None:
        config = self._configs.get(name)
        if config is None:
            return
        self._set_current(config, config.current_interval_ms * config.backoff_multiplier)
        logger.debug("Increased throttle for %s: %.0fms", name, config.current_interval_ms)

    def decrease_throttle(self, name: str) -> None:
        config = self._configs.get(name)
        if config is None or self._emergency:
            return
        self._set_current(config, config.current_interval_ms / config.backoff_multiplier)
        logger.debug("Decreased throttle for %s: %.0fms", name, config.current_interval_ms)

    @staticmethod
    def _set_current(config: ThrottleConfig, value: float) -> None:
        config.current_interval_ms = min(max(value, config.min_interval_ms), config.max_interval_ms)

    # ------------------------------------------------------------------
    # Samples and emergency mode
    # ------------------------------------------------------------------

    def record_sample(self, sample: PerformanceSample) -> None:
        self._window.add(sample)
        critical: List[str] = []
        try:
            check_critical(sample, self.settings.critical)
        except ThresholdBreach as breach:
            critical = breach.warnings
        if critical and not self._emergency:
            self._enter_emergency(sample, critical)
        elif not critical and self._emergency:
            self._exit_emergency(sample)
        warnings = critical + tier_warnings(sample, self.settings.warning, label="Elevated")
        if warnings:
            logger.warning("Performance warnings: %s", "; ".join(warnings))
            self._emit(PERFORMANCE_WARNING, sample=sample, warnings=warnings)

    def _enter_emergency(self, sample: PerformanceSample, warnings: List[str]) -> None:
        self._emergency = True
        logger.info("Entering emergency performance mode: %s", "; ".join(warnings))
        for config in self._configs.values():
            config.current_interval_ms = config.max_interval_ms
        self._emit(EMERGENCY_ENTER, sample=sample, warnings=warnings)

    def _exit_emergency(self, sample: PerformanceSample) -> None:
        self._emergency = False
        logger.info("Exiting emergency performance mode")
        for config in self._configs.values():
            self._set_current(config, config.current_interval_ms / 2)
        self._emit(EMERGENCY_EXIT, sample=sample)

    def optimize_for_low_performance(self) -> None:
        for config in self._configs.values():
            config.current_interval_ms = config.max_interval_ms
        self._emit(LOW_PERFORMANCE)

    def optimize_for_high_performance(self) -> None:
        for config in self._configs.values():
            config.current_interval_ms = config.min_interval_ms
        self._emit(HIGH_PERFORMANCE)

    def samples(self) -> List[PerformanceSample]:
        return self._window.all()

    def latest_sample(self) -> Optional[PerformanceSample]:
        return self._window.latest()

    def emergency_status(self) -> Dict[str, Any]:
        latest = self._window.latest()
        return {
            "emergency_mode": self._emergency,
            "memory_mb": latest.memory_mb if latest else 0.0,
            "cpu_pct": latest.cpu_pct if latest else 0.0,
            "disk_io_count": latest.disk_io_count if latest else 0,
            "active_connections": latest.active_connections if latest else 0,
        }

    async def run_sampling(
        self,
        sampler: Sampler,
        stop_event: asyncio.Event,
        *,
        interval_s: float | None = None,
    ) -> None:
        """Collect a sample every ``interval_s`` until ``stop_event`` is set."""

        interval = interval_s if interval_s is not None else self.settings.sample_interval_s
        logger.info("Performance sampling started (interval: %.1fs)", interval)
        while not stop_event.is_set():
            try:
                sample = sampler.sample()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Performance sampling failed: %s", exc)
            else:
                self.record_sample(sample)
            if await wait_or_stop(stop_event, interval):
                break
        logger.info("Performance sampling stopped")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: ThrottleListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(
        self,
        event_type: str,
        *,
        sample: PerformanceSample | None = None,
        warnings: List[str] | None = None,
    ) -> None:
        event: Dict[str, Any] = {
            "type": event_type,
            "metrics": sample,
            "warnings": list(warnings or []),
            "emergency_mode": self._emergency,
            "timestamp": timestamp_ms(),
        }
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Throttle listener failed for %s: %s", event_type, exc)
