"""Process resource sampling and threshold evaluation."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional

import psutil

from .config import ThresholdTier
from .errors import ThresholdBreach
from .models import PerformanceSample
from .utils import timestamp_ms

logger = logging.getLogger(__name__)


class ResourceCounters:
    """App-reported disk I/O and connection counts.

    Disk operations decay out of the count after ``io_window_s`` seconds, so
    the sampled value reflects recent pressure rather than lifetime totals.
    """

    def __init__(self, *, io_window_s: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.io_window_s = io_window_s
        self._clock = clock
        self._io_events: Deque[float] = deque()
        self._connections = 0
        self._lock = threading.Lock()

    def record_disk_io(self, count: int = 1) -> None:
        now = self._clock()
        with self._lock:
            for _ in range(max(0, count)):
                self._io_events.append(now)

    def record_connection(self, active: bool) -> None:
        with self._lock:
            if active:
                self._connections += 1
            else:
                self._connections = max(0, self._connections - 1)

    @property
    def disk_io_count(self) -> int:
        cutoff = self._clock() - self.io_window_s
        with self._lock:
            while self._io_events and self._io_events[0] < cutoff:
                self._io_events.popleft()
            return len(self._io_events)

    @property
    def active_connections(self) -> int:
        with self._lock:
            return self._connections


class SystemSampler:
    """Builds ``PerformanceSample`` values for the current process via psutil."""

    def __init__(self, counters: ResourceCounters | None = None, *, pid: int | None = None) -> None:
        self.counters = counters if counters is not None else ResourceCounters()
        self._process = psutil.Process(pid)
        # First cpu_percent call only primes psutil's internal timer.
        self._process.cpu_percent(interval=None)

    def sample(self) -> PerformanceSample:
        try:
            cpu_pct = float(self._process.cpu_percent(interval=None))
            memory_mb = self._process.memory_info().rss / 1024 / 1024
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as exc:
            logger.warning("Unable to read process metrics: %s", exc)
            cpu_pct, memory_mb = 0.0, 0.0
        return PerformanceSample(
            cpu_pct=cpu_pct,
            memory_mb=memory_mb,
            disk_io_count=self.counters.disk_io_count,
            active_connections=self.counters.active_connections,
            timestamp=timestamp_ms(),
        )


def tier_warnings(sample: PerformanceSample, tier: ThresholdTier, *, label: str) -> List[str]:
    """Human readable messages for every metric above ``tier``."""

    warnings: List[str] = []
    if sample.memory_mb > tier.memory_mb:
        warnings.append(f"{label} memory usage: {sample.memory_mb:.1f}MB")
    if sample.cpu_pct > tier.cpu_pct:
        warnings.append(f"{label} CPU usage: {sample.cpu_pct:.1f}%")
    if sample.disk_io_count > tier.disk_io_count:
        warnings.append(f"{label} disk I/O: {sample.disk_io_count} operations")
    if sample.active_connections > tier.active_connections:
        warnings.append(f"{label} connection count: {sample.active_connections}")
    return warnings


def check_critical(sample: PerformanceSample, tier: ThresholdTier) -> None:
    """Raise ``ThresholdBreach`` when any metric is above the critical tier."""

    warnings = tier_warnings(sample, tier, label="Critical")
    if warnings:
        raise ThresholdBreach(warnings)


class SampleWindow:
    """Rolling window of the most recent samples."""

    def __init__(self, size: int = 100) -> None:
        self._samples: Deque[PerformanceSample] = deque(maxlen=size)

    def add(self, sample: PerformanceSample) -> None:
        self._samples.append(sample)

    def latest(self) -> Optional[PerformanceSample]:
        return self._samples[-1] if self._samples else None

    def all(self) -> List[PerformanceSample]:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)
