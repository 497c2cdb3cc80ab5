from __future__ import annotations

import unittest

from adaptive_assistant.config import ThrottleSettings
from adaptive_assistant.errors import ThresholdBreach
from adaptive_assistant.performance import (
    ResourceCounters,
    SampleWindow,
    SystemSampler,
    check_critical,
    tier_warnings,
)

from tests.helpers import sample


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestResourceCounters(unittest.TestCase):
    def test_disk_io_decays_out_of_window(self) -> None:
        clock = FakeClock()
        counters = ResourceCounters(io_window_s=30.0, clock=clock)
        counters.record_disk_io(3)
        clock.now = 20.0
        counters.record_disk_io()
        self.assertEqual(4, counters.disk_io_count)
        clock.now = 31.0
        self.assertEqual(1, counters.disk_io_count)
        clock.now = 60.0
        self.assertEqual(0, counters.disk_io_count)

    def test_connections_never_go_negative(self) -> None:
        counters = ResourceCounters()
        counters.record_connection(True)
        counters.record_connection(True)
        counters.record_connection(False)
        self.assertEqual(1, counters.active_connections)
        counters.record_connection(False)
        counters.record_connection(False)
        self.assertEqual(0, counters.active_connections)


class TestThresholds(unittest.TestCase):
    def test_tier_warnings_lists_each_breached_metric(self) -> None:
        tier = ThrottleSettings().warning
        warnings = tier_warnings(
            sample(cpu_pct=45.0, memory_mb=100.0, disk_io_count=150, active_connections=3),
            tier,
            label="Elevated",
        )
        self.assertEqual(["Elevated CPU usage: 45.0%", "Elevated disk I/O: 150 operations"], warnings)

    def test_values_at_threshold_do_not_breach(self) -> None:
        tier = ThrottleSettings().critical
        check_critical(sample(cpu_pct=50.0, memory_mb=800.0, disk_io_count=200, active_connections=50), tier)

    def test_check_critical_raises(self) -> None:
        with self.assertRaises(ThresholdBreach) as caught:
            check_critical(sample(memory_mb=801.0), ThrottleSettings().critical)
        self.assertEqual(["Critical memory usage: 801.0MB"], caught.exception.warnings)


class TestSampling(unittest.TestCase):
    def test_system_sampler_reads_current_process(self) -> None:
        counters = ResourceCounters()
        counters.record_connection(True)
        current = SystemSampler(counters).sample()
        self.assertGreater(current.memory_mb, 0.0)
        self.assertGreaterEqual(current.cpu_pct, 0.0)
        self.assertEqual(1, current.active_connections)

    def test_sample_window_keeps_latest(self) -> None:
        window = SampleWindow(2)
        self.assertIsNone(window.latest())
        for cpu in (1.0, 2.0, 3.0):
            window.add(sample(cpu_pct=cpu))
        self.assertEqual(2, len(window))
        self.assertEqual([2.0, 3.0], [item.cpu_pct for item in window.all()])


if __name__ == "__main__":
    unittest.main()
