from __future__ import annotations

import asyncio
import unittest

from adaptive_assistant.config import ObserverThrottle, ThrottleSettings
from adaptive_assistant.throttle import (
    EMERGENCY_ENTER,
    EMERGENCY_EXIT,
    HIGH_PERFORMANCE,
    LOW_PERFORMANCE,
    PERFORMANCE_WARNING,
    ThrottleController,
    wait_or_stop,
)

from tests.helpers import FixedSampler, sample


class TestThrottleController(unittest.TestCase):
    def setUp(self) -> None:
        self.controller = ThrottleController()
        self.events: list[dict] = []
        self.controller.subscribe(self.events.append)

    def event_types(self) -> list[str]:
        return [event["type"] for event in self.events]

    def test_register_starts_at_minimum(self) -> None:
        config = self.controller.register("clipboard", 1000, 8000, 2.0)
        self.assertEqual(1000.0, config.current_interval_ms)
        self.assertEqual(1000.0, self.controller.get_throttled_interval("clipboard"))

    def test_register_is_idempotent(self) -> None:
        first = self.controller.register("clipboard", 1000, 8000, 2.0)
        second = self.controller.register("clipboard", 5, 10, 3.0)
        self.assertIs(first, second)
        self.assertEqual(1000.0, second.min_interval_ms)

    def test_register_uses_configured_observer_defaults(self) -> None:
        controller = ThrottleController(
            ThrottleSettings(observers={"window": ObserverThrottle(500.0, 4000.0, 1.5)})
        )
        config = controller.register("window")
        self.assertEqual((500.0, 4000.0, 1.5), (config.min_interval_ms, config.max_interval_ms, config.backoff_multiplier))
        fallback = controller.register("other")
        self.assertEqual((2000.0, 60000.0, 2.0), (fallback.min_interval_ms, fallback.max_interval_ms, fallback.backoff_multiplier))

    def test_register_rejects_invalid_bounds(self) -> None:
        with self.assertRaises(ValueError):
            self.controller.register("a", 0, 100, 2.0)
        with self.assertRaises(ValueError):
            self.controller.register("b", 100, 50, 2.0)
        with self.assertRaises(ValueError):
            self.controller.register("c", 100, 500, 1.0)

    def test_unknown_observer_gets_default_interval(self) -> None:
        self.assertEqual(2000.0, self.controller.get_throttled_interval("nobody"))

    def test_increase_and_decrease_are_clamped(self) -> None:
        self.controller.register("clipboard", 1000, 5000, 2.0)
        for expected in (2000.0, 4000.0, 5000.0, 5000.0):
            self.controller.increase_throttle("clipboard")
            self.assertEqual(expected, self.controller.get_throttled_interval("clipboard"))
        for expected in (2500.0, 1250.0, 1000.0, 1000.0):
            self.controller.decrease_throttle("clipboard")
            self.assertEqual(expected, self.controller.get_throttled_interval("clipboard"))

    def test_unknown_names_are_ignored_by_adjustments(self) -> None:
        self.controller.increase_throttle("nobody")
        self.controller.decrease_throttle("nobody")
        self.assertIsNone(self.controller.config("nobody"))

    def test_critical_sample_enters_emergency_mode(self) -> None:
        self.controller.register("clipboard", 1000, 8000, 2.0)

        self.controller.record_sample(sample(memory_mb=900.0))

        self.assertTrue(self.controller.emergency_mode)
        self.assertEqual(8000.0, self.controller.get_throttled_interval("clipboard"))
        self.assertEqual([EMERGENCY_ENTER, PERFORMANCE_WARNING], self.event_types())
        self.assertIn("Critical memory usage: 900.0MB", self.events[0]["warnings"])
        self.assertTrue(self.events[0]["emergency_mode"])

    def test_decrease_is_ignored_during_emergency(self) -> None:
        self.controller.register("clipboard", 1000, 8000, 2.0)
        self.controller.record_sample(sample(cpu_pct=75.0))
        self.controller.decrease_throttle("clipboard")
        self.assertEqual(8000.0, self.controller.config("clipboard").current_interval_ms)

    def test_clear_sample_exits_with_halved_intervals(self) -> None:
        self.controller.register("clipboard", 1000, 8000, 2.0)
        self.controller.register("window", 5000, 6000, 2.0)
        self.controller.record_sample(sample(disk_io_count=250))
        self.events.clear()

        self.controller.record_sample(sample())

        self.assertFalse(self.controller.emergency_mode)
        self.assertEqual([EMERGENCY_EXIT], self.event_types())
        self.assertEqual(4000.0, self.controller.get_throttled_interval("clipboard"))
        self.assertEqual(5000.0, self.controller.get_throttled_interval("window"))

    def test_repeated_critical_samples_enter_once(self) -> None:
        self.controller.record_sample(sample(active_connections=60))
        self.controller.record_sample(sample(active_connections=70))
        self.assertEqual(1, self.event_types().count(EMERGENCY_ENTER))

    def test_warning_tier_only_emits_warning(self) -> None:
        self.controller.record_sample(sample(memory_mb=600.0, active_connections=25))
        self.assertFalse(self.controller.emergency_mode)
        self.assertEqual([PERFORMANCE_WARNING], self.event_types())
        self.assertEqual(
            ["Elevated memory usage: 600.0MB", "Elevated connection count: 25"],
            self.events[0]["warnings"],
        )

    def test_listener_errors_do_not_stop_delivery(self) -> None:
        def broken(event: dict) -> None:
            raise RuntimeError("listener down")

        controller = ThrottleController()
        received: list[str] = []
        controller.subscribe(broken)
        controller.subscribe(lambda event: received.append(event["type"]))

        controller.record_sample(sample(memory_mb=900.0))

        self.assertEqual([EMERGENCY_ENTER, PERFORMANCE_WARNING], received)

    def test_unsubscribe_stops_events(self) -> None:
        controller = ThrottleController()
        received: list[str] = []
        unsubscribe = controller.subscribe(lambda event: received.append(event["type"]))
        unsubscribe()
        unsubscribe()
        controller.record_sample(sample(memory_mb=900.0))
        self.assertEqual([], received)

    def test_manual_performance_modes(self) -> None:
        self.controller.register("clipboard", 1000, 8000, 2.0)
        self.controller.optimize_for_low_performance()
        self.assertEqual(8000.0, self.controller.get_throttled_interval("clipboard"))
        self.controller.optimize_for_high_performance()
        self.assertEqual(1000.0, self.controller.get_throttled_interval("clipboard"))
        self.assertEqual([LOW_PERFORMANCE, HIGH_PERFORMANCE], self.event_types())

    def test_sample_history_is_bounded(self) -> None:
        controller = ThrottleController(ThrottleSettings(history_size=3))
        for cpu in range(5):
            controller.record_sample(sample(cpu_pct=float(cpu)))
        self.assertEqual([2.0, 3.0, 4.0], [item.cpu_pct for item in controller.samples()])
        self.assertEqual(4.0, controller.latest_sample().cpu_pct)
        self.assertEqual(4.0, controller.emergency_status()["cpu_pct"])
        self.assertFalse(controller.emergency_status()["emergency_mode"])

    def test_run_sampling_until_stopped(self) -> None:
        sampler = FixedSampler([sample(memory_mb=900.0), sample()])

        async def scenario() -> None:
            stop = asyncio.Event()
            task = asyncio.create_task(self.controller.run_sampling(sampler, stop, interval_s=0.01))
            await asyncio.sleep(0.1)
            stop.set()
            await asyncio.wait_for(task, timeout=1.0)

        asyncio.run(scenario())

        self.assertGreaterEqual(sampler.calls, 2)
        self.assertFalse(self.controller.emergency_mode)
        self.assertEqual([EMERGENCY_ENTER, PERFORMANCE_WARNING, EMERGENCY_EXIT], self.event_types()[:3])


class TestWaitOrStop(unittest.TestCase):
    def test_returns_false_on_timeout_and_true_when_stopped(self) -> None:
        async def scenario() -> tuple[bool, bool]:
            stop = asyncio.Event()
            timed_out = await wait_or_stop(stop, 0.01)
            stop.set()
            stopped = await wait_or_stop(stop, 10.0)
            return timed_out, stopped

        self.assertEqual((False, True), asyncio.run(scenario()))


if __name__ == "__main__":
    unittest.main()
