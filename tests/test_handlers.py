from __future__ import annotations

import asyncio
import time
import unittest

from adaptive_assistant.errors import HandlerFailure
from adaptive_assistant.handlers import FunctionHandler, HandlerRegistry, SimulatedHandler, run_handler
from adaptive_assistant.models import Intent


def launch_intent(target: str = "chrome") -> Intent:
    return Intent(type="app_launch", confidence=0.95, extracted_args={"target": target}, text=f"open {target}")


class TestHandlerRegistry(unittest.TestCase):
    def test_duplicate_names_are_rejected(self) -> None:
        registry = HandlerRegistry([SimulatedHandler("edge")])
        with self.assertRaises(ValueError):
            registry.register(SimulatedHandler("edge"))

    def test_ordering_and_lookups(self) -> None:
        registry = HandlerRegistry(
            [
                SimulatedHandler("helper", priority=50, generic=True),
                SimulatedHandler("edge", priority=2, intents={"app_launch"}),
                SimulatedHandler("chrome", priority=1, intents={"app_launch"}),
                SimulatedHandler("last_resort", priority=900, generic=True),
            ]
        )
        self.assertEqual(4, len(registry))
        self.assertIn("edge", registry)
        self.assertEqual(["chrome", "edge", "helper", "last_resort"], [handler.name for handler in registry])
        self.assertEqual(["chrome", "edge"], [handler.name for handler in registry.declaring("app_launch")])
        self.assertEqual(["helper", "last_resort"], [handler.name for handler in registry.generic_handlers()])
        self.assertEqual("last_resort", registry.lowest_priority_generic().name)

    def test_lowest_priority_falls_back_to_any_handler(self) -> None:
        registry = HandlerRegistry([SimulatedHandler("a", priority=1), SimulatedHandler("b", priority=7)])
        self.assertEqual("b", registry.lowest_priority_generic().name)
        self.assertIsNone(HandlerRegistry().lowest_priority_generic())

    def test_empty_name_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            SimulatedHandler("")


class TestRunHandler(unittest.TestCase):
    def test_simulated_handler_reports_missing_target(self) -> None:
        handler = SimulatedHandler("launcher", intents={"app_launch"}, missing_targets=["Chrome"])
        with self.assertRaises(HandlerFailure) as caught:
            asyncio.run(run_handler(handler, launch_intent("chrome"), timeout_s=1.0))
        self.assertEqual("failed", caught.exception.outcome)
        self.assertEqual("chrome is not installed", caught.exception.reason)

        result = asyncio.run(run_handler(handler, launch_intent("edge"), timeout_s=1.0))
        self.assertEqual("Launched edge via launcher", result.message)

    def test_dict_output_is_coerced(self) -> None:
        handler = FunctionHandler("dicty", lambda intent: {"success": True, "message": "ok", "data": {"pid": 7}})
        result = asyncio.run(run_handler(handler, launch_intent(), timeout_s=1.0))
        self.assertEqual("ok", result.message)
        self.assertEqual({"pid": 7}, result.data)

    def test_none_output_is_a_failure(self) -> None:
        handler = FunctionHandler("silent", lambda intent: None)
        with self.assertRaises(HandlerFailure) as caught:
            asyncio.run(run_handler(handler, launch_intent(), timeout_s=1.0))
        self.assertEqual("silent returned no result", caught.exception.reason)

    def test_async_function_handler(self) -> None:
        async def launch(intent: Intent) -> bool:
            await asyncio.sleep(0)
            return True

        handler = FunctionHandler("async_launch", launch)
        result = asyncio.run(run_handler(handler, launch_intent(), timeout_s=1.0))
        self.assertTrue(result.success)

    def test_returned_awaitable_shares_the_timeout(self) -> None:
        def launch(intent: Intent):
            time.sleep(0.07)
            return asyncio.sleep(0.07, result=True)

        handler = FunctionHandler("two_step", launch)
        with self.assertRaises(HandlerFailure) as caught:
            asyncio.run(run_handler(handler, launch_intent(), timeout_s=0.1))
        self.assertEqual("timeout", caught.exception.outcome)


if __name__ == "__main__":
    unittest.main()
