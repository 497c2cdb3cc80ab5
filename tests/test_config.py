from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from adaptive_assistant.config import DEFAULT_CHAINS, EngineConfig, config_from_dict, load_config


class TestConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        config = EngineConfig()
        self.assertEqual(0.95, config.classifier.tier1_confidence)
        self.assertEqual(0.3, config.orchestrator.low_confidence_threshold)
        self.assertEqual(100, config.memory.max_preferences)
        self.assertEqual(1000, config.memory.max_actions)
        self.assertEqual(800.0, config.throttle.critical.memory_mb)
        self.assertEqual(20, config.throttle.warning.active_connections)
        self.assertEqual(2, config.miner.min_frequency)
        self.assertEqual(DEFAULT_CHAINS, config.orchestrator.chains)
        self.assertEqual("", config.state_path)

    def test_load_config_missing_file_uses_defaults(self) -> None:
        with TemporaryDirectory() as tmp:
            self.assertEqual(EngineConfig(), load_config(Path(tmp) / "missing.toml"))
        self.assertEqual(EngineConfig(), load_config(None))

    def test_load_config_reads_sections(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "assistant.toml"
            path.write_text(
                "\n".join(
                    [
                        'state_path = "~/.assistant/state.db"',
                        "",
                        "[orchestrator]",
                        "low_confidence_threshold = 0.5",
                        "handler_timeout_s = 2",
                        "",
                        "[orchestrator.chains]",
                        'app_launch = ["edge", "chrome"]',
                        "",
                        "[throttle.critical]",
                        "cpu_pct = 90",
                        "",
                        "[throttle.observers.clipboard]",
                        "min_interval_ms = 500",
                        "max_interval_ms = 10000",
                        "backoff_multiplier = 1.5",
                        "",
                        "[miner]",
                        "window_hours = 48",
                        "min_frequency = 1",
                    ]
                ),
                encoding="utf-8",
            )
            config = load_config(path)

        self.assertEqual("~/.assistant/state.db", config.state_path)
        self.assertEqual(0.5, config.orchestrator.low_confidence_threshold)
        self.assertEqual(2.0, config.orchestrator.handler_timeout_s)
        self.assertEqual(("edge", "chrome"), config.orchestrator.chains["app_launch"])
        self.assertEqual(DEFAULT_CHAINS["web_search"], config.orchestrator.chains["web_search"])
        self.assertEqual(90.0, config.throttle.critical.cpu_pct)
        self.assertEqual(800.0, config.throttle.critical.memory_mb)
        clipboard = config.throttle.observers["clipboard"]
        self.assertEqual((500.0, 10000.0, 1.5), (clipboard.min_interval_ms, clipboard.max_interval_ms, clipboard.backoff_multiplier))
        self.assertEqual(48.0, config.miner.window_hours)
        self.assertEqual(2, config.miner.min_frequency)

    def test_malformed_toml_uses_defaults(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "broken.toml"
            path.write_text("[orchestrator\nlow_confidence_threshold = ", encoding="utf-8")
            self.assertEqual(EngineConfig(), load_config(path))

    def test_invalid_values_fall_back_per_key(self) -> None:
        config = config_from_dict(
            {
                "classifier": {"fuzzy_threshold": "not a number", "missing_arg_penalty": 0.2},
                "memory": {"max_actions": 0},
                "throttle": {"observers": {"window": {"min_interval_ms": 5000, "max_interval_ms": 10}}},
                "orchestrator": "oops",
            }
        )
        self.assertEqual(0.7, config.classifier.fuzzy_threshold)
        self.assertEqual(0.2, config.classifier.missing_arg_penalty)
        self.assertEqual(1, config.memory.max_actions)
        self.assertEqual(2000.0, config.throttle.observers["window"].min_interval_ms)
        self.assertEqual(EngineConfig().orchestrator, config.orchestrator)


if __name__ == "__main__":
    unittest.main()
