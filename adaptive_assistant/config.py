"""Engine configuration loaded from TOML with tolerant value coercion."""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

logger = logging.getLogger(__name__)


def _as_float(value, *, default: float) -> float:
    try:
        return float(value)
    except Exception:  # noqa: BLE001
        return float(default)


def _as_int(value, *, default: int) -> int:
    try:
        return int(value)
    except Exception:  # noqa: BLE001
        return int(default)


def _as_str_list(value) -> list[str]:
    if isinstance(value, list):
        out: list[str] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                out.append(item.strip())
        return out
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name)
    return value if isinstance(value, Mapping) else {}


DEFAULT_CHAINS: Dict[str, Tuple[str, ...]] = {
    "app_launch": ("app_launcher", "browser_navigate", "ai_compose"),
    "web_search": ("browser_search", "browser_navigate", "ai_compose"),
    "browser_navigate": ("browser_navigate", "app_launcher"),
    "compose_email": ("email_client", "browser_navigate", "ai_compose"),
    "system_control": ("system_control",),
    "weather": ("browser_search", "ai_compose"),
    "ai_compose": ("ai_compose", "browser_search"),
}


@dataclass(frozen=True)
class ClassifierConfig:
    tier1_confidence: float = 0.95
    fuzzy_threshold: float = 0.7
    missing_arg_penalty: float = 0.1


@dataclass(frozen=True)
class OrchestratorConfig:
    low_confidence_threshold: float = 0.3
    handler_timeout_s: float = 10.0
    duplicate_window: int = 3
    max_suggestions: int = 3
    chains: Dict[str, Tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_CHAINS))


@dataclass(frozen=True)
class MemoryConfig:
    max_preferences: int = 100
    max_actions: int = 1000


@dataclass(frozen=True)
class ThresholdTier:
    memory_mb: float
    cpu_pct: float
    disk_io_count: int
    active_connections: int


@dataclass(frozen=True)
class ObserverThrottle:
    min_interval_ms: float = 2000.0
    max_interval_ms: float = 60000.0
    backoff_multiplier: float = 2.0


@dataclass(frozen=True)
class ThrottleSettings:
    sample_interval_s: float = 30.0
    history_size: int = 100
    default_interval_ms: float = 2000.0
    critical: ThresholdTier = ThresholdTier(
        memory_mb=800.0, cpu_pct=50.0, disk_io_count=200, active_connections=50
    )
    warning: ThresholdTier = ThresholdTier(
        memory_mb=500.0, cpu_pct=30.0, disk_io_count=100, active_connections=20
    )
    observers: Dict[str, ObserverThrottle] = field(default_factory=dict)


@dataclass(frozen=True)
class MinerConfig:
    window_hours: float = 24.0
    max_gap_minutes: float = 30.0
    min_sequence: int = 2
    max_sequence: int = 5
    min_frequency: int = 2
    per_action_cost_ms: float = 2000.0
    automated_cost_ms: float = 500.0
    max_patterns: int = 200
    scan_throttle: ObserverThrottle = ObserverThrottle(
        min_interval_ms=60_000.0, max_interval_ms=1_800_000.0, backoff_multiplier=1.5
    )


@dataclass(frozen=True)
class EngineConfig:
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    throttle: ThrottleSettings = field(default_factory=ThrottleSettings)
    miner: MinerConfig = field(default_factory=MinerConfig)
    state_path: str = ""


def _tier(data: Mapping[str, Any], default: ThresholdTier) -> ThresholdTier:
    return ThresholdTier(
        memory_mb=_as_float(data.get("memory_mb", default.memory_mb), default=default.memory_mb),
        cpu_pct=_as_float(data.get("cpu_pct", default.cpu_pct), default=default.cpu_pct),
        disk_io_count=_as_int(data.get("disk_io_count", default.disk_io_count), default=default.disk_io_count),
        active_connections=_as_int(
            data.get("active_connections", default.active_connections),
            default=default.active_connections,
        ),
    )


def _observer_throttle(data: Mapping[str, Any], default: ObserverThrottle) -> ObserverThrottle:
    min_ms = _as_float(data.get("min_interval_ms", default.min_interval_ms), default=default.min_interval_ms)
    max_ms = _as_float(data.get("max_interval_ms", default.max_interval_ms), default=default.max_interval_ms)
    multiplier = _as_float(
        data.get("backoff_multiplier", default.backoff_multiplier), default=default.backoff_multiplier
    )
    if min_ms <= 0 or max_ms < min_ms or multiplier <= 1.0:
        logger.warning("Ignoring invalid throttle bounds %s; using defaults", dict(data))
        return default
    return ObserverThrottle(min_interval_ms=min_ms, max_interval_ms=max_ms, backoff_multiplier=multiplier)


def config_from_dict(data: Mapping[str, Any]) -> EngineConfig:
    """Build an ``EngineConfig`` from parsed TOML, falling back to defaults per key."""

    base = EngineConfig()

    cls_raw = _section(data, "classifier")
    classifier = ClassifierConfig(
        tier1_confidence=_as_float(
            cls_raw.get("tier1_confidence", base.classifier.tier1_confidence),
            default=base.classifier.tier1_confidence,
        ),
        fuzzy_threshold=_as_float(
            cls_raw.get("fuzzy_threshold", base.classifier.fuzzy_threshold),
            default=base.classifier.fuzzy_threshold,
        ),
        missing_arg_penalty=_as_float(
            cls_raw.get("missing_arg_penalty", base.classifier.missing_arg_penalty),
            default=base.classifier.missing_arg_penalty,
        ),
    )

    orch_raw = _section(data, "orchestrator")
    chains = dict(base.orchestrator.chains)
    for intent_name, handlers in _section(orch_raw, "chains").items():
        names = _as_str_list(handlers)
        if names:
            chains[str(intent_name)] = tuple(names)
    orchestrator = OrchestratorConfig(
        low_confidence_threshold=_as_float(
            orch_raw.get("low_confidence_threshold", base.orchestrator.low_confidence_threshold),
            default=base.orchestrator.low_confidence_threshold,
        ),
        handler_timeout_s=max(
            0.01,
            _as_float(
                orch_raw.get("handler_timeout_s", base.orchestrator.handler_timeout_s),
                default=base.orchestrator.handler_timeout_s,
            ),
        ),
        duplicate_window=max(
            0,
            _as_int(
                orch_raw.get("duplicate_window", base.orchestrator.duplicate_window),
                default=base.orchestrator.duplicate_window,
            ),
        ),
        max_suggestions=max(
            0,
            _as_int(
                orch_raw.get("max_suggestions", base.orchestrator.max_suggestions),
                default=base.orchestrator.max_suggestions,
            ),
        ),
        chains=chains,
    )

    mem_raw = _section(data, "memory")
    memory = MemoryConfig(
        max_preferences=max(
            1, _as_int(mem_raw.get("max_preferences", base.memory.max_preferences), default=base.memory.max_preferences)
        ),
        max_actions=max(
            1, _as_int(mem_raw.get("max_actions", base.memory.max_actions), default=base.memory.max_actions)
        ),
    )

    thr_raw = _section(data, "throttle")
    default_observer = ObserverThrottle()
    observers = {
        str(name): _observer_throttle(values, default_observer)
        for name, values in _section(thr_raw, "observers").items()
        if isinstance(values, Mapping)
    }
    throttle = ThrottleSettings(
        sample_interval_s=max(
            0.01,
            _as_float(
                thr_raw.get("sample_interval_s", base.throttle.sample_interval_s),
                default=base.throttle.sample_interval_s,
            ),
        ),
        history_size=max(
            1, _as_int(thr_raw.get("history_size", base.throttle.history_size), default=base.throttle.history_size)
        ),
        default_interval_ms=_as_float(
            thr_raw.get("default_interval_ms", base.throttle.default_interval_ms),
            default=base.throttle.default_interval_ms,
        ),
        critical=_tier(_section(thr_raw, "critical"), base.throttle.critical),
        warning=_tier(_section(thr_raw, "warning"), base.throttle.warning),
        observers=observers,
    )

    min_raw = _section(data, "miner")
    miner = MinerConfig(
        window_hours=_as_float(min_raw.get("window_hours", base.miner.window_hours), default=base.miner.window_hours),
        max_gap_minutes=_as_float(
            min_raw.get("max_gap_minutes", base.miner.max_gap_minutes), default=base.miner.max_gap_minutes
        ),
        min_sequence=max(
            2, _as_int(min_raw.get("min_sequence", base.miner.min_sequence), default=base.miner.min_sequence)
        ),
        max_sequence=max(
            2, _as_int(min_raw.get("max_sequence", base.miner.max_sequence), default=base.miner.max_sequence)
        ),
        min_frequency=max(
            2, _as_int(min_raw.get("min_frequency", base.miner.min_frequency), default=base.miner.min_frequency)
        ),
        per_action_cost_ms=_as_float(
            min_raw.get("per_action_cost_ms", base.miner.per_action_cost_ms), default=base.miner.per_action_cost_ms
        ),
        automated_cost_ms=_as_float(
            min_raw.get("automated_cost_ms", base.miner.automated_cost_ms), default=base.miner.automated_cost_ms
        ),
        max_patterns=max(
            1, _as_int(min_raw.get("max_patterns", base.miner.max_patterns), default=base.miner.max_patterns)
        ),
        scan_throttle=_observer_throttle(_section(min_raw, "scan_throttle"), base.miner.scan_throttle),
    )

    state_path = data.get("state_path", "")
    return EngineConfig(
        classifier=classifier,
        orchestrator=orchestrator,
        memory=memory,
        throttle=throttle,
        miner=miner,
        state_path=state_path.strip() if isinstance(state_path, str) else "",
    )


def load_config(path: Path | str | None) -> EngineConfig:
    """Read an engine TOML file; a missing or unreadable file yields defaults."""

    if path is None:
        return EngineConfig()
    config_path = Path(path)
    if not config_path.exists():
        logger.info("Config %s not found; using defaults", config_path)
        return EngineConfig()
    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Failed to read config %s: %s", config_path, exc)
        return EngineConfig()
    return config_from_dict(data)
