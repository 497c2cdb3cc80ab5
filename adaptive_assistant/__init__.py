"""Adaptive command resolution and behavior-learning engine for a personal assistant."""

from .config import EngineConfig, load_config
from .engine import AssistantEngine
from .handlers import BaseHandler, CapabilityHandler, FunctionHandler, HandlerRegistry, SimulatedHandler
from .intents import IntentClassifier, IntentSpec
from .memory import MemoryStore
from .models import (
    ActionRecord,
    BehaviorPattern,
    HandlerResult,
    Intent,
    PatternSuggestion,
    PerformanceSample,
    PreferenceRecord,
    ResolveResult,
    ThrottleConfig,
)
from .observers import PollingObserver
from .orchestrator import FallbackOrchestrator
from .patterns import PatternMiner, PatternStore
from .persistence import InMemoryKeyValueStore, SQLiteKeyValueStore
from .throttle import ThrottleController

__all__ = [
    "AssistantEngine",
    "EngineConfig",
    "load_config",
    "IntentClassifier",
    "IntentSpec",
    "FallbackOrchestrator",
    "CapabilityHandler",
    "BaseHandler",
    "FunctionHandler",
    "SimulatedHandler",
    "HandlerRegistry",
    "MemoryStore",
    "ThrottleController",
    "PatternMiner",
    "PatternStore",
    "PollingObserver",
    "InMemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "Intent",
    "HandlerResult",
    "ResolveResult",
    "PreferenceRecord",
    "ActionRecord",
    "ThrottleConfig",
    "PerformanceSample",
    "BehaviorPattern",
    "PatternSuggestion",
]
