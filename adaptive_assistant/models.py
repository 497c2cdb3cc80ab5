"""Data models shared by the classifier, orchestrator, store and miner."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set


@dataclass(slots=True)
class Intent:
    """Classified purpose of a request. Produced per request, never persisted."""

    type: str
    confidence: float
    extracted_args: Dict[str, str] = field(default_factory=dict)
    missing_args: List[str] = field(default_factory=list)
    matched_keyword: str = ""
    tier: int = 0
    text: str = ""

    @property
    def is_unknown(self) -> bool:
        return self.type == "unknown"


@dataclass(slots=True)
class HandlerResult:
    """Outcome returned by a capability handler."""

    success: bool
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class HandlerAttempt:
    handler: str
    outcome: str
    message: str = ""


@dataclass(slots=True)
class ResolveResult:
    """What ``FallbackOrchestrator.resolve`` hands back to the host."""

    success: bool
    message: str
    handler_used: Optional[str]
    fallback_used: bool
    intent: Intent
    attempts: List[HandlerAttempt] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    duplicate_advisory: Optional[str] = None
    preference_applied: bool = False
    action_id: str = ""
    duration_ms: int = 0
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def attempted_handlers(self) -> List[str]:
        return [attempt.handler for attempt in self.attempts if attempt.outcome != "skipped"]


@dataclass(slots=True)
class PreferenceRecord:
    """Learned handler choice for one request signature."""

    request_signature: str
    chosen_handler: str
    timestamp: int
    success: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_signature": self.request_signature,
            "chosen_handler": self.chosen_handler,
            "timestamp": self.timestamp,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PreferenceRecord":
        return cls(
            request_signature=str(payload["request_signature"]),
            chosen_handler=str(payload.get("chosen_handler", "none")),
            timestamp=int(payload.get("timestamp", 0)),
            success=bool(payload.get("success", False)),
        )


@dataclass(frozen=True, slots=True)
class ActionRecord:
    """One resolved request or observed user action. Immutable once written."""

    id: str
    command: str
    context: Dict[str, Any]
    timestamp: int
    success: bool
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "context": dict(self.context),
            "timestamp": self.timestamp,
            "success": self.success,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ActionRecord":
        return cls(
            id=str(payload["id"]),
            command=str(payload.get("command", "")),
            context=dict(payload.get("context") or {}),
            timestamp=int(payload.get("timestamp", 0)),
            success=bool(payload.get("success", False)),
            duration_ms=int(payload.get("duration_ms", 0)),
        )


@dataclass(slots=True)
class ThrottleConfig:
    """Polling interval bounds for one background observer."""

    name: str
    min_interval_ms: float
    max_interval_ms: float
    current_interval_ms: float
    backoff_multiplier: float


@dataclass(frozen=True, slots=True)
class PerformanceSample:
    cpu_pct: float
    memory_mb: float
    disk_io_count: int
    active_connections: int
    timestamp: int


@dataclass(slots=True)
class BehaviorPattern:
    """A repeated run of user commands found in the action log."""

    id: str
    name: str
    action_sequence: List[str]
    frequency: int
    confidence: float
    contexts: Set[str] = field(default_factory=set)
    first_seen: int = 0
    last_seen: int = 0
    is_automated: bool = False
    last_occurrence_ts: int = 0

    @property
    def key(self) -> str:
        return sequence_key(self.action_sequence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "action_sequence": list(self.action_sequence),
            "frequency": self.frequency,
            "confidence": self.confidence,
            "contexts": sorted(self.contexts),
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "is_automated": self.is_automated,
            "last_occurrence_ts": self.last_occurrence_ts,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "BehaviorPattern":
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", "")),
            action_sequence=[str(item) for item in payload.get("action_sequence", [])],
            frequency=int(payload.get("frequency", 0)),
            confidence=float(payload.get("confidence", 0.0)),
            contexts=set(payload.get("contexts") or []),
            first_seen=int(payload.get("first_seen", 0)),
            last_seen=int(payload.get("last_seen", 0)),
            is_automated=bool(payload.get("is_automated", False)),
            last_occurrence_ts=int(payload.get("last_occurrence_ts", 0)),
        )


@dataclass(slots=True)
class PatternSuggestion:
    """Automation proposal derived from a pattern on demand."""

    pattern: BehaviorPattern
    suggestion: str
    confidence: float
    estimated_time_savings_ms: float
    automation_type: str


def sequence_key(sequence: List[str]) -> str:
    return "|".join(sequence)
