"""Failure taxonomy for the assistant engine.

None of these are meant to reach the host process: each is caught by the
component that knows how to degrade (next handler, in-memory store, mode
change) and turned into a result field or log line.
"""

from __future__ import annotations


class AssistantError(Exception):
    """Base class for engine failures."""


class ClassificationAmbiguous(AssistantError):
    """Confidence fell below the low-confidence threshold."""

    def __init__(self, text: str, confidence: float) -> None:
        super().__init__(f"ambiguous request {text!r} (confidence {confidence:.2f})")
        self.text = text
        self.confidence = confidence


class HandlerFailure(AssistantError):
    """A single handler in the chain failed, raised or timed out."""

    def __init__(self, handler: str, reason: str, *, outcome: str = "failed") -> None:
        super().__init__(f"{handler}: {reason}")
        self.handler = handler
        self.reason = reason
        self.outcome = outcome


class ChainExhausted(AssistantError):
    """No handler in the fallback chain succeeded."""

    def __init__(self, request: str, attempted: list[str]) -> None:
        tried = ", ".join(attempted) or "none"
        super().__init__(f"no handler completed {request!r} (tried: {tried})")
        self.request = request
        self.attempted = list(attempted)


class PersistenceFailure(AssistantError):
    """A persistence collaborator could not read or write a value."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"persistence failure for {key!r}: {reason}")
        self.key = key
        self.reason = reason


class ThresholdBreach(AssistantError):
    """A performance sample crossed a critical threshold."""

    def __init__(self, warnings: list[str]) -> None:
        super().__init__("; ".join(warnings))
        self.warnings = list(warnings)
