"""Ranked fallback resolution of classified requests over capability handlers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .config import OrchestratorConfig
from .errors import ChainExhausted, ClassificationAmbiguous, HandlerFailure
from .handlers import CapabilityHandler, HandlerRegistry, run_handler
from .intents import IntentClassifier
from .memory import MemoryStore
from .models import ActionRecord, HandlerAttempt, HandlerResult, Intent, PreferenceRecord, ResolveResult
from .utils import generate_id, normalize_text, request_signature, timestamp_ms

logger = logging.getLogger(__name__)

NO_HANDLER = "none"


@dataclass(slots=True)
class FallbackPlan:
    """Chain of handler names for one resolution attempt."""

    handlers: List[str] = field(default_factory=list)
    primary: Optional[str] = None
    preference_applied: bool = False
    low_confidence: bool = False
    trusted: Optional[str] = None


class FallbackOrchestrator:
    """Resolves requests by walking a ranked chain of handlers.

    Every resolution, successful or not, leaves one ``ActionRecord`` and one
    ``PreferenceRecord`` behind in the store. The preference is what lets the
    next identical request start with the handler that worked last time.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        store: MemoryStore,
        registry: HandlerRegistry,
        config: OrchestratorConfig | None = None,
        *,
        clock: Callable[[], int] = timestamp_ms,
    ) -> None:
        self.classifier = classifier
        self.store = store
        self.registry = registry
        self.config = config or OrchestratorConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, request_text: str, context: Mapping[str, Any] | None = None) -> ResolveResult:
        started = time.perf_counter()
        signature = request_signature(request_text)
        advisory = self._duplicate_advisory(request_text, signature)
        intent = self.classifier.classify(request_text)

        if intent.confidence < self.config.low_confidence_threshold:
            logger.info("%s; using generic fallback", ClassificationAmbiguous(request_text, intent.confidence))
            plan = self._generic_plan()
        else:
            plan = self.build_chain(intent, signature)

        attempts: List[HandlerAttempt] = []
        handler_used, outcome = await self._walk(plan, intent, attempts)
        success = outcome is not None
        fallback_used = success and (plan.low_confidence or handler_used != plan.primary)

        suggestions: List[str] = []
        if success:
            message = outcome.message or f"Completed via {handler_used}"
            data = dict(outcome.data)
        else:
            considered = [attempt.handler for attempt in attempts]
            suggestions = self._alternatives(considered)
            message = self._exhausted_message(request_text, attempts, suggestions)
            data = {}
            exhausted = ChainExhausted(request_text, [a.handler for a in attempts if a.outcome != "skipped"])
            logger.info("%s", exhausted)

        duration_ms = int((time.perf_counter() - started) * 1000)
        action_id = await self._record(
            request_text,
            context,
            intent=intent,
            signature=signature,
            handler_used=handler_used,
            success=success,
            fallback_used=fallback_used,
            duration_ms=duration_ms,
        )
        return ResolveResult(
            success=success,
            message=message,
            handler_used=handler_used,
            fallback_used=fallback_used,
            intent=intent,
            attempts=attempts,
            suggestions=suggestions,
            duplicate_advisory=advisory,
            preference_applied=plan.preference_applied,
            action_id=action_id,
            duration_ms=duration_ms,
            data=data,
        )

    async def resolve_with(
        self,
        request_text: str,
        handler_name: str,
        context: Mapping[str, Any] | None = None,
    ) -> ResolveResult:
        """Run the handler the user picked from the suggested alternatives."""

        started = time.perf_counter()
        signature = request_signature(request_text)
        intent = self.classifier.classify(request_text)
        handler = self.registry.get(handler_name)
        if handler is None:
            return ResolveResult(
                success=False,
                message=f"Unknown handler: {handler_name}",
                handler_used=None,
                fallback_used=False,
                intent=intent,
            )
        primary = self.build_chain(intent, None).primary
        plan = FallbackPlan(handlers=[handler.name], primary=primary)
        attempts: List[HandlerAttempt] = []
        handler_used, outcome = await self._walk(plan, intent, attempts, check_can_handle=False)
        success = outcome is not None
        duration_ms = int((time.perf_counter() - started) * 1000)
        fallback_used = handler.name != primary
        action_id = await self._record(
            request_text,
            context,
            intent=intent,
            signature=signature,
            handler_used=handler_used,
            success=success,
            fallback_used=fallback_used,
            duration_ms=duration_ms,
        )
        if success:
            message = outcome.message or f"Completed via {handler.name}"
        else:
            message = self._exhausted_message(request_text, attempts, [])
        return ResolveResult(
            success=success,
            message=message,
            handler_used=handler_used,
            fallback_used=fallback_used,
            intent=intent,
            attempts=attempts,
            action_id=action_id,
            duration_ms=duration_ms,
            data=dict(outcome.data) if outcome else {},
        )

    def build_chain(self, intent: Intent, signature: Optional[str]) -> FallbackPlan:
        """Static order for the intent, then declared alternates, then generic handlers.

        A successful learned preference for ``signature`` is promoted to the
        front when its handler is still registered, and is not asked
        ``can_handle`` again since it already completed this exact request.
        """

        names: List[str] = []
        for name in self.config.chains.get(intent.type, ()):
            if name in self.registry and name not in names:
                names.append(name)

        for handler in self._rank(self.registry.declaring(intent.type)):
            if handler.name not in names:
                names.append(handler.name)
        for handler in self._rank(self.registry.generic_handlers()):
            if handler.name not in names:
                names.append(handler.name)

        plan = FallbackPlan(handlers=names, primary=names[0] if names else None)
        if signature is None:
            return plan
        preference = self.store.get(signature)
        if (
            preference is not None
            and preference.success
            and preference.chosen_handler != NO_HANDLER
            and preference.chosen_handler in self.registry
        ):
            preferred = preference.chosen_handler
            plan.handlers = [preferred] + [name for name in names if name != preferred]
            plan.preference_applied = True
            plan.trusted = preferred
            logger.debug("Promoted learned handler %s for %s", preferred, signature)
        return plan

    def suggest_handlers(self, text: str, *, limit: int = 5) -> List[str]:
        needle = normalize_text(text)
        if not needle:
            return []
        matches = []
        for handler in self.registry.ordered():
            name = handler.name.lower()
            if needle in name or name in needle:
                matches.append(handler.name)
        return matches[:limit]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _rank(self, handlers: List[CapabilityHandler]) -> List[CapabilityHandler]:
        """Static priority, most recently successful first among equals."""

        def sort_key(handler: CapabilityHandler) -> Tuple[int, int]:
            return handler.priority, -(self.store.last_success(handler.name) or 0)

        return sorted(handlers, key=sort_key)

    def _generic_plan(self) -> FallbackPlan:
        generic = self.registry.lowest_priority_generic()
        if generic is None:
            return FallbackPlan(low_confidence=True)
        return FallbackPlan(handlers=[generic.name], primary=None, low_confidence=True)

    async def _walk(
        self,
        plan: FallbackPlan,
        intent: Intent,
        attempts: List[HandlerAttempt],
        *,
        check_can_handle: bool = True,
    ) -> Tuple[Optional[str], Optional[HandlerResult]]:
        for name in plan.handlers:
            handler = self.registry.get(name)
            if handler is None:
                continue
            if check_can_handle and not plan.low_confidence and name != plan.trusted:
                try:
                    eligible = handler.can_handle(intent)
                except Exception as exc:  # noqa: BLE001
                    attempts.append(HandlerAttempt(name, "skipped", f"can_handle raised {type(exc).__name__}: {exc}"))
                    continue
                if not eligible:
                    attempts.append(HandlerAttempt(name, "skipped", "cannot handle request"))
                    continue
            try:
                result = await run_handler(handler, intent, timeout_s=self.config.handler_timeout_s)
            except HandlerFailure as failure:
                logger.info("Handler %s failed (%s), trying next", failure.handler, failure.reason)
                attempts.append(HandlerAttempt(name, failure.outcome, failure.reason))
                continue
            attempts.append(HandlerAttempt(name, "executed", result.message))
            return name, result
        return None, None

    def _duplicate_advisory(self, request_text: str, signature: str) -> Optional[str]:
        for action in self.store.recent_actions(self.config.duplicate_window):
            previous = action.context.get("signature") or request_signature(action.command)
            if previous == signature:
                return f"'{request_text.strip()}' was just done. Repeat anyway?"
        return None

    def _alternatives(self, considered: List[str]) -> List[str]:
        if self.config.max_suggestions <= 0:
            return []
        names = [handler.name for handler in self.registry.ordered() if handler.name not in considered]
        return names[: self.config.max_suggestions]

    @staticmethod
    def _exhausted_message(request_text: str, attempts: List[HandlerAttempt], suggestions: List[str]) -> str:
        tried = [attempt for attempt in attempts if attempt.outcome != "skipped"]
        skipped = [attempt.handler for attempt in attempts if attempt.outcome == "skipped"]
        request = request_text.strip()
        if tried:
            listing = ", ".join(f"{attempt.handler} ({attempt.message})" for attempt in tried)
            parts = [f"Could not complete '{request}'. Tried: {listing}."]
        else:
            parts = [f"No available handler could complete '{request}'."]
        if skipped:
            parts.append(f"Skipped: {', '.join(skipped)}.")
        if suggestions:
            parts.append(f"You could try: {', '.join(suggestions)}.")
        return " ".join(parts)

    async def _record(
        self,
        request_text: str,
        context: Mapping[str, Any] | None,
        *,
        intent: Intent,
        signature: str,
        handler_used: Optional[str],
        success: bool,
        fallback_used: bool,
        duration_ms: int,
    ) -> str:
        now = self._clock()
        action_context: Dict[str, Any] = dict(context or {})
        action_context.update(
            {
                "intent": intent.type,
                "handler": handler_used or NO_HANDLER,
                "signature": signature,
                "fallback_used": fallback_used,
            }
        )
        action = ActionRecord(
            id=generate_id("act"),
            command=request_text.strip(),
            context=action_context,
            timestamp=now,
            success=success,
            duration_ms=duration_ms,
        )
        await self.store.append(action)
        await self.store.upsert(
            PreferenceRecord(
                request_signature=signature,
                chosen_handler=handler_used or NO_HANDLER,
                timestamp=now,
                success=success,
            )
        )
        return action.id
