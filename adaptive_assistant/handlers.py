"""Capability handler contract, registry and timed execution."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Protocol, Union

from .errors import HandlerFailure
from .models import HandlerResult, Intent

logger = logging.getLogger(__name__)

HandlerOutput = Union[HandlerResult, bool, Dict[str, Any], None]


class CapabilityHandler(Protocol):
    """One concrete way of satisfying an intent, provided by the host.

    Lower ``priority`` values rank earlier. ``generic`` handlers are the
    last-resort fallback for ambiguous requests.
    """

    name: str
    priority: int
    intents: FrozenSet[str]
    generic: bool

    def can_handle(self, intent: Intent) -> bool:
        ...

    def execute(self, intent: Intent) -> HandlerOutput | Awaitable[HandlerOutput]:
        ...


class BaseHandler:
    """Convenience base: handles its declared intents, or everything if generic."""

    def __init__(
        self,
        name: str,
        *,
        priority: int = 100,
        intents: Iterable[str] = (),
        generic: bool = False,
    ) -> None:
        if not name:
            raise ValueError("handler name must not be empty")
        self.name = name
        self.priority = int(priority)
        self.intents = frozenset(intents)
        self.generic = generic

    def can_handle(self, intent: Intent) -> bool:
        return self.generic or intent.type in self.intents

    def execute(self, intent: Intent) -> HandlerOutput | Awaitable[HandlerOutput]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class FunctionHandler(BaseHandler):
    """Adapts plain callables (sync or async) to the handler contract."""

    def __init__(
        self,
        name: str,
        execute: Callable[[Intent], Any],
        *,
        can_handle: Callable[[Intent], bool] | None = None,
        priority: int = 100,
        intents: Iterable[str] = (),
        generic: bool = False,
    ) -> None:
        super().__init__(name, priority=priority, intents=intents, generic=generic)
        self._execute = execute
        self._can_handle = can_handle

    def can_handle(self, intent: Intent) -> bool:
        if self._can_handle is not None:
            return bool(self._can_handle(intent))
        return super().can_handle(intent)

    def execute(self, intent: Intent) -> Any:
        return self._execute(intent)


class SimulatedHandler(BaseHandler):
    """Reports what it would have done without touching the system.

    Used by the demo host and tests; ``available=False`` makes it fail the
    way a missing application does.
    """

    _MESSAGES = {
        "app_launch": "Launched {target}",
        "web_search": "Searched the web for {query}",
        "browser_navigate": "Opened {url}",
        "compose_email": "Drafted an email to {recipient}",
        "system_control": "Applied system action {action}",
        "weather": "Fetched the forecast for {location}",
        "ai_compose": "Generated text about {topic}",
    }

    def __init__(
        self,
        name: str,
        *,
        priority: int = 100,
        intents: Iterable[str] = (),
        generic: bool = False,
        available: bool = True,
        missing_targets: Iterable[str] = (),
    ) -> None:
        super().__init__(name, priority=priority, intents=intents, generic=generic)
        self.available = available
        self.missing_targets = frozenset(target.lower() for target in missing_targets)
        self.calls: List[Intent] = []

    def execute(self, intent: Intent) -> HandlerResult:
        self.calls.append(intent)
        if not self.available:
            return HandlerResult(success=False, message=f"{self.name} is not available")
        target = intent.extracted_args.get("target", "")
        if target and target.lower() in self.missing_targets:
            return HandlerResult(success=False, message=f"{target} is not installed")
        template = self._MESSAGES.get(intent.type, "Handled request '{text}'")
        values = {"text": intent.text, **intent.extracted_args}
        try:
            detail = template.format(**values)
        except KeyError:
            detail = f"Handled request '{intent.text}'"
        return HandlerResult(success=True, message=f"{detail} via {self.name}", data={"simulated": True})


class HandlerRegistry:
    """Named handlers, registered once and never replaced."""

    def __init__(self, handlers: Iterable[CapabilityHandler] = ()) -> None:
        self._handlers: Dict[str, CapabilityHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: CapabilityHandler) -> None:
        if handler.name in self._handlers:
            raise ValueError(f"handler already registered: {handler.name}")
        self._handlers[handler.name] = handler
        logger.debug("Registered handler %s (priority %d)", handler.name, handler.priority)

    def get(self, name: str) -> Optional[CapabilityHandler]:
        return self._handlers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __iter__(self) -> Iterator[CapabilityHandler]:
        return iter(self.ordered())

    def __len__(self) -> int:
        return len(self._handlers)

    def names(self) -> List[str]:
        return list(self._handlers)

    def ordered(self) -> List[CapabilityHandler]:
        """Handlers by static priority, registration order on ties."""

        return sorted(self._handlers.values(), key=lambda handler: handler.priority)

    def declaring(self, intent_type: str) -> List[CapabilityHandler]:
        return [handler for handler in self.ordered() if intent_type in handler.intents]

    def generic_handlers(self) -> List[CapabilityHandler]:
        return [handler for handler in self.ordered() if handler.generic]

    def lowest_priority_generic(self) -> Optional[CapabilityHandler]:
        candidates = self.generic_handlers() or self.ordered()
        if not candidates:
            return None
        return max(candidates, key=lambda handler: handler.priority)


def _coerce_result(handler: CapabilityHandler, output: HandlerOutput) -> HandlerResult:
    if isinstance(output, HandlerResult):
        return output
    if isinstance(output, bool):
        return HandlerResult(success=output, message="" if output else f"{handler.name} reported failure")
    if isinstance(output, dict):
        return HandlerResult(
            success=bool(output.get("success", False)),
            message=str(output.get("message", "")),
            data=dict(output.get("data") or {}),
        )
    return HandlerResult(success=False, message=f"{handler.name} returned no result")


async def run_handler(handler: CapabilityHandler, intent: Intent, *, timeout_s: float) -> HandlerResult:
    """Execute one handler under a timeout.

    Returns the successful ``HandlerResult``; every other outcome (reported
    failure, exception, timeout) raises ``HandlerFailure``. Synchronous
    handlers run in a worker thread so the timeout still applies; an
    awaitable they return shares the same deadline.
    """

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    if inspect.iscoroutinefunction(handler.execute):
        pending = handler.execute(intent)
    else:
        pending = asyncio.to_thread(handler.execute, intent)
    try:
        output = await asyncio.wait_for(pending, timeout=timeout_s)
        if inspect.isawaitable(output):
            output = await asyncio.wait_for(output, timeout=max(0.0, deadline - loop.time()))
    except asyncio.TimeoutError as exc:
        raise HandlerFailure(handler.name, f"timed out after {timeout_s:g}s", outcome="timeout") from exc
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise HandlerFailure(handler.name, f"raised {type(exc).__name__}: {exc}", outcome="error") from exc
    result = _coerce_result(handler, output)
    if not result.success:
        raise HandlerFailure(handler.name, result.message or "reported failure")
    return result
