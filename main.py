"""Interactive host for the adaptive assistant engine using simulated handlers."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Iterable, List

from adaptive_assistant import AssistantEngine, ResolveResult, SimulatedHandler, load_config

logger = logging.getLogger(__name__)


def build_demo_handlers(missing_apps: Iterable[str]) -> List[SimulatedHandler]:
    missing = list(missing_apps)
    return [
        SimulatedHandler("app_launcher", priority=10, intents={"app_launch"}, missing_targets=missing),
        SimulatedHandler("browser_navigate", priority=20, intents={"browser_navigate", "app_launch"}),
        SimulatedHandler("browser_search", priority=30, intents={"web_search", "weather"}),
        SimulatedHandler("email_client", priority=40, intents={"compose_email"}),
        SimulatedHandler("system_control", priority=50, intents={"system_control"}),
        SimulatedHandler("ai_compose", priority=1000, intents={"ai_compose"}, generic=True),
    ]


def render_result(result: ResolveResult) -> list[str]:
    status = "ok" if result.success else "failed"
    lines = [f"[{status}] {result.message}"]
    lines.append(
        f"  intent: {result.intent.type} ({result.intent.confidence:.2f})"
        f" handler: {result.handler_used or '-'}"
        f" fallback: {'yes' if result.fallback_used else 'no'}"
    )
    if result.intent.extracted_args:
        args = ", ".join(f"{key}={value}" for key, value in sorted(result.intent.extracted_args.items()))
        lines.append(f"  args: {args}")
    if result.duplicate_advisory:
        lines.append(f"  note: {result.duplicate_advisory}")
    if result.suggestions:
        lines.append(f"  alternatives: {', '.join(result.suggestions)}")
    return lines


async def interactive_loop(engine: AssistantEngine) -> None:
    loop = asyncio.get_running_loop()
    print("Type a command, ':patterns', ':report', ':use <handler> <command>' or ':quit'.")
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        text = line.strip()
        if not text:
            continue
        if text in {":quit", ":q"}:
            break
        if text == ":patterns":
            engine.detect_patterns()
            suggestions = engine.suggestions()
            if not suggestions:
                print("  suggestions: (none)")
            for item in suggestions:
                print(f"  [{item.automation_type}] {item.suggestion} (confidence {item.confidence:.2f})")
            continue
        if text == ":report":
            print(engine.report_text())
            continue
        if text.startswith(":use "):
            parts = text.split(" ", 2)
            if len(parts) < 3:
                print("  usage: :use <handler> <command>")
                continue
            result = await engine.resolve_with(parts[2], parts[1])
        else:
            result = await engine.resolve(text)
        for rendered in render_result(result):
            print(rendered)
        print()


async def run(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    engine = AssistantEngine(config=config, handlers=build_demo_handlers(args.missing))
    async with engine:
        engine.throttle.subscribe(
            lambda event: logger.info("throttle event %s %s", event["type"], event["warnings"])
        )
        try:
            await interactive_loop(engine)
        except KeyboardInterrupt:
            print("\nStopped.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Adaptive assistant interactive host")
    parser.add_argument("--config", default=None, help="Path to an engine TOML file")
    parser.add_argument(
        "--missing",
        action="append",
        default=[],
        help="Simulate an application that is not installed (repeatable)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
