"""Plain-text behavior reports over the action log."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Sequence

from .models import ActionRecord, PatternSuggestion


@dataclass(slots=True)
class Report:
    title: str
    summary_lines: List[str]

    def render_text(self) -> str:
        return "\n".join([self.title, "-" * len(self.title), *self.summary_lines])


def productivity_score(actions: Sequence[ActionRecord]) -> float:
    """Blend of success rate, speed and command variety in [0, 1]."""

    if not actions:
        return 0.0
    success_rate = sum(1 for action in actions if action.success) / len(actions)
    average_ms = sum(action.duration_ms for action in actions) / len(actions)
    speed = max(0.0, 1.0 - average_ms / 10000)
    variety = min(1.0, len({action.command for action in actions}) / 10)
    return success_rate * 0.5 + speed * 0.3 + variety * 0.2


def most_used_commands(actions: Iterable[ActionRecord], *, limit: int = 5) -> List[tuple[str, int]]:
    return Counter(action.command for action in actions).most_common(limit)


def behavior_report(
    actions: Sequence[ActionRecord],
    suggestions: Sequence[PatternSuggestion] = (),
    *,
    now: datetime | None = None,
    window_days: int = 7,
) -> Report:
    now = now or datetime.now(timezone.utc)
    cutoff_ms = int(now.timestamp() * 1000) - window_days * 24 * 3600 * 1000
    recent = [action for action in actions if action.timestamp >= cutoff_ms]
    title = f"Behavior report ({now.date()}, last {window_days} days)"
    if not recent:
        return Report(title=title, summary_lines=["No activity recorded."])
    successful = sum(1 for action in recent if action.success)
    average_ms = sum(action.duration_ms for action in recent) / len(recent)
    lines = [
        f"Total actions: {len(recent)}",
        f"Successful: {successful} ({successful / len(recent):.0%})",
        f"Average duration: {average_ms:.0f}ms",
        f"Productivity score: {productivity_score(recent):.2f}",
        "Most used commands:",
    ]
    for command, count in most_used_commands(recent):
        lines.append(f"- {command}: {count}")
    if suggestions:
        lines.append("Automation opportunities:")
        for item in suggestions[:5]:
            lines.append(
                f"- [{item.automation_type}] {item.pattern.name} "
                f"x{item.pattern.frequency}, saves ~{item.estimated_time_savings_ms / 1000:.0f}s"
            )
    return Report(title=title, summary_lines=lines)
