"""Keyword and fuzzy intent classification over a static intent table."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .config import ClassifierConfig
from .models import Intent
from .utils import clamp01, normalize_text, similarity, token_windows

UNKNOWN = "unknown"

ArgExtractor = Callable[[str, str], Dict[str, str]]


@dataclass(frozen=True)
class IntentSpec:
    """One row of the intent table: trigger keywords plus argument rules."""

    name: str
    keywords: Tuple[str, ...]
    required_args: Tuple[str, ...] = ()
    extractor: Optional[ArgExtractor] = field(default=None, compare=False)


def _after_keyword(text: str, keyword: str) -> str:
    match = re.search(rf"\b{re.escape(keyword)}\b", text)
    if not match:
        return ""
    return text[match.end() :].strip()


def extract_app_target(text: str, keyword: str) -> Dict[str, str]:
    rest = _after_keyword(text, keyword)
    rest = re.sub(r"^(?:up\s+)?(?:the|my)\s+", "", rest)
    rest = re.sub(r"\s+(?:app|application|program)$", "", rest)
    return {"target": rest} if rest else {}


def extract_search_query(text: str, keyword: str) -> Dict[str, str]:
    rest = _after_keyword(text, keyword)
    rest = re.sub(r"^(?:for|about)\s+", "", rest)
    match = re.search(r"\s+(?:on|in|with)\s+(google|bing|duckduckgo|youtube)$", rest)
    args: Dict[str, str] = {}
    if match:
        args["engine"] = match.group(1)
        rest = rest[: match.start()]
    if rest:
        args["query"] = rest
    return args


def extract_url(text: str, keyword: str) -> Dict[str, str]:
    rest = _after_keyword(text, keyword)
    token = rest.split(" ", 1)[0] if rest else ""
    return {"url": token} if token else {}


def extract_email_fields(text: str, keyword: str) -> Dict[str, str]:
    args: Dict[str, str] = {}
    recipient = re.search(r"\bto\s+([\w.@+-]+)", text)
    if recipient:
        args["recipient"] = recipient.group(1)
    subject = re.search(r"\b(?:about|regarding|re)\s+(.+)$", text)
    if subject:
        args["subject"] = subject.group(1).strip()
    return args


def extract_system_action(text: str, keyword: str) -> Dict[str, str]:
    args = {"action": keyword.replace(" ", "_")}
    if "volume" in text or "brightness" in text:
        direction = re.search(r"\b(up|down|increase|decrease|max|min)\b", text)
        if direction:
            args["direction"] = direction.group(1)
    level = re.search(r"\b(\d{1,3})\s*(?:%|percent)?", text)
    if level:
        args["level"] = level.group(1)
    return args


def extract_location(text: str, keyword: str) -> Dict[str, str]:
    match = re.search(r"\b(?:in|at|for)\s+([a-z][\w .'-]*?)(?:\s+(?:today|tomorrow|tonight|this week|now))?$", text)
    args: Dict[str, str] = {}
    if match:
        args["location"] = match.group(1).strip()
    when = re.search(r"\b(today|tomorrow|tonight|this week)\b", text)
    if when:
        args["when"] = when.group(1)
    return args


def extract_topic(text: str, keyword: str) -> Dict[str, str]:
    rest = _after_keyword(text, keyword)
    rest = re.sub(r"^(?:me\s+)?(?:an?|the|some)\s+", "", rest)
    return {"topic": rest} if rest else {}


DEFAULT_INTENTS: List[IntentSpec] = [
    IntentSpec(
        name="app_launch",
        keywords=("open", "launch", "start", "run", "bring up"),
        required_args=("target",),
        extractor=extract_app_target,
    ),
    IntentSpec(
        name="web_search",
        keywords=("search", "look up", "google", "find"),
        required_args=("query",),
        extractor=extract_search_query,
    ),
    IntentSpec(
        name="browser_navigate",
        keywords=("go to", "navigate to", "visit", "browse to"),
        required_args=("url",),
        extractor=extract_url,
    ),
    IntentSpec(
        name="compose_email",
        keywords=("compose email", "send email", "write email", "email", "mail"),
        required_args=("recipient",),
        extractor=extract_email_fields,
    ),
    IntentSpec(
        name="system_control",
        keywords=(
            "volume",
            "mute",
            "unmute",
            "lock screen",
            "shut down",
            "shutdown",
            "restart",
            "sleep",
            "brightness",
        ),
        required_args=("action",),
        extractor=extract_system_action,
    ),
    IntentSpec(
        name="weather",
        keywords=("weather", "forecast", "temperature"),
        required_args=("location",),
        extractor=extract_location,
    ),
    IntentSpec(
        name="ai_compose",
        keywords=("write", "draft", "generate", "summarize", "explain", "translate"),
        required_args=("topic",),
        extractor=extract_topic,
    ),
]


class IntentClassifier:
    """Maps raw request text to an ``Intent``.

    Tier 1 looks for trigger keywords on word boundaries; the earliest match
    in the text wins, longer keywords first on a tie, then table order.
    Tier 2 scores every keyword against the whole text and against each run
    of input tokens of the keyword's length using normalized edit distance.
    Missing required arguments lower the confidence by a fixed penalty.
    """

    def __init__(
        self,
        specs: Iterable[IntentSpec] | None = None,
        config: ClassifierConfig | None = None,
    ) -> None:
        self.config = config or ClassifierConfig()
        self.specs: List[IntentSpec] = list(specs if specs is not None else DEFAULT_INTENTS)
        self._patterns: List[Tuple[int, IntentSpec, str, re.Pattern[str]]] = []
        for order, spec in enumerate(self.specs):
            for keyword in spec.keywords:
                normalized = normalize_text(keyword)
                self._patterns.append(
                    (order, spec, normalized, re.compile(rf"\b{re.escape(normalized)}\b"))
                )

    def known_intents(self) -> List[str]:
        return [spec.name for spec in self.specs]

    def classify(self, text: str) -> Intent:
        normalized = normalize_text(text)
        if not normalized:
            return Intent(type=UNKNOWN, confidence=0.0, text=normalized)

        exact = self._exact_match(normalized)
        if exact is not None:
            spec, keyword = exact
            return self._finalize(spec, keyword, normalized, self.config.tier1_confidence, tier=1)

        spec, keyword, corrected, score = self._fuzzy_match(normalized)
        if spec is None or score < self.config.fuzzy_threshold:
            return Intent(type=UNKNOWN, confidence=clamp01(score), matched_keyword=keyword, tier=2, text=normalized)
        return self._finalize(spec, keyword, corrected, score, tier=2)

    def _exact_match(self, text: str) -> Optional[Tuple[IntentSpec, str]]:
        best: Optional[Tuple[Tuple[int, int, int], IntentSpec, str]] = None
        for order, spec, keyword, pattern in self._patterns:
            match = pattern.search(text)
            if not match:
                continue
            rank = (match.start(), -len(keyword), order)
            if best is None or rank < best[0]:
                best = (rank, spec, keyword)
        if best is None:
            return None
        return best[1], best[2]

    def _fuzzy_match(self, text: str) -> Tuple[Optional[IntentSpec], str, str, float]:
        """Best keyword by similarity, plus the text with the matched span corrected."""

        tokens = text.split(" ")
        best_spec: Optional[IntentSpec] = None
        best_keyword = ""
        best_text = text
        best_score = 0.0
        for _, spec, keyword, _ in self._patterns:
            size = len(keyword.split(" "))
            score = similarity(text, keyword)
            if score > best_score:
                best_spec, best_keyword, best_text, best_score = spec, keyword, keyword, score
            for start, window in enumerate(token_windows(tokens, size)):
                score = similarity(window, keyword)
                if score > best_score:
                    corrected = " ".join([*tokens[:start], keyword, *tokens[start + size :]])
                    best_spec, best_keyword, best_text, best_score = spec, keyword, corrected, score
        return best_spec, best_keyword, best_text, best_score

    def _finalize(self, spec: IntentSpec, keyword: str, text: str, base: float, *, tier: int) -> Intent:
        args: Dict[str, str] = {}
        if spec.extractor is not None:
            args = {key: value for key, value in spec.extractor(text, keyword).items() if value}
        missing = [name for name in spec.required_args if name not in args]
        confidence = clamp01(base - self.config.missing_arg_penalty * len(missing))
        return Intent(
            type=spec.name,
            confidence=confidence,
            extracted_args=args,
            missing_args=missing,
            matched_keyword=keyword,
            tier=tier,
            text=text,
        )
