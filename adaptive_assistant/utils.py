"""Utilities shared by the assistant engine modules."""

from __future__ import annotations

import hashlib
import random
import re
import string
import time
from typing import Sequence

from rapidfuzz.distance import Levenshtein


_ID_ALPHABET = string.ascii_lowercase + string.digits
_WHITESPACE = re.compile(r"\s+")


def generate_id(prefix: str, *, size: int = 8) -> str:
    """Generate a short unique identifier with a readable prefix."""

    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(size))
    return f"{prefix}_{suffix}"


def timestamp_ms() -> int:
    """Return current UTC timestamp in milliseconds."""

    return int(time.time() * 1000)


def normalize_text(text: str) -> str:
    """Lowercase, trim and collapse whitespace."""

    return _WHITESPACE.sub(" ", (text or "").strip().lower())


def request_signature(text: str, *, length: int = 16) -> str:
    """Hash of the normalized request text.

    Requests that differ only in case or spacing share a signature, which is
    what the preference store and duplicate detection key on.
    """

    if length <= 0:
        raise ValueError("length must be positive")
    digest = hashlib.sha256(normalize_text(text).encode("utf-8", errors="ignore"))
    return digest.hexdigest()[:length]


def similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity in [0, 1]."""

    return Levenshtein.normalized_similarity(a, b)


def clamp01(value: float) -> float:
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return value


def token_windows(tokens: Sequence[str], size: int) -> list[str]:
    """Join every run of ``size`` consecutive tokens."""

    if size <= 0 or size > len(tokens):
        return []
    return [" ".join(tokens[idx : idx + size]) for idx in range(len(tokens) - size + 1)]
