"""
Rule-based query classification.

Type precedence when several signals fire:
personal > instructional > external_lookup > generic.
The freshness signal sets ``needs_external_lookup`` whatever the type tag is.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class QueryType(str, Enum):
    personal = "personal"
    instructional = "instructional"
    external_lookup = "external_lookup"
    generic = "generic"


@dataclass(frozen=True)
class ClassifiedQuery:
    text: str
    query_type: QueryType
    needs_memory: bool
    needs_external_lookup: bool
    matched_signals: tuple[str, ...] = field(default_factory=tuple)


def _pattern(*phrases: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(phrases) + r")\b", re.IGNORECASE)


PERSONAL_PATTERN = _pattern(
    r"my",
    r"mine",
    r"myself",
    r"about me",
    r"who am i",
    r"do you remember",
    r"do you know (?:me|my|who)",
    r"call me",
    r"i am",
    r"i'm",
    r"i live",
    r"i like",
    r"i prefer",
)

CONTINUITY_PATTERN = _pattern(
    r"as i said",
    r"like i told you",
    r"i told you",
    r"remember",
    r"earlier",
    r"last time",
)

INSTRUCTIONAL_PATTERN = _pattern(
    r"explain",
    r"teach me",
    r"how do i",
    r"how to",
    r"walk me through",
    r"step by step",
    r"help me understand",
    r"what is the difference",
    r"solve",
    r"show me how",
    r"tutorial",
)

FRESHNESS_PATTERN = _pattern(
    r"today",
    r"tonight",
    r"latest",
    r"current",
    r"currently",
    r"recent",
    r"recently",
    r"news",
    r"this week",
    r"right now",
    r"now",
    r"updates?",
    r"weather",
    r"(?:202[4-9]|20[3-9]\d)",
)

# Weak phrasing that only looks personal because of "i am"/"i'm" in a task
# description ("I'm trying to learn ...") should not outrank a clear teaching ask.
_INCIDENTAL_SELF_REFERENCE = re.compile(r"\b(?:i am|i'm)\s+(?:trying|going|wondering|looking)\b", re.IGNORECASE)


def _has_personal_signal(text: str) -> bool:
    for match in PERSONAL_PATTERN.finditer(text):
        phrase = match.group(0).lower()
        if phrase in {"i am", "i'm"} and _INCIDENTAL_SELF_REFERENCE.match(text, match.start()):
            continue
        return True
    return False


def classify_query(text: str, history_summary: Optional[str] = None) -> ClassifiedQuery:
    """Classify raw query text. Pure and deterministic."""
    raw = text or ""
    signals: list[str] = []

    personal = _has_personal_signal(raw)
    if personal:
        signals.append("personal")
    elif history_summary and CONTINUITY_PATTERN.search(raw):
        personal = True
        signals.append("continuity")

    instructional = bool(INSTRUCTIONAL_PATTERN.search(raw))
    if instructional:
        signals.append("instructional")

    fresh = bool(FRESHNESS_PATTERN.search(raw))
    if fresh:
        signals.append("freshness")

    if personal:
        query_type = QueryType.personal
    elif instructional:
        query_type = QueryType.instructional
    elif fresh:
        query_type = QueryType.external_lookup
    else:
        query_type = QueryType.generic

    return ClassifiedQuery(
        text=raw,
        query_type=query_type,
        needs_memory=query_type in (QueryType.personal, QueryType.instructional),
        needs_external_lookup=fresh,
        matched_signals=tuple(signals),
    )
