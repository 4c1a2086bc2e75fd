"""Fuzzy re-matching of recognizer hits.

The recognizer reports an entity once, often as a whitespace-less merge
of sub-word tokens (``HansMüller``).  ``build_fuzzy_pattern`` turns such
a string into a pattern that finds every occurrence in the document
despite incidental spacing or punctuation (``Hans Müller``,
``hans-müller``).  Construction rules keep matching linear-time:

  - only 3–30 alphanumeric characters are accepted,
  - literals are separated by a bounded lazy gap of 0–2 non-alphanumerics,
  - no nested or unbounded quantifiers.

Matching uses the third-party ``regex`` module for its wall-clock
``timeout``; running out of budget means "no match".
"""

from __future__ import annotations
import logging
from dataclasses import dataclass

import regex

from .recognizer import MergedEntity
from .types import Candidate, Source

log = logging.getLogger(__name__)

MAX_RAW_LENGTH = 50
MIN_CLEAN_LENGTH = 3
MAX_CLEAN_LENGTH = 30
DEFAULT_BUDGET_MS = 100

_GAP = r"[\W_]{0,2}?"
_NON_ALNUM = regex.compile(r"[\W_]+")


@dataclass(frozen=True, slots=True)
class FuzzyPattern:
    pattern: regex.Pattern
    cleaned: str


@dataclass(frozen=True, slots=True)
class Rejection:
    reason: str


def build_fuzzy_pattern(entity_text: str) -> FuzzyPattern | Rejection:
    """Build a noise-tolerant matcher for ``entity_text``, or say why not."""
    if not isinstance(entity_text, str) or not entity_text:
        return Rejection("empty")
    if len(entity_text) > MAX_RAW_LENGTH:
        return Rejection("too long")
    cleaned = _NON_ALNUM.sub("", entity_text)
    if len(cleaned) < MIN_CLEAN_LENGTH:
        return Rejection("too short")
    if len(cleaned) > MAX_CLEAN_LENGTH:
        return Rejection("too long")

    body = _GAP.join(regex.escape(ch) for ch in cleaned)
    try:
        pattern = regex.compile(rf"(?<!\w){body}(?!\w)", regex.IGNORECASE)
    except regex.error:
        return Rejection("unbuildable")
    return FuzzyPattern(pattern=pattern, cleaned=cleaned)


def find_occurrences(
    fuzzy: FuzzyPattern,
    text: str,
    *,
    budget_ms: float = DEFAULT_BUDGET_MS,
) -> list[tuple[int, int, str]]:
    """All ``(start, end, matched_text)`` hits, or ``[]`` once the budget runs out."""
    try:
        return [
            (m.start(), m.end(), m.group())
            for m in fuzzy.pattern.finditer(text, timeout=budget_ms / 1000)
        ]
    except TimeoutError:
        log.debug("fuzzy match timed out after %sms", budget_ms)
        return []


class FuzzyRematcher:
    """Expands merged recognizer entities into positioned ML candidates."""

    def __init__(self, budget_ms: float = DEFAULT_BUDGET_MS) -> None:
        self.budget_ms = budget_ms

    def expand(self, entity: MergedEntity, text: str) -> list[Candidate]:
        fuzzy = build_fuzzy_pattern(entity.text)
        if isinstance(fuzzy, Rejection):
            log.debug("skipping %s entity: %s", entity.entity_type.value, fuzzy.reason)
            return []
        return [
            Candidate(
                entity_type=entity.entity_type,
                text=matched,
                start=start,
                end=end,
                confidence=entity.score,
                source=Source.ML,
            )
            for start, end, matched in find_occurrences(fuzzy, text, budget_ms=self.budget_ms)
        ]
