"""Review boundary: what a human sees and may change before finalizing.

Detected candidates are grouped by original text (substitution is
text-level, so all occurrences share one decision).  Every item starts
approved; callers may reject, re-approve, edit the replacement or add
entities the detectors missed.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from .session import PseudonymSession
from .substitution import apply_selective
from .types import Candidate, DetectionResult, EntityType, Source

DEFAULT_NEEDS_REVIEW_THRESHOLD = 0.7


class ReviewStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    EDITED = "edited"


@dataclass(slots=True)
class ReviewItem:
    """One original text proposed for pseudonymization."""
    id: str
    entity_type: EntityType
    original: str
    pseudonym: str
    confidence: float
    source: Source
    occurrences: list[tuple[int, int]] = field(default_factory=list)
    status: ReviewStatus = ReviewStatus.APPROVED
    edited_replacement: str | None = None

    @property
    def replacement(self) -> str:
        if self.status is ReviewStatus.EDITED and self.edited_replacement is not None:
            return self.edited_replacement
        return self.pseudonym

    @property
    def included(self) -> bool:
        return self.status is not ReviewStatus.REJECTED


def _merged_source(candidates: Iterable[Candidate]) -> Source:
    sources = {c.source for c in candidates}
    if len(sources) == 1:
        return sources.pop()
    if Source.BOTH in sources or {Source.RULE, Source.ML} <= sources:
        return Source.BOTH
    return sorted(sources, key=lambda s: s.value)[0]


class DocumentReview:
    """Reviewable detection result for one document."""

    def __init__(
        self,
        source_text: str,
        session: PseudonymSession,
        items: list[ReviewItem],
        detection: DetectionResult,
        *,
        needs_review_threshold: float = DEFAULT_NEEDS_REVIEW_THRESHOLD,
    ) -> None:
        self.source_text = source_text
        self.session = session
        self.detection = detection
        self.needs_review_threshold = needs_review_threshold
        self._items: dict[str, ReviewItem] = {item.id: item for item in items}
        self._manual_count = 0

    @property
    def items(self) -> list[ReviewItem]:
        return list(self._items.values())

    def get(self, item_id: str) -> ReviewItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise KeyError(f"no review item {item_id!r}") from None

    def find(self, original: str) -> ReviewItem | None:
        for item in self._items.values():
            if item.original == original:
                return item
        return None

    def needs_review(self, item: ReviewItem) -> bool:
        return item.confidence < self.needs_review_threshold

    # ── Decisions ──────────────────────────────────────────────────

    def _touch(self) -> None:
        self.session.mark_reviewed()

    def approve(self, item_id: str) -> None:
        item = self.get(item_id)
        self._touch()
        item.status = ReviewStatus.APPROVED
        item.edited_replacement = None

    def reject(self, item_id: str) -> None:
        item = self.get(item_id)
        self._touch()
        item.status = ReviewStatus.REJECTED

    def toggle(self, item_id: str) -> bool:
        """Flip inclusion; returns the new inclusion state."""
        item = self.get(item_id)
        if item.included:
            self.reject(item_id)
        else:
            self.approve(item_id)
        return item.included

    def edit(self, item_id: str, replacement: str) -> None:
        if not replacement:
            raise ValueError("replacement must be a non-empty string")
        item = self.get(item_id)
        self._touch()
        item.status = ReviewStatus.EDITED
        item.edited_replacement = replacement

    def add_manual(self, text: str, entity_type: EntityType) -> ReviewItem:
        """Add an entity the detectors missed (confidence 1.0, source MANUAL)."""
        if not text or not text.strip():
            raise ValueError("manual entity text must be non-empty")
        existing = self.find(text)
        if existing is not None:
            self._touch()
            existing.status = ReviewStatus.APPROVED
            existing.source = Source.MANUAL
            existing.confidence = 1.0
            return existing

        self._touch()
        self._manual_count += 1
        pseudonym = self.session.get_or_create_pseudonym(text, entity_type)
        item = ReviewItem(
            id=f"m{self._manual_count}",
            entity_type=self.session.type_of(pseudonym) or entity_type,
            original=text,
            pseudonym=pseudonym,
            confidence=1.0,
            source=Source.MANUAL,
            occurrences=_literal_occurrences(self.source_text, text),
        )
        self._items[item.id] = item
        return item

    # ── Output ─────────────────────────────────────────────────────

    def included(self) -> list[ReviewItem]:
        return [item for item in self._items.values() if item.included]

    def replacements(self) -> list[tuple[str, str]]:
        return [(item.original, item.replacement) for item in self.included()]

    def render(self) -> str:
        """Substitute the current selection into the untouched source text."""
        return apply_selective(self.source_text, self.replacements())

    def to_records(self) -> list[dict[str, Any]]:
        """Plain dicts for a UI or IPC layer."""
        return [
            {
                "id": item.id,
                "type": item.entity_type.value,
                "originalText": item.original,
                "replacement": item.replacement,
                "confidence": round(item.confidence, 4),
                "source": item.source.value,
                "needsReview": self.needs_review(item),
                "status": item.status.value,
            }
            for item in self._items.values()
        ]


def _literal_occurrences(text: str, needle: str) -> list[tuple[int, int]]:
    spans: list[tuple[int, int]] = []
    pos = text.find(needle)
    while pos != -1:
        spans.append((pos, pos + len(needle)))
        pos = text.find(needle, pos + len(needle))
    return spans


def build_review(
    source_text: str,
    session: PseudonymSession,
    detection: DetectionResult,
    *,
    needs_review_threshold: float = DEFAULT_NEEDS_REVIEW_THRESHOLD,
) -> DocumentReview:
    """Group candidates by text and assign pseudonyms in document order."""
    groups: dict[str, list[Candidate]] = {}
    for c in detection.candidates:
        groups.setdefault(c.text, []).append(c)

    items: list[ReviewItem] = []
    for n, (text, group) in enumerate(groups.items(), start=1):
        first = group[0]
        pseudonym = session.get_or_create_pseudonym(text, first.entity_type)
        items.append(ReviewItem(
            id=f"e{n}",
            # a text seen earlier keeps the type its pseudonym was made for
            entity_type=session.type_of(pseudonym) or first.entity_type,
            original=text,
            pseudonym=pseudonym,
            confidence=max(c.confidence for c in group),
            source=_merged_source(group),
            occurrences=[(c.start, c.end) for c in group if c.has_span],
        ))
    return DocumentReview(
        source_text, session, items, detection,
        needs_review_threshold=needs_review_threshold,
    )
