"""Detection accuracy against hand-labelled ground truth.

Matching runs in two rounds: exact (same type, same text), then overlap
(same type, span overlap ≥ threshold measured against the shorter span).
Each expected entity is matched at most once.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from .types import Candidate, EntityType


@dataclass(frozen=True, slots=True)
class Annotation:
    entity_type: EntityType
    text: str
    start: int | None = None
    end: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Annotation:
        return cls(
            entity_type=EntityType(data["type"]),
            text=data["text"],
            start=data.get("start"),
            end=data.get("end"),
        )

    @classmethod
    def from_candidate(cls, c: Candidate) -> Annotation:
        return cls(c.entity_type, c.text, c.start, c.end)


@dataclass(slots=True)
class TypeMetrics:
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0

    @property
    def precision(self) -> float:
        found = self.true_positives + self.false_positives
        return self.true_positives / found if found else 0.0

    @property
    def recall(self) -> float:
        expected = self.true_positives + self.false_negatives
        return self.true_positives / expected if expected else 0.0

    @property
    def f1(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if p + r else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "truePositives": self.true_positives,
            "falsePositives": self.false_positives,
            "falseNegatives": self.false_negatives,
            "precision": round(self.precision, 4),
            "recall": round(self.recall, 4),
            "f1": round(self.f1, 4),
        }


@dataclass(slots=True)
class AccuracyReport:
    per_type: dict[EntityType, TypeMetrics] = field(default_factory=dict)
    overall: TypeMetrics = field(default_factory=TypeMetrics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.to_dict(),
            "perType": {t.value: m.to_dict() for t, m in sorted(self.per_type.items())},
        }


def overlap_ratio(a: Annotation, b: Annotation) -> float:
    if None in (a.start, a.end, b.start, b.end):
        return 0.0
    overlap = min(a.end, b.end) - max(a.start, b.start)
    if overlap <= 0:
        return 0.0
    shorter = min(a.end - a.start, b.end - b.start)
    return overlap / shorter if shorter > 0 else 0.0


def evaluate(
    detected: Iterable[Candidate | Annotation],
    expected: Iterable[Annotation],
    *,
    overlap_threshold: float = 0.5,
) -> AccuracyReport:
    found = [d if isinstance(d, Annotation) else Annotation.from_candidate(d) for d in detected]
    truth = list(expected)
    matched_truth: set[int] = set()
    matched_found: set[int] = set()

    # round 1: exact
    for i, det in enumerate(found):
        for j, exp in enumerate(truth):
            if j in matched_truth:
                continue
            if det.entity_type is exp.entity_type and det.text == exp.text:
                matched_truth.add(j)
                matched_found.add(i)
                break

    # round 2: best overlap among the rest
    for i, det in enumerate(found):
        if i in matched_found:
            continue
        best, best_ratio = None, 0.0
        for j, exp in enumerate(truth):
            if j in matched_truth or det.entity_type is not exp.entity_type:
                continue
            ratio = overlap_ratio(det, exp)
            if ratio >= overlap_threshold and ratio > best_ratio:
                best, best_ratio = j, ratio
        if best is not None:
            matched_truth.add(best)
            matched_found.add(i)

    report = AccuracyReport()

    def bucket(t: EntityType) -> TypeMetrics:
        return report.per_type.setdefault(t, TypeMetrics())

    for i, det in enumerate(found):
        if i in matched_found:
            bucket(det.entity_type).true_positives += 1
            report.overall.true_positives += 1
        else:
            bucket(det.entity_type).false_positives += 1
            report.overall.false_positives += 1
    for j, exp in enumerate(truth):
        if j not in matched_truth:
            bucket(exp.entity_type).false_negatives += 1
            report.overall.false_negatives += 1
    return report
