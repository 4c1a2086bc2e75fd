"""Overlap resolution across rule and recognizer candidates."""

from __future__ import annotations
from typing import Iterable, Mapping

from .types import TYPE_PRIORITY, Candidate, EntityType


def resolve_overlaps(
    candidates: Iterable[Candidate],
    priorities: Mapping[EntityType, int] | None = None,
) -> list[Candidate]:
    """Return a non-overlapping subset, ordered by position.

    Candidates are scanned by start offset (ties: higher priority, then
    longer first).  When a candidate overlaps the last kept one, the
    higher-priority type wins; on equal priority the longer span wins.
    Candidates without a position cannot overlap and are kept once per
    (type, text), after the positioned ones.
    """
    table = TYPE_PRIORITY if priorities is None else priorities

    def rank(c: Candidate) -> tuple[int, int]:
        return table.get(c.entity_type, 0), c.length

    positioned: list[Candidate] = []
    spanless: dict[tuple, Candidate] = {}
    for c in candidates:
        if c.has_span:
            positioned.append(c)
        elif (c.entity_type, c.text) not in spanless:
            spanless[(c.entity_type, c.text)] = c

    positioned.sort(key=lambda c: (c.start, -table.get(c.entity_type, 0), -c.length))

    kept: list[Candidate] = []
    for c in positioned:
        if kept and c.overlaps(kept[-1]):
            if rank(c) > rank(kept[-1]):
                kept[-1] = c
            continue
        kept.append(c)

    return kept + list(spanless.values())
