"""Address linking.

Rules find address parts one at a time: ``Rue de Lausanne 12`` and
``1003 Lausanne`` come out as two ADDRESS hits, a recognizer may add
``Lausanne`` as a LOCATION, and the country line is not matched at all.
``AddressLinkingPass`` joins parts separated only by whitespace or
punctuation into one scored ADDRESS candidate, so the whole block is
replaced by a single pseudonym.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from .passes import DetectionPass
from .types import Candidate, EntityType, Source

log = logging.getLogger(__name__)

MAX_GAP = 50
MAX_GAP_MULTILINE = 100
MIN_COMPONENTS = 2

_GAP = re.compile(r"[\s,;/\-]*")
_STREET_NUMBER = re.compile(r"\d{1,4}[a-zA-Z]?$")
_POSTAL_LOCALITY = re.compile(r"^(?:[A-Z]{1,2}-)?(\d{4,5})\s+\S")
_COUNTRY = re.compile(
    r"\b(?:Suisse|Schweiz|Svizzera|Switzerland|France|Deutschland|Germany|Italia|Italy|"
    r"Österreich|Austria|Belgique|Belgium|Luxembourg|Liechtenstein)\b"
)


class Part(str, Enum):
    STREET = "STREET"
    NUMBER = "NUMBER"
    POSTAL = "POSTAL"
    CITY = "CITY"
    COUNTRY = "COUNTRY"


@dataclass(slots=True)
class _Component:
    start: int
    end: int
    parts: frozenset[Part]
    candidate: Candidate | None = None
    postal_code: str | None = None


@dataclass(slots=True)
class _Group:
    components: list[_Component] = field(default_factory=list)

    @property
    def start(self) -> int:
        return self.components[0].start

    @property
    def end(self) -> int:
        return max(c.end for c in self.components)

    @property
    def parts(self) -> set[Part]:
        return {p for c in self.components for p in c.parts}

    @property
    def candidates(self) -> list[Candidate]:
        return [c.candidate for c in self.components if c.candidate is not None]

    @property
    def postal_code(self) -> str | None:
        for c in self.components:
            if c.postal_code:
                return c.postal_code
        return None


def _component(candidate: Candidate) -> _Component | None:
    if not candidate.has_span:
        return None
    if candidate.entity_type is EntityType.LOCATION:
        return _Component(candidate.start, candidate.end, frozenset({Part.CITY}), candidate)
    if candidate.entity_type is not EntityType.ADDRESS:
        return None
    text = candidate.text.strip()
    m = _POSTAL_LOCALITY.match(text)
    if m:
        return _Component(
            candidate.start, candidate.end, frozenset({Part.POSTAL, Part.CITY}),
            candidate, m.group(1),
        )
    if _STREET_NUMBER.search(text):
        return _Component(candidate.start, candidate.end, frozenset({Part.STREET, Part.NUMBER}), candidate)
    return _Component(candidate.start, candidate.end, frozenset({Part.STREET}), candidate)


def _gap_links(text: str, start: int, end: int) -> bool:
    gap = text[start:end]
    limit = MAX_GAP_MULTILINE if "\n" in gap else MAX_GAP
    return len(gap) <= limit and _GAP.fullmatch(gap) is not None


def link_components(text: str, candidates: list[Candidate]) -> list[_Group]:
    """Group address parts that follow each other with nothing but separators between."""
    components = [c for c in map(_component, candidates) if c is not None]
    components.extend(
        _Component(m.start(), m.end(), frozenset({Part.COUNTRY}))
        for m in _COUNTRY.finditer(text)
    )
    components.sort(key=lambda c: (c.start, -c.end))

    groups: list[_Group] = []
    current: _Group | None = None
    for comp in components:
        if current is not None and (comp.start < current.end or _gap_links(text, current.end, comp.start)):
            current.components.append(comp)
            continue
        current = _Group([comp])
        groups.append(current)

    return [
        g for g in groups
        if len(g.components) >= MIN_COMPONENTS
        and g.candidates
        and (Part.STREET in g.parts or Part.POSTAL in g.parts)
    ]


def _postal_valid(code: str | None) -> bool:
    if not code:
        return False
    if len(code) == 4:
        return 1000 <= int(code) <= 9699
    return len(code) == 5


def score_group(group: _Group) -> tuple[float, str]:
    """Confidence in [0, 1] and the address shape (SWISS, EU or PARTIAL)."""
    parts = group.parts
    score = min(len(parts) * 0.2, 1.0)
    code = group.postal_code
    if Part.STREET in parts and Part.POSTAL in parts:
        score += 0.3
        shape = "SWISS" if code and len(code) == 4 else "EU"
    else:
        score += 0.15
        shape = "PARTIAL"
    if _postal_valid(code):
        score += 0.2
    if Part.CITY in parts:
        score += 0.1
    if Part.COUNTRY in parts:
        score += 0.1
    return min(score / 1.7, 1.0), shape


def _source(candidates: list[Candidate]) -> Source:
    sources = {c.source for c in candidates}
    if len(sources) == 1:
        return sources.pop()
    return Source.BOTH


class AddressLinkingPass(DetectionPass):
    """Replace linked address parts with one ADDRESS candidate per block."""
    name = "address_linking"
    order = 40

    async def execute(self, text, candidates, context):
        groups = link_components(text, candidates)
        if not groups:
            return candidates

        linked: list[Candidate] = []
        for group in groups:
            score, shape = score_group(group)
            members = group.candidates
            linked.append(Candidate(
                entity_type=EntityType.ADDRESS,
                text=text[group.start:group.end],
                start=group.start,
                end=group.end,
                confidence=max(score, max(c.confidence for c in members)),
                source=_source(members),
                metadata={
                    "rule": "address_link",
                    "components": sorted(p.value for p in group.parts),
                    "pattern": shape,
                    "masked": False,
                },
            ))

        absorbed = (EntityType.ADDRESS, EntityType.LOCATION)
        out = [
            c for c in candidates
            if not (c.entity_type in absorbed and any(c.overlaps(a) for a in linked))
        ]
        out.extend(linked)
        out.sort(key=lambda c: (c.start if c.has_span else len(text), -c.priority))
        log.debug("linked %d address blocks", len(linked))
        return out
