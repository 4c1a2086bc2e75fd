"""Core types."""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntityType(str, Enum):
    """Closed set of entity types the engine can report."""
    PERSON = "PERSON"
    ORGANIZATION = "ORGANIZATION"
    LOCATION = "LOCATION"
    ADDRESS = "ADDRESS"
    BANK_ACCOUNT = "BANK_ACCOUNT"        # IBAN
    POSTAL_ACCOUNT = "POSTAL_ACCOUNT"    # legacy Swiss account, e.g. 12-34567-8
    NATIONAL_ID = "NATIONAL_ID"          # AVS / AHV
    PHONE = "PHONE"
    EMAIL = "EMAIL"
    DATE = "DATE"
    TAX_ID = "TAX_ID"                    # CHE UID, EU VAT
    DOCUMENT_ID = "DOCUMENT_ID"          # passport
    CONTRACT_REF = "CONTRACT_REF"

    @property
    def tag(self) -> str:
        """Prefix used when building pseudonyms (``PER`` in ``PER_1``)."""
        return _PSEUDONYM_TAGS.get(self, self.value)

    @property
    def priority(self) -> int:
        return TYPE_PRIORITY.get(self, 0)


_PSEUDONYM_TAGS = {
    EntityType.PERSON: "PER",
    EntityType.ORGANIZATION: "ORG",
    EntityType.LOCATION: "LOC",
}

# Overlap tie-break order. Types missing here rank lowest.
TYPE_PRIORITY: dict[EntityType, int] = {
    EntityType.BANK_ACCOUNT: 100,
    EntityType.NATIONAL_ID: 90,
    EntityType.EMAIL: 80,
    EntityType.POSTAL_ACCOUNT: 70,
    EntityType.TAX_ID: 60,
    EntityType.DOCUMENT_ID: 40,
    EntityType.PHONE: 20,
    EntityType.ADDRESS: 15,
    EntityType.ORGANIZATION: 10,
    EntityType.DATE: 5,
    EntityType.CONTRACT_REF: 1,
}


class DocumentType(str, Enum):
    INVOICE = "INVOICE"
    LETTER = "LETTER"
    FORM = "FORM"
    CONTRACT = "CONTRACT"
    REPORT = "REPORT"
    UNKNOWN = "UNKNOWN"


class Source(str, Enum):
    RULE = "RULE"
    ML = "ML"
    MANUAL = "MANUAL"
    BOTH = "BOTH"


@dataclass(frozen=True, slots=True)
class Candidate:
    """A span tentatively classified as PII."""
    entity_type: EntityType
    text: str
    start: int | None          # None when the position is unknown
    end: int | None
    confidence: float          # 0.0–1.0
    source: Source
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def priority(self) -> int:
        return self.entity_type.priority

    @property
    def has_span(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def length(self) -> int:
        if self.has_span:
            return self.end - self.start
        return len(self.text)

    @property
    def key(self) -> tuple:
        """Identity used to diff candidate lists between passes."""
        return (self.entity_type, self.start, self.end, self.text)

    def overlaps(self, other: Candidate) -> bool:
        if not (self.has_span and other.has_span):
            return False
        return self.start < other.end and other.start < self.end


@dataclass(slots=True)
class PassResult:
    """Outcome of one pipeline pass."""
    name: str
    candidates: list[Candidate] = field(default_factory=list)
    added: int = 0
    removed: int = 0
    modified: int = 0
    duration_ms: float = 0.0
    error: str | None = None   # exception class name when the pass was skipped


@dataclass(slots=True)
class DetectionResult:
    """Final output of a pipeline run over one document."""
    candidates: list[Candidate] = field(default_factory=list)
    passes: list[PassResult] = field(default_factory=list)
    ml_skipped: bool = False
    ml_error: str | None = None
    duration_ms: float = 0.0
    document_type: DocumentType = DocumentType.UNKNOWN
    document_confidence: float = 0.0

    def by_type(self, entity_type: EntityType) -> list[Candidate]:
        return [c for c in self.candidates if c.entity_type is entity_type]
