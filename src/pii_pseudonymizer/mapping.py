"""Recovery mapping export and de-anonymization.

The artifact holds the very PII removed from the output text.  It is
serialized as plain JSON; protecting it is up to the caller.
"""

from __future__ import annotations
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

MAPPING_VERSION = "1.0"


@dataclass(frozen=True)
class MappingArtifact:
    version: str
    timestamp: str
    model_identifier: str | None
    detection_methods: tuple[str, ...]
    entities: Mapping[str, str] = field(default_factory=dict)   # original → replacement

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "modelIdentifier": self.model_identifier,
            "detectionMethods": list(self.detection_methods),
            "entities": dict(self.entities),
        }

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def write(self, path: str | Path) -> None:
        Path(path).write_text(self.to_json(), encoding="utf-8")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MappingArtifact:
        return cls(
            version=str(data.get("version", MAPPING_VERSION)),
            timestamp=str(data.get("timestamp", "")),
            model_identifier=data.get("modelIdentifier"),
            detection_methods=tuple(data.get("detectionMethods", ())),
            entities=dict(data.get("entities", {})),
        )

    @classmethod
    def read(cls, path: str | Path) -> MappingArtifact:
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def build_artifact(
    replacements: list[tuple[str, str]],
    *,
    model_identifier: str | None,
    detection_methods: list[str],
    now: datetime | None = None,
) -> MappingArtifact:
    """Snapshot the approved (original, replacement) pairs."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return MappingArtifact(
        version=MAPPING_VERSION,
        timestamp=stamp,
        model_identifier=model_identifier,
        detection_methods=tuple(detection_methods),
        entities=dict(replacements),
    )


def restore(text: str, entities: Mapping[str, str]) -> str:
    """Put originals back in place of their pseudonyms.

    Pseudonyms are matched as whole tokens, longest first, so ``PER_1``
    never eats the front of ``PER_12``.
    """
    if not text or not entities:
        return text
    reverse: dict[str, str] = {}
    for original, pseudonym in entities.items():
        reverse.setdefault(pseudonym, original)
    alternation = "|".join(re.escape(p) for p in sorted(reverse, key=len, reverse=True))
    pattern = re.compile(rf"(?<!\w)(?:{alternation})(?!\w)")
    return pattern.sub(lambda m: reverse[m.group()], text)
