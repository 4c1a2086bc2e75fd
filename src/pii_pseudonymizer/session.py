"""PseudonymSession: per-document mapping between originals and pseudonyms.

Design goals:
  - Deterministic: the same original text always gets the same pseudonym
    within a session, whatever type it is later seen with
  - Isolated: counters live on the instance, never at module level
  - Never reused: a pseudonym names exactly one original
"""

from __future__ import annotations
import uuid
from collections import defaultdict
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .errors import SessionStateError
from .types import EntityType

_PSEUDONYM_FMT = "{tag}_{idx}"


class SessionState(str, Enum):
    INGESTED = "INGESTED"
    DETECTED = "DETECTED"
    REVIEWED = "REVIEWED"
    FINALIZED = "FINALIZED"


_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.INGESTED: {SessionState.DETECTED},
    SessionState.DETECTED: {SessionState.REVIEWED, SessionState.FINALIZED},
    SessionState.REVIEWED: {SessionState.REVIEWED, SessionState.FINALIZED},
    SessionState.FINALIZED: set(),
}


class PseudonymSession:
    """Original ↔ pseudonym store scoped to one document."""

    __slots__ = ("session_id", "_original_to_pseudonym", "_pseudonym_to_original",
                 "_types", "_counters", "_state")

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self._original_to_pseudonym: dict[str, str] = {}   # "Hans Müller" → PER_1
        self._pseudonym_to_original: dict[str, str] = {}   # PER_1 → "Hans Müller"
        self._types: dict[str, EntityType] = {}            # PER_1 → PERSON
        self._counters: dict[str, int] = defaultdict(int)
        self._state = SessionState.INGESTED

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def get_or_create_pseudonym(self, text: str, entity_type: EntityType) -> str:
        """Return the existing pseudonym for ``text`` or allocate the next one."""
        if self._state is SessionState.FINALIZED:
            raise SessionStateError("session is finalized")
        existing = self._original_to_pseudonym.get(text)
        if existing is not None:
            return existing

        tag = entity_type.tag
        self._counters[tag] += 1
        pseudonym = _PSEUDONYM_FMT.format(tag=tag, idx=self._counters[tag])

        self._original_to_pseudonym[text] = pseudonym
        self._pseudonym_to_original[pseudonym] = text
        self._types[pseudonym] = entity_type
        return pseudonym

    def lookup(self, text: str) -> str | None:
        """Pseudonym already assigned to ``text``, if any."""
        return self._original_to_pseudonym.get(text)

    def type_of(self, pseudonym: str) -> EntityType | None:
        """Type recorded when ``pseudonym`` was first allocated."""
        return self._types.get(pseudonym)

    def get_mapping(self) -> Mapping[str, str]:
        """Read-only snapshot of original → pseudonym."""
        return MappingProxyType(dict(self._original_to_pseudonym))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    def _advance(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise SessionStateError(f"cannot move from {self._state.value} to {target.value}")
        self._state = target

    def mark_detected(self) -> None:
        self._advance(SessionState.DETECTED)

    def mark_reviewed(self) -> None:
        self._advance(SessionState.REVIEWED)

    def mark_finalized(self) -> None:
        self._advance(SessionState.FINALIZED)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._pseudonym_to_original)

    def __repr__(self) -> str:
        # counts only, originals never appear in reprs
        return f"PseudonymSession(id={self.session_id!r}, state={self._state.value}, size={self.size})"
