"""Detection passes.

Each pass takes the raw text and the current candidate list and returns
a refined list.  The pipeline chains them in ``order``:

  10  HighRecallPass        rules + recognizer, wide net
  15  DenyListPass          drop known non-entities (``denylist``)
  20  FormatValidationPass  re-check formats and checksums
  30  ContextScoringPass    nearby keywords promote, demote or suppress
  35  DocumentTypePass      classify the document, adjust by position (``documents``)
  40  AddressLinkingPass    join address parts into one block (``address``)
"""

from __future__ import annotations
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

from .errors import RecognizerUnavailableError
from .fuzzy import FuzzyRematcher
from .patterns import RuleRegistry
from .types import Candidate, DocumentType, EntityType, Source
from .validators import validator_for

if TYPE_CHECKING:
    from .denylist import DenyList
    from .recognizer import RecognizerAdapter

log = logging.getLogger(__name__)

DEFAULT_HIGH_RECALL_FLOOR = 0.3
DEFAULT_CONTEXT_WINDOW = 50


@dataclass(slots=True)
class DetectionContext:
    """Per-run state shared by the passes of one pipeline run."""
    text: str
    ml_skipped: bool = False
    ml_error: str | None = None
    document_type: DocumentType = DocumentType.UNKNOWN
    document_confidence: float = 0.0


class DetectionPass:
    """Base class for pipeline passes."""
    name: str = "pass"
    order: int = 100

    async def execute(
        self,
        text: str,
        candidates: list[Candidate],
        context: DetectionContext,
    ) -> list[Candidate]:
        raise NotImplementedError


# ── Pass 1: high recall ────────────────────────────────────────────

class HighRecallPass(DetectionPass):
    """Union of rule hits and fuzzy-expanded recognizer hits.

    Same-type hits that overlap are folded into one candidate spanning
    both; when a rule and the recognizer agree the source becomes BOTH.
    If the recognizer is unavailable the run continues on rules alone
    and the context is flagged.
    """
    name = "high_recall"
    order = 10

    def __init__(
        self,
        registry: RuleRegistry,
        recognizer: RecognizerAdapter | None = None,
        rematcher: FuzzyRematcher | None = None,
        *,
        floor: float = DEFAULT_HIGH_RECALL_FLOOR,
    ) -> None:
        self.registry = registry
        self.recognizer = recognizer
        self.rematcher = rematcher or FuzzyRematcher()
        self.floor = floor

    async def execute(self, text, candidates, context):
        found = list(candidates)
        found.extend(self.registry.scan(text))

        if self.recognizer is not None:
            try:
                entities = await self.recognizer.recognize(text)
            except RecognizerUnavailableError as exc:
                log.warning("recognizer unavailable, continuing with rules only")
                context.ml_skipped = True
                context.ml_error = str(exc)
                entities = []
            for entity in entities:
                found.extend(self.rematcher.expand(entity, text))

        found = [c for c in found if c.confidence >= self.floor]
        return merge_agreeing(found, text)


def _combined_source(a: Source, b: Source) -> Source:
    sources = {a, b}
    if Source.BOTH in sources or sources == {Source.RULE, Source.ML}:
        return Source.BOTH
    return a


def _combine(a: Candidate, b: Candidate, text: str) -> Candidate:
    start, end = min(a.start, b.start), max(a.end, b.end)
    metadata = {**b.metadata, **a.metadata}
    metadata["masked"] = bool(a.metadata.get("masked")) and bool(b.metadata.get("masked"))
    return Candidate(
        entity_type=a.entity_type,
        text=text[start:end],
        start=start,
        end=end,
        confidence=max(a.confidence, b.confidence),
        source=_combined_source(a.source, b.source),
        metadata=metadata,
    )


def merge_agreeing(candidates: list[Candidate], text: str) -> list[Candidate]:
    """Fold overlapping candidates of the same type into one."""
    by_type: dict[EntityType, list[Candidate]] = defaultdict(list)
    spanless: list[Candidate] = []
    for c in candidates:
        if c.has_span:
            by_type[c.entity_type].append(c)
        else:
            spanless.append(c)

    merged: list[Candidate] = []
    for group in by_type.values():
        group.sort(key=lambda c: (c.start, -c.end))
        current = group[0]
        for c in group[1:]:
            if c.start < current.end:
                current = _combine(current, c, text)
            else:
                merged.append(current)
                current = c
        merged.append(current)

    merged.sort(key=lambda c: (c.start, -c.priority))
    return merged + spanless


# ── Pass 2: format validation ──────────────────────────────────────

class FormatValidationPass(DetectionPass):
    """Re-apply validators.

    Valid candidates get their confidence boosted.  Invalid rule hits
    are dropped; invalid recognizer hits are demoted.  Masked values
    and types without a validator pass through untouched.
    """
    name = "format_validation"
    order = 20

    def __init__(
        self,
        registry: RuleRegistry | None = None,
        *,
        boost: float = 1.2,
        penalty: float = 0.5,
    ) -> None:
        self.registry = registry
        self.boost = boost
        self.penalty = penalty

    def _validator(self, candidate: Candidate):
        rule_name = candidate.metadata.get("rule")
        if rule_name and self.registry is not None:
            rule = self.registry.get(rule_name)
            if rule is not None and rule.validator is not None:
                return rule.validator
        return validator_for(candidate.entity_type)

    async def execute(self, text, candidates, context):
        out: list[Candidate] = []
        for c in candidates:
            validator = None if c.metadata.get("masked") else self._validator(c)
            if validator is None:
                out.append(c)
                continue
            try:
                valid = validator(c.text)
            except Exception as exc:
                log.debug("validator failed on %s (%s)", c.entity_type.value, type(exc).__name__)
                valid = False
            if valid:
                out.append(replace(c, confidence=min(1.0, c.confidence * self.boost)))
            elif c.source is Source.RULE:
                log.debug("dropping invalid %s candidate", c.entity_type.value)
            else:
                out.append(replace(c, confidence=c.confidence * self.penalty))
        return out


# ── Pass 3: context scoring ────────────────────────────────────────

class Effect(str, Enum):
    PROMOTE = "promote"
    DEMOTE = "demote"
    SUPPRESS = "suppress"


@dataclass(frozen=True)
class ContextRule:
    """Keywords found shortly before a candidate adjust its confidence."""
    name: str
    entity_types: frozenset[EntityType]
    keywords: tuple[str, ...]
    effect: Effect
    weight: float = 0.0
    window: int | None = None      # None → the pass default
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        alternation = "|".join(re.escape(k) for k in self.keywords)
        object.__setattr__(self, "_regex", re.compile(rf"(?<!\w)(?:{alternation})", re.IGNORECASE))

    def matches(self, text: str, candidate: Candidate, default_window: int) -> bool:
        window = self.window if self.window is not None else default_window
        lo = max(0, candidate.start - window)
        # the first few characters of the candidate count as context too
        return bool(self._regex.search(text, lo, min(len(text), candidate.start + 10)))


_PHONE = frozenset({EntityType.PHONE})

DEFAULT_CONTEXT_POLICY: tuple[ContextRule, ...] = (
    ContextRule(
        "product_code", _PHONE,
        ("art-", "sku-", "prod-", "ref-", "code-", "item-", "cat-",
         "model:", "product:", "serial:", "part:", "artikel", "article"),
        Effect.SUPPRESS, window=12,
    ),
    ContextRule(
        "phone_label", _PHONE,
        ("phone", "tel", "tél", "téléphone", "telefon", "telephone", "mobile",
         "natel", "portable", "handy", "fax", "cell"),
        Effect.PROMOTE, 0.15,
    ),
    ContextRule(
        "order_reference", _PHONE,
        ("order", "invoice", "facture", "rechnung", "commande", "bestellung"),
        Effect.DEMOTE, 0.2, window=30,
    ),
    ContextRule(
        "iban_label", frozenset({EntityType.BANK_ACCOUNT, EntityType.POSTAL_ACCOUNT}),
        ("iban", "compte", "konto", "account", "bank", "banque", "ccp", "pc"),
        Effect.PROMOTE, 0.1,
    ),
    ContextRule(
        "avs_label", frozenset({EntityType.NATIONAL_ID}),
        ("avs", "ahv", "nss", "sozialversicherung", "assurance sociale", "social security"),
        Effect.PROMOTE, 0.1,
    ),
    ContextRule(
        "birth_date", frozenset({EntityType.DATE}),
        ("né le", "née le", "geboren", "born", "date de naissance", "geburtsdatum", "dob"),
        Effect.PROMOTE, 0.2,
    ),
    ContextRule(
        "contract_label", frozenset({EntityType.CONTRACT_REF}),
        ("contrat", "vertrag", "contract", "police", "policy", "dossier", "référence", "ref"),
        Effect.PROMOTE, 0.2,
    ),
)


class ContextScoringPass(DetectionPass):
    """Adjust confidence from keywords in a window before each candidate.

    The policy is a plain table and can be replaced per pipeline.
    Candidates pushed below ``floor`` are removed.
    """
    name = "context_scoring"
    order = 30

    def __init__(
        self,
        policy: tuple[ContextRule, ...] = DEFAULT_CONTEXT_POLICY,
        *,
        window: int = DEFAULT_CONTEXT_WINDOW,
        floor: float = DEFAULT_HIGH_RECALL_FLOOR,
    ) -> None:
        self.policy = policy
        self.window = window
        self.floor = floor

    async def execute(self, text, candidates, context):
        out: list[Candidate] = []
        for c in candidates:
            if not c.has_span:
                out.append(c)
                continue
            confidence = c.confidence
            suppressed = False
            for rule in self.policy:
                if c.entity_type not in rule.entity_types:
                    continue
                if not rule.matches(text, c, self.window):
                    continue
                if rule.effect is Effect.SUPPRESS:
                    suppressed = True
                    break
                if rule.effect is Effect.PROMOTE:
                    confidence += rule.weight
                else:
                    confidence -= rule.weight
            if suppressed:
                log.debug("suppressed %s candidate by context", c.entity_type.value)
                continue
            confidence = max(0.0, min(1.0, confidence))
            if confidence < self.floor:
                continue
            out.append(c if confidence == c.confidence else replace(c, confidence=confidence))
        return out


def default_passes(
    registry: RuleRegistry,
    recognizer: RecognizerAdapter | None = None,
    *,
    high_recall_floor: float = DEFAULT_HIGH_RECALL_FLOOR,
    context_window: int = DEFAULT_CONTEXT_WINDOW,
    fuzzy_budget_ms: float = 100,
    deny_list: DenyList | None = None,
    language: str | None = None,
    link_addresses: bool = True,
    classify_documents: bool = True,
) -> list[DetectionPass]:
    """The standard pass chain.  ``deny_list=None`` uses the built-in entries."""
    from .address import AddressLinkingPass
    from .denylist import DenyListPass
    from .documents import DocumentTypePass

    passes: list[DetectionPass] = [
        HighRecallPass(
            registry, recognizer, FuzzyRematcher(fuzzy_budget_ms), floor=high_recall_floor,
        ),
        DenyListPass(deny_list, language=language),
        FormatValidationPass(registry),
        ContextScoringPass(window=context_window, floor=high_recall_floor),
    ]
    if classify_documents:
        passes.append(DocumentTypePass())
    if link_addresses:
        passes.append(AddressLinkingPass())
    return passes
