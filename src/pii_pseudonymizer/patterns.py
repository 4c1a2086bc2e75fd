"""Rule-based pattern matchers for structured PII.

Rules live in an explicit ``RuleRegistry`` so several independently
configured registries (per jurisdiction, per test) can coexist.  Each
rule is (type, pattern, validator); a raw hit is kept only when its
validator accepts it.  Masked rules catch partially redacted values
(``756.XXXX.XXXX.12``, ``+41 21 XXX XX 37``) and are accepted by form
alone, provided at least one placeholder group is present.

All patterns avoid nested or unbounded overlapping quantifiers.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Iterator

from .types import Candidate, EntityType, Source
from .validators import (
    Validator,
    is_valid_avs,
    is_valid_date,
    is_valid_email,
    is_valid_eu_vat,
    is_valid_iban,
    is_valid_person_name,
    is_valid_phone,
    is_valid_postal_locality,
    is_valid_uid,
)

log = logging.getLogger(__name__)

MIN_MATCH_LENGTH = 3

# A masked hit must actually contain a placeholder group.
_PLACEHOLDER = re.compile(r"\*|[Xx]{2,}")


@dataclass(frozen=True, slots=True)
class PatternRule:
    """One detection rule."""
    name: str
    entity_type: EntityType
    pattern: re.Pattern
    validator: Validator | None = None
    confidence: float = 0.7
    masked: bool = False
    group: int = 0            # capture group holding the value (0 = whole match)


class RuleRegistry:
    """Ordered collection of pattern rules."""

    __slots__ = ("_rules",)

    def __init__(self, rules: list[PatternRule] | None = None) -> None:
        self._rules: list[PatternRule] = list(rules or [])

    def register(self, rule: PatternRule) -> None:
        if any(r.name == rule.name for r in self._rules):
            raise ValueError(f"rule already registered: {rule.name}")
        self._rules.append(rule)

    def unregister(self, name: str) -> None:
        self._rules = [r for r in self._rules if r.name != name]

    def get(self, name: str) -> PatternRule | None:
        for rule in self._rules:
            if rule.name == name:
                return rule
        return None

    def __iter__(self) -> Iterator[PatternRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def entity_types(self) -> set[EntityType]:
        return {r.entity_type for r in self._rules}

    def scan(self, text: str) -> list[Candidate]:
        """Run every rule over the text.  Overlaps are left to the resolver."""
        if not isinstance(text, str) or not text:
            return []
        found: list[Candidate] = []
        for rule in self._rules:
            for m in rule.pattern.finditer(text):
                value = m.group(rule.group)
                if value is None or len(value.strip()) < MIN_MATCH_LENGTH:
                    continue
                if not _accepts(rule, value):
                    continue
                found.append(Candidate(
                    entity_type=rule.entity_type,
                    text=value,
                    start=m.start(rule.group),
                    end=m.end(rule.group),
                    confidence=rule.confidence,
                    source=Source.RULE,
                    metadata={"rule": rule.name, "masked": rule.masked},
                ))
        found.sort(key=lambda c: (c.start, -c.priority))
        return found


def _accepts(rule: PatternRule, value: str) -> bool:
    if rule.masked:
        return bool(_PLACEHOLDER.search(value))
    if rule.validator is None:
        return True
    try:
        return rule.validator(value)
    except Exception as exc:  # a broken custom validator drops this hit only
        log.debug("validator for rule %s failed (%s)", rule.name, type(exc).__name__)
        return False


# ── Default Swiss / EU rule set ────────────────────────────────────

_SEP = r"[ \-]?"
_MASK4 = r"(?:\d{4}|[Xx]{4}|\*{4})"
_MASK3 = r"(?:\d{3}|[Xx]{3}|\*{3})"
_MASK2 = r"(?:\d{2}|[Xx]{2}|\*{2})"
_UPPER = "A-ZÀ-ÖØ-Ý"
_LOWER = "a-zà-öø-ÿ"
_LETTER = "A-Za-zÀ-ÖØ-öø-ÿ"
_NAME_WORD = rf"[{_UPPER}][{_LOWER}'\-]+"
_CANTONS = (
    "AG|AI|AR|BE|BL|BS|FR|GE|GL|GR|JU|LU|NE|NW|OW|SG|SH|SO|SZ|TG|TI|UR|VD|VS|ZG|ZH"
)
_EU_VAT_PREFIXES = (
    "AT|BE|BG|CY|CZ|DE|DK|EE|EL|ES|FI|FR|HR|HU|IE|IT|LT|LU|LV|MT|NL|PL|PT|RO|SE|SI|SK"
)


def _rules() -> list[PatternRule]:
    return [
        # IBAN: compact or grouped by four, any country
        PatternRule(
            "iban", EntityType.BANK_ACCOUNT,
            re.compile(
                rf"\b[A-Z]{{2}}\d{{2}}(?:{_SEP}[A-Z0-9]{{4}}){{2,7}}(?:{_SEP}[A-Z0-9]{{1,3}})?\b"
            ),
            is_valid_iban, confidence=0.95,
        ),
        PatternRule(
            "iban_masked", EntityType.BANK_ACCOUNT,
            re.compile(
                rf"\b[A-Z]{{2}}\d{{2}}(?:{_SEP}[A-Z0-9*]{{4}}){{2,7}}(?:{_SEP}[A-Z0-9*]{{1,3}})?(?![\w*])"
            ),
            masked=True, confidence=0.6,
        ),

        # AVS / AHV: 756.1234.5678.97
        PatternRule(
            "avs", EntityType.NATIONAL_ID,
            re.compile(r"\b756\.\d{4}\.\d{4}\.\d{2}\b"),
            is_valid_avs, confidence=0.95,
        ),
        PatternRule(
            "avs_compact", EntityType.NATIONAL_ID,
            re.compile(r"\b756\d{10}\b"),
            is_valid_avs, confidence=0.9,
        ),
        PatternRule(
            "avs_masked", EntityType.NATIONAL_ID,
            re.compile(rf"\b756\.{_MASK4}\.{_MASK4}\.{_MASK2}(?![\w*])"),
            masked=True, confidence=0.6,
        ),

        PatternRule(
            "email", EntityType.EMAIL,
            re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b"),
            is_valid_email, confidence=0.95,
        ),
        PatternRule(
            "email_masked", EntityType.EMAIL,
            re.compile(
                r"\b[A-Za-z0-9._%+\-]{0,32}\*{2,}[A-Za-z0-9._%+\-]{0,32}@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b"
            ),
            masked=True, confidence=0.6,
        ),

        # Legacy Swiss postal / bank account: 12-345678-9
        PatternRule(
            "postal_account", EntityType.POSTAL_ACCOUNT,
            re.compile(r"\b\d{2}-\d{5,6}-\d\b"),
            confidence=0.7,
        ),

        PatternRule(
            "che_uid", EntityType.TAX_ID,
            re.compile(r"\bCHE-?\d{3}\.?\d{3}\.?\d{3}(?: ?(?:MWST|TVA|IVA))?\b"),
            is_valid_uid, confidence=0.95,
        ),
        PatternRule(
            "eu_vat", EntityType.TAX_ID,
            re.compile(rf"\b(?:{_EU_VAT_PREFIXES})U?[0-9A-Z]{{8,12}}\b"),
            is_valid_eu_vat, confidence=0.9,
        ),

        PatternRule(
            "passport", EntityType.DOCUMENT_ID,
            re.compile(r"\b[A-Z]\d{7}\b"),
            confidence=0.6,
        ),
        PatternRule(
            "license_plate", EntityType.DOCUMENT_ID,
            re.compile(rf"\b(?:{_CANTONS}) ?\d{{2,6}}\b"),
            confidence=0.45,
        ),

        # Phone: Swiss national/international, then generic international
        # (up to six groups, as in "+33 6 12 34 56 78")
        PatternRule(
            "phone", EntityType.PHONE,
            re.compile(
                r"(?<![\d+])(?:"
                r"(?:\+41|0041|0)[ \-]?\(?\d{2}\)?[ \-]?\d{3}[ \-]?\d{2}[ \-]?\d{2}"
                r"|(?:\+|00)\d{1,3}[ \-]?\(?\d{1,4}\)?[ \-]?\d{1,4}[ \-]?\d{1,4}(?:[ \-]?\d{1,4}){0,2}"
                r")(?!\d)"
            ),
            is_valid_phone, confidence=0.8,
        ),
        PatternRule(
            "phone_masked", EntityType.PHONE,
            re.compile(
                rf"(?<![\d+])(?:\+41|0041|0)[ \-]?\(?\d{{2}}\)?[ \-]?{_MASK3}[ \-]?{_MASK2}[ \-]?{_MASK2}(?![\d*])"
            ),
            masked=True, confidence=0.6,
        ),

        PatternRule(
            "date", EntityType.DATE,
            re.compile(r"\b(?:0?[1-9]|[12]\d|3[01])[./](?:0?[1-9]|1[0-2])[./](?:19|20)\d{2}\b"),
            is_valid_date, confidence=0.6,
        ),
        PatternRule(
            "date_iso", EntityType.DATE,
            re.compile(r"\b(?:19|20)\d{2}-(?:0[1-9]|1[0-2])-(?:0[1-9]|[12]\d|3[01])\b"),
            is_valid_date, confidence=0.6,
        ),

        PatternRule(
            "street_address", EntityType.ADDRESS,
            re.compile(
                r"\b(?i:rue|route|chemin|ch\.|avenue|av\.|boulevard|bd|place|pl\.|"
                r"impasse|allée|quai|sentier|strasse|str\.|gasse|weg|platz|via|viale)"
                rf"(?: de la| de l'| d'| d[eu]s?)?[ ]+[{_UPPER}][{_LETTER}'\-]{{0,30}}"
                rf"(?: [{_LETTER}][{_LETTER}'\-]{{0,30}}){{0,3}}[ ]+\d{{1,4}}[a-zA-Z]?\b"
            ),
            confidence=0.7,
        ),
        PatternRule(
            "street_address_de", EntityType.ADDRESS,
            re.compile(
                rf"\b[{_UPPER}][{_LOWER}]{{1,30}}(?:strasse|gasse|weg|platz|ring|allee)"
                r"[ ]+\d{1,4}[a-zA-Z]?\b"
            ),
            confidence=0.7,
        ),
        PatternRule(
            "postal_locality", EntityType.ADDRESS,
            re.compile(rf"\b(?:CH-)?[1-9]\d{{3}}[ ]+{_NAME_WORD}(?:[ \-]{_NAME_WORD})?\b"),
            is_valid_postal_locality, confidence=0.6,
        ),

        PatternRule(
            "company", EntityType.ORGANIZATION,
            re.compile(
                r"\b(?!(?:Contact|Client|Kunde|Chez|Bei|Pour|For|Von|Par)\b)"
                rf"[{_UPPER}][{_LETTER}&'\-]+(?: [{_UPPER}][{_LETTER}&'\-]+){{0,3}}"
                r" (?:SA|AG|GmbH|Sàrl|SARL|Ltd|Inc|Corp|SAS|EURL)\b"
            ),
            confidence=0.65,
        ),

        # Names introduced by a label: "Contact Jean Dupont", "Herr Hans Müller"
        PatternRule(
            "labelled_person", EntityType.PERSON,
            re.compile(
                r"\b(?:Contact|Référence|Reference|Madame|Monsieur|Mme|M\.|Herr|Frau|Mr\.?|Mrs\.?|Ms\.?)"
                rf"[ :]+({_NAME_WORD}(?: {_NAME_WORD}){{1,3}})"
            ),
            is_valid_person_name, confidence=0.6, group=1,
        ),

        PatternRule(
            "contract_labelled", EntityType.CONTRACT_REF,
            re.compile(
                r"\b(?i:contrat|vertrag|contract|police|policy|dossier)"
                r"(?:[ ]?(?i:n°|no\.?|nr\.?|number|numéro))?[ :]+([A-Z0-9][A-Z0-9/\-]{4,20})\b"
            ),
            confidence=0.6, group=1,
        ),
        PatternRule(
            "contract_number", EntityType.CONTRACT_REF,
            re.compile(r"\b\d{2,3}'?\d{3}'?\d{3}\b"),
            confidence=0.45,
        ),
    ]


def default_registry() -> RuleRegistry:
    """A fresh registry with the built-in Swiss/EU rules."""
    return RuleRegistry(_rules())
