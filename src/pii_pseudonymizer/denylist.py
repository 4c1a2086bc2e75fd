"""Deny-list: words that look like entities but never are.

Table headers, invoice vocabulary and short acronyms are the usual
culprits.  Plain strings match the whole candidate text, ignoring case;
compiled patterns are searched in it.  Entries are global, per entity
type or per document language.

Config form (YAML or dict):

    deny_list:
      global: [Montant, Betrag]
      by_type:
        PERSON:
          - {pattern: "^Dr\\.?$", type: regex, flags: i}
      by_language:
        de: [Beilage]
"""

from __future__ import annotations
import logging
import re
from typing import Any, Iterable, Mapping, Union

from .errors import ConfigError
from .passes import DetectionPass
from .types import EntityType

log = logging.getLogger(__name__)

Entry = Union[str, re.Pattern]

DEFAULT_GLOBAL: tuple[str, ...] = (
    # fr
    "Montant", "Libellé", "Description", "Quantité", "Prix", "Total", "Sous-total",
    "TVA", "Rabais", "Réduction", "Référence", "Numéro", "Facture", "Client",
    "Fournisseur", "Désignation", "Unité", "Remise", "HT", "TTC",
    # de
    "Beschreibung", "Betrag", "Menge", "Preis", "Summe", "MwSt", "Zwischensumme",
    "Rabatt", "Referenz", "Nummer", "Rechnung", "Kunde", "Lieferant",
    "Bezeichnung", "Einheit", "Netto", "Brutto",
    # en
    "Amount", "Quantity", "Price", "Subtotal", "Tax", "Discount", "Reference",
    "Number", "Invoice", "Customer", "Supplier", "Unit", "Net", "Gross",
    "Date", "Datum",
)

DEFAULT_BY_TYPE: dict[EntityType, tuple[Entry, ...]] = {
    EntityType.PERSON: (
        re.compile(r"^[A-Z]{2,4}$"),                   # acronyms
        re.compile(r"^\d+$"),
        re.compile(r"^(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)$", re.I),
        re.compile(r"^(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun)$", re.I),
        re.compile(r"^(?:Janv|Févr|Mars|Avr|Mai|Juin|Juil|Août|Sept|Oct|Nov|Déc)$", re.I),
        re.compile(r"^(?:Mär|Okt|Dez)$", re.I),
        re.compile(r"\b(?:Ltd|AG|SA|GmbH|Inc|Corp|LLC|Sàrl|SARL|Cie|KG|OHG|SE|NV|BV|Plc)\.?$", re.I),
        re.compile(
            r"^(?:Via|Viale|Piazza|Corso|Vicolo|Largo|Rue|Avenue|Boulevard|Chemin|Route|"
            r"Place|Allée|Strasse|Straße|Gasse|Weg|Platz|Allee)\b",
            re.I,
        ),
        re.compile(
            r"\b(?:Holding|Group|Technologies|Services|Solutions|Systems|Consulting|"
            r"Partners|Associates|Foundation|Institute|Bank)\s*$",
            re.I,
        ),
        re.compile(r"^(?:Case|Notre|Votre|Services|Gestion|Module|Données|Coordonnées)\s", re.I),
    ),
}

_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


def _parse_entry(entry: Any) -> Entry:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, Mapping) and "pattern" in entry:
        if entry.get("type", "string") != "regex":
            return str(entry["pattern"])
        flags = 0
        for ch in str(entry.get("flags", "")):
            flags |= _FLAGS.get(ch, 0)
        try:
            return re.compile(str(entry["pattern"]), flags)
        except re.error:
            raise ConfigError("invalid deny-list pattern") from None
    raise ConfigError("deny-list entries must be strings or {pattern, type} mappings")


class _Bucket:
    __slots__ = ("words", "patterns")

    def __init__(self) -> None:
        self.words: set[str] = set()
        self.patterns: list[re.Pattern] = []

    def add(self, entry: Entry) -> None:
        if isinstance(entry, str):
            self.words.add(entry.strip().lower())
        else:
            self.patterns.append(entry)

    def matches(self, text: str) -> bool:
        if text.lower() in self.words:
            return True
        return any(p.search(text) for p in self.patterns)


class DenyList:
    """Global, per-type and per-language deny entries."""

    def __init__(
        self,
        global_entries: Iterable[Entry] = (),
        by_type: Mapping[EntityType, Iterable[Entry]] | None = None,
        by_language: Mapping[str, Iterable[Entry]] | None = None,
    ) -> None:
        self._global = _Bucket()
        self._by_type: dict[EntityType, _Bucket] = {}
        self._by_language: dict[str, _Bucket] = {}
        for entry in global_entries:
            self.add(entry)
        for entity_type, entries in (by_type or {}).items():
            for entry in entries:
                self.add(entry, entity_type=entity_type)
        for language, entries in (by_language or {}).items():
            for entry in entries:
                self.add(entry, language=language)

    @classmethod
    def default(cls) -> DenyList:
        return cls(DEFAULT_GLOBAL, DEFAULT_BY_TYPE)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, *, base: DenyList | None = None) -> DenyList:
        """Build from config, on top of ``base`` when given."""
        deny = base.copy() if base is not None else cls()
        data = data or {}
        for entry in data.get("global", []) or []:
            deny.add(_parse_entry(entry))
        for name, entries in (data.get("by_type", {}) or {}).items():
            try:
                entity_type = EntityType(str(name).upper())
            except ValueError:
                raise ConfigError("unknown entity type in deny_list") from None
            for entry in entries or []:
                deny.add(_parse_entry(entry), entity_type=entity_type)
        for language, entries in (data.get("by_language", {}) or {}).items():
            for entry in entries or []:
                deny.add(_parse_entry(entry), language=str(language).lower())
        return deny

    def copy(self) -> DenyList:
        other = DenyList()
        for src, dst in self._pairs(other):
            dst.words |= src.words
            dst.patterns.extend(src.patterns)
        return other

    def _pairs(self, other: DenyList):
        yield self._global, other._global
        for entity_type, bucket in self._by_type.items():
            yield bucket, other._by_type.setdefault(entity_type, _Bucket())
        for language, bucket in self._by_language.items():
            yield bucket, other._by_language.setdefault(language, _Bucket())

    def add(
        self,
        entry: Entry,
        *,
        entity_type: EntityType | None = None,
        language: str | None = None,
    ) -> None:
        if entity_type is not None:
            bucket = self._by_type.setdefault(entity_type, _Bucket())
        elif language is not None:
            bucket = self._by_language.setdefault(language, _Bucket())
        else:
            bucket = self._global
        bucket.add(entry)

    def is_denied(self, text: str, entity_type: EntityType, language: str | None = None) -> bool:
        value = text.strip()
        if not value:
            return False
        if self._global.matches(value):
            return True
        bucket = self._by_type.get(entity_type)
        if bucket is not None and bucket.matches(value):
            return True
        if language is not None:
            bucket = self._by_language.get(language)
            if bucket is not None and bucket.matches(value):
                return True
        return False


class DenyListPass(DetectionPass):
    """Drop candidates whose whole text is on the deny-list."""
    name = "deny_list"
    order = 15

    def __init__(self, deny_list: DenyList | None = None, *, language: str | None = None) -> None:
        self.deny_list = deny_list if deny_list is not None else DenyList.default()
        self.language = language

    async def execute(self, text, candidates, context):
        kept = [
            c for c in candidates
            if not self.deny_list.is_denied(c.text, c.entity_type, self.language)
        ]
        if len(kept) != len(candidates):
            log.debug("deny-list removed %d candidates", len(candidates) - len(kept))
        return kept
