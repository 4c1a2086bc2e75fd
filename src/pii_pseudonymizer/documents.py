"""Document type classification.

Keywords (in the detected language), structural patterns and a look at
the first and last lines score each type; the best one wins when its
confidence clears a floor.  ``DocumentTypePass`` records the result on
the run context and nudges candidates that sit where that kind of
document usually puts them (payment details in an invoice footer, the
signatory at the end of a letter).
"""

from __future__ import annotations
import logging
import math
import re
from dataclasses import dataclass, replace
from enum import Enum

from .passes import DetectionPass
from .types import Candidate, DocumentType, EntityType

log = logging.getLogger(__name__)

MIN_CLASSIFICATION_CONFIDENCE = 0.25
MIN_ADJUST_CONFIDENCE = 0.4
MAX_SCORE = 3.0
STRUCTURE_WEIGHT = 0.15
HEADER_ZONE = 0.2
FOOTER_ZONE = 0.8


@dataclass(frozen=True, slots=True)
class DocumentClassification:
    type: DocumentType
    confidence: float
    language: str


_KEYWORDS: dict[DocumentType, dict[str, tuple[str, ...]]] = {
    DocumentType.INVOICE: {
        "en": ("invoice", "bill", "payment due", "amount due", "subtotal", "total", "tax", "vat",
               "qty", "quantity", "unit price", "invoice number", "invoice date", "due date",
               "payment terms"),
        "fr": ("facture", "montant", "total", "tva", "quantité", "prix unitaire",
               "numéro de facture", "date de facture", "échéance", "règlement", "net à payer",
               "ht", "ttc"),
        "de": ("rechnung", "rechnungsnummer", "betrag", "mwst", "mehrwertsteuer", "gesamtbetrag",
               "menge", "einzelpreis", "rechnungsdatum", "zahlbar", "fällig", "netto", "brutto"),
        "it": ("fattura", "importo", "totale", "iva", "quantità", "prezzo unitario",
               "numero fattura", "data fattura", "scadenza"),
    },
    DocumentType.LETTER: {
        "en": ("dear", "sincerely", "regards", "yours truly", "yours faithfully", "best regards",
               "kind regards", "to whom it may concern", "enclosed", "please find",
               "i am writing", "thank you for", "re:", "subject:"),
        "fr": ("cher", "chère", "madame", "monsieur", "cordialement", "salutations",
               "veuillez agréer", "je vous prie", "meilleures salutations", "bien à vous",
               "ci-joint", "je vous écris", "objet:", "concerne:"),
        "de": ("sehr geehrte", "sehr geehrter", "liebe", "lieber", "mit freundlichen grüssen",
               "mit freundlichen grüßen", "hochachtungsvoll", "beste grüsse", "anbei",
               "betreff:", "betrifft:"),
        "it": ("gentile", "egregio", "caro", "cara", "cordiali saluti", "distinti saluti",
               "cordialmente", "in allegato", "le scrivo", "oggetto:"),
    },
    DocumentType.FORM: {
        "en": ("please fill", "please complete", "check box", "checkbox", "select one",
               "enter your", "your name", "your address", "date of birth", "sign here",
               "required field", "mandatory", "not applicable", "yes/no"),
        "fr": ("veuillez remplir", "cochez", "case à cocher", "sélectionnez", "votre nom",
               "votre adresse", "date de naissance", "champ obligatoire", "facultatif",
               "oui/non", "non applicable"),
        "de": ("bitte ausfüllen", "ankreuzen", "kontrollkästchen", "wählen sie", "ihr name",
               "ihre adresse", "geburtsdatum", "unterschrift", "pflichtfeld", "ja/nein",
               "nicht zutreffend"),
        "it": ("compilare", "casella", "selezionare", "inserire", "data di nascita", "firma",
               "obbligatorio", "facoltativo", "sì/no"),
    },
    DocumentType.CONTRACT: {
        "en": ("agreement", "contract", "parties", "whereas", "hereby", "herein", "clause",
               "terms and conditions", "effective date", "termination", "obligations",
               "warranties", "governing law", "jurisdiction", "binding"),
        "fr": ("contrat", "accord", "parties", "attendu que", "par les présentes", "ci-après",
               "clause", "conditions générales", "date d'entrée en vigueur", "résiliation",
               "obligations", "garanties", "loi applicable", "juridiction"),
        "de": ("vertrag", "vereinbarung", "parteien", "hiermit", "klausel", "paragraph",
               "allgemeine geschäftsbedingungen", "agb", "inkrafttreten", "kündigung",
               "pflichten", "gewährleistung", "anwendbares recht", "gerichtsstand"),
        "it": ("contratto", "accordo", "parti", "premesso", "con la presente", "clausola",
               "condizioni generali", "decorrenza", "risoluzione", "obblighi",
               "legge applicabile", "foro competente"),
    },
    DocumentType.REPORT: {
        "en": ("executive summary", "introduction", "conclusion", "findings", "recommendations",
               "analysis", "methodology", "results", "appendix", "table of contents",
               "abstract", "overview", "background", "key findings"),
        "fr": ("résumé exécutif", "introduction", "conclusion", "résultats", "recommandations",
               "analyse", "méthodologie", "annexe", "table des matières", "sommaire",
               "contexte", "objectifs"),
        "de": ("zusammenfassung", "einleitung", "fazit", "ergebnisse", "empfehlungen",
               "analyse", "methodik", "anhang", "inhaltsverzeichnis", "überblick",
               "hintergrund", "ziele"),
        "it": ("sommario", "introduzione", "conclusione", "risultati", "raccomandazioni",
               "analisi", "metodologia", "allegato", "indice", "panoramica", "contesto",
               "obiettivi"),
    },
}

_STRUCTURE: dict[DocumentType, tuple[re.Pattern, ...]] = {
    DocumentType.INVOICE: (
        re.compile(r"(?:invoice|rechnung|facture)\s*(?:no\.?|nr\.?|#|:)\s*[\w-]+", re.I),
        re.compile(r"(?:total|montant|betrag)\s*[:=]?\s*(?:chf|eur|usd|€|£|\$)?\s*[\d',. ]+", re.I),
        re.compile(r"(?:qty|menge|quantité)\s+(?:unit|preis|prix)", re.I),
        re.compile(r"(?:chf|eur|usd)\s*\d[\d',.]*", re.I),
        re.compile(r"\d+[.,]\d{2}\s*(?:chf|eur|usd|€)", re.I),
    ),
    DocumentType.LETTER: (
        re.compile(r"^(?:dear|sehr geehrte[r]?|cher|chère|madame|monsieur)", re.I | re.M),
        re.compile(r"(?:sincerely|regards|cordialement|grüße|grüssen|salutations)[ \t]*,?[ \t]*$", re.I | re.M),
        re.compile(r"^(?:re:|betreff:|objet:|subject:)", re.I | re.M),
        re.compile(r"(?:enclosed|anbei|ci-joint|in allegato)", re.I),
    ),
    DocumentType.FORM: (
        re.compile(r"\[\s*\]|\(\s*\)|□|☐|☑|☒"),
        re.compile(r"(?:name|nom):\s*_{2,}|_{5,}", re.I),
        re.compile(r"(?:yes|no|oui|non|ja|nein)\s*(?:\[\s*\]|\(\s*\))", re.I),
        re.compile(r"please\s+(?:check|tick|fill|complete)", re.I),
        re.compile(r"\*\s*(?:required|obligatoire|pflichtfeld)", re.I),
    ),
    DocumentType.CONTRACT: (
        re.compile(r"(?:between|entre|zwischen)\s+(?:the\s+)?(?:parties|parteien|les parties)", re.I),
        re.compile(r"(?:article|clause|section)\s+\d+", re.I),
        re.compile(r"(?:whereas|attendu que|in anbetracht)", re.I),
        re.compile(r"(?:hereby|par les présentes|hiermit)\s+(?:agree|conviennent|vereinbaren)", re.I),
    ),
    DocumentType.REPORT: (
        re.compile(r"(?:table\s+of\s+contents|inhaltsverzeichnis|table\s+des\s+matières)", re.I),
        re.compile(r"(?:executive\s+summary|zusammenfassung|résumé)", re.I),
        re.compile(r"^\d+[.)]\s+(?:introduction|methodology|results|conclusion)", re.I | re.M),
        re.compile(r"(?:appendix|anhang|annexe)\s+[a-z\d]", re.I),
        re.compile(r"(?:figure|table|abbildung|tabelle)\s+\d+", re.I),
    ),
}

# (type, pattern over the first lines or the last lines, weight)
_HEAD_BOOSTS = (
    (DocumentType.INVOICE, re.compile(r"invoice|rechnung|facture"), 0.2),
    (DocumentType.LETTER, re.compile(r"dear|sehr geehrte|cher|madame|monsieur"), 0.2),
    (DocumentType.CONTRACT, re.compile(r"(?:between|entre|zwischen).*(?:parties|parteien)"), 0.2),
    (DocumentType.REPORT, re.compile(r"table of contents|inhaltsverzeichnis|table des matières"), 0.25),
)
_TAIL_BOOSTS = (
    (DocumentType.LETTER, re.compile(r"sincerely|regards|grüß|grüss|cordialement|salutations"), 0.15),
)
_EDGE_LINES = 5

_LANGUAGE_WORDS: dict[str, frozenset[str]] = {
    "en": frozenset("the and is are was were have has this that with for your please".split()),
    "fr": frozenset("le la les de du des et est sont vous nous dans pour avec cette votre".split()),
    "de": frozenset("der die das und ist sind ihr ihre wir mit für von bei nach bitte".split()),
    "it": frozenset("il la le di del della e è sono con per nella questo questa".split()),
}
_WORD = re.compile(r"\w+")


def detect_language(text: str) -> str:
    """Most likely of en/fr/de/it from function-word counts; en on a tie."""
    counts = dict.fromkeys(_LANGUAGE_WORDS, 0)
    for word in _WORD.findall(text.lower()):
        for language, words in _LANGUAGE_WORDS.items():
            if word in words:
                counts[language] += 1
    return max(counts, key=lambda k: counts[k])


def _keyword_weight(keyword: str, count: int) -> float:
    length_factor = min(len(keyword) / 8, 1.5)
    count_factor = 1 + math.log2(count + 1) * 0.5
    return 0.08 * length_factor * count_factor


def _count(keyword: str, lowered: str) -> int:
    return len(re.findall(rf"(?<!\w){re.escape(keyword)}(?!\w)", lowered))


def classify_document(text: str, *, min_confidence: float = MIN_CLASSIFICATION_CONFIDENCE) -> DocumentClassification:
    if not isinstance(text, str) or not text.strip():
        return DocumentClassification(DocumentType.UNKNOWN, 0.0, "en")

    lowered = text.lower()
    language = detect_language(text)
    scores = dict.fromkeys(_KEYWORDS, 0.0)

    for doc_type, by_language in _KEYWORDS.items():
        for keyword in by_language.get(language, by_language["en"]):
            n = _count(keyword, lowered)
            if n:
                scores[doc_type] += _keyword_weight(keyword, n)

    for doc_type, patterns in _STRUCTURE.items():
        scores[doc_type] += STRUCTURE_WEIGHT * sum(1 for p in patterns if p.search(text))

    lines = lowered.split("\n")
    head = "\n".join(lines[:_EDGE_LINES])
    tail = "\n".join(lines[-_EDGE_LINES:])
    for doc_type, pattern, weight in _HEAD_BOOSTS:
        if pattern.search(head):
            scores[doc_type] += weight
    for doc_type, pattern, weight in _TAIL_BOOSTS:
        if pattern.search(tail):
            scores[doc_type] += weight

    best = max(scores, key=lambda k: scores[k])
    confidence = min(scores[best] / MAX_SCORE, 1.0)
    if confidence < min_confidence:
        best = DocumentType.UNKNOWN
    return DocumentClassification(best, confidence, language)


# ── Position adjustments ────────────────────────────────────────────

class Zone(str, Enum):
    HEADER = "header"
    BODY = "body"
    FOOTER = "footer"


def zone_of(candidate: Candidate, text_length: int) -> Zone:
    ratio = candidate.start / text_length if text_length else 0.0
    if ratio < HEADER_ZONE:
        return Zone.HEADER
    if ratio > FOOTER_ZONE:
        return Zone.FOOTER
    return Zone.BODY


# document type -> (entity types, zone, adjustment)
_ADJUSTMENTS: dict[DocumentType, tuple[tuple[frozenset[EntityType], Zone, float], ...]] = {
    DocumentType.INVOICE: (
        (frozenset({EntityType.BANK_ACCOUNT, EntityType.POSTAL_ACCOUNT}), Zone.FOOTER, 0.1),
        (frozenset({EntityType.TAX_ID, EntityType.CONTRACT_REF}), Zone.HEADER, 0.1),
    ),
    DocumentType.LETTER: (
        (frozenset({EntityType.PERSON, EntityType.ADDRESS}), Zone.HEADER, 0.15),
        (frozenset({EntityType.PERSON}), Zone.FOOTER, 0.15),
    ),
    DocumentType.CONTRACT: (
        (frozenset({EntityType.PERSON, EntityType.ORGANIZATION}), Zone.HEADER, 0.1),
        (frozenset({EntityType.PERSON}), Zone.FOOTER, 0.15),
    ),
    DocumentType.REPORT: (
        (frozenset({EntityType.PERSON}), Zone.HEADER, 0.15),
    ),
}
FORM_LABELLED_BOOST = 0.1


def adjustment_for(candidate: Candidate, doc_type: DocumentType, zone: Zone) -> float:
    if doc_type is DocumentType.FORM:
        rule = candidate.metadata.get("rule") or ""
        return FORM_LABELLED_BOOST if "labelled" in rule else 0.0
    total = 0.0
    for entity_types, where, weight in _ADJUSTMENTS.get(doc_type, ()):
        if candidate.entity_type in entity_types and zone is where:
            total += weight
    return total


class DocumentTypePass(DetectionPass):
    """Classify the document, then adjust confidence by position."""
    name = "document_type"
    order = 35

    def __init__(self, *, min_confidence: float = MIN_ADJUST_CONFIDENCE) -> None:
        self.min_confidence = min_confidence

    async def execute(self, text, candidates, context):
        classification = classify_document(text)
        context.document_type = classification.type
        context.document_confidence = classification.confidence
        log.debug("document classified as %s (%.2f)", classification.type.value, classification.confidence)

        if classification.type is DocumentType.UNKNOWN or classification.confidence < self.min_confidence:
            return candidates

        out: list[Candidate] = []
        for c in candidates:
            if not c.has_span:
                out.append(c)
                continue
            delta = adjustment_for(c, classification.type, zone_of(c, len(text)))
            if not delta:
                out.append(c)
                continue
            confidence = max(0.0, min(1.0, c.confidence + delta))
            out.append(replace(c, confidence=confidence))
        return out
