"""Tests for document classification and position adjustments."""

import asyncio

import pytest

from pii_pseudonymizer.documents import (
    DocumentTypePass,
    Zone,
    adjustment_for,
    classify_document,
    detect_language,
    zone_of,
)
from pii_pseudonymizer.passes import DetectionContext
from pii_pseudonymizer.types import Candidate, DocumentType, EntityType, Source

INVOICE = (
    "Facture no 2024-118\n"
    "Date de facture: 12.03.2024\n"
    "Quantité  Prix unitaire  Montant\n"
    "Total: CHF 1'250.00\n"
    "TVA 8.1%: CHF 101.25\n"
    "Net à payer: CHF 1'351.25\n"
    "Veuillez régler la facture dans les 30 jours, échéance le 12.04.2024.\n"
    "Paiement: CCP 12-345678-9\n"
)

LETTER = (
    "Chère Madame,\n"
    "\n"
    "Objet: votre dossier\n"
    "\n"
    "Je vous écris au sujet de votre demande. Veuillez trouver ci-joint les documents.\n"
    "\n"
    "Je vous prie d'agréer, Madame, l'expression de mes meilleures salutations\n"
    "\n"
    "Jean Dupont\n"
)


def cand(entity_type, text, source_text, confidence=0.6):
    start = source_text.index(text)
    return Candidate(entity_type, text, start, start + len(text), confidence, Source.RULE)


# ── Classification ───────────────────────────────────────────────────

def test_invoice():
    result = classify_document(INVOICE)
    assert result.type is DocumentType.INVOICE
    assert result.language == "fr"
    assert result.confidence >= 0.4


def test_letter():
    result = classify_document(LETTER)
    assert result.type is DocumentType.LETTER
    assert result.confidence >= 0.4


def test_plain_text_unknown():
    result = classify_document("AVS: 756.1234.5678.97")
    assert result.type is DocumentType.UNKNOWN


def test_empty_text_unknown():
    assert classify_document("").type is DocumentType.UNKNOWN
    assert classify_document(None).confidence == 0.0


@pytest.mark.parametrize("text, language", [
    ("Sehr geehrte Frau Muster, bitte senden Sie uns die Unterlagen für das Jahr.", "de"),
    ("Gentile cliente, questo è il riepilogo della fattura per il mese.", "it"),
    ("Please find the report and the results for this year.", "en"),
])
def test_detect_language(text, language):
    assert detect_language(text) == language


# ── Zones and adjustments ────────────────────────────────────────────

def test_zones():
    text = "x" * 100
    assert zone_of(Candidate(EntityType.PERSON, "x", 5, 6, 0.5, Source.ML), len(text)) is Zone.HEADER
    assert zone_of(Candidate(EntityType.PERSON, "x", 50, 51, 0.5, Source.ML), len(text)) is Zone.BODY
    assert zone_of(Candidate(EntityType.PERSON, "x", 90, 91, 0.5, Source.ML), len(text)) is Zone.FOOTER


def test_adjustment_table():
    person = Candidate(EntityType.PERSON, "Jean Dupont", 0, 11, 0.5, Source.ML)
    assert adjustment_for(person, DocumentType.LETTER, Zone.FOOTER) == pytest.approx(0.15)
    assert adjustment_for(person, DocumentType.INVOICE, Zone.FOOTER) == 0.0
    labelled = Candidate(EntityType.PERSON, "Jean Dupont", 0, 11, 0.5, Source.RULE, {"rule": "labelled_person"})
    assert adjustment_for(labelled, DocumentType.FORM, Zone.BODY) == pytest.approx(0.1)
    assert adjustment_for(person, DocumentType.FORM, Zone.BODY) == 0.0


# ── Pass ─────────────────────────────────────────────────────────────

def test_invoice_footer_account_promoted():
    account = cand(EntityType.POSTAL_ACCOUNT, "12-345678-9", INVOICE)
    date = cand(EntityType.DATE, "12.03.2024", INVOICE)
    context = DetectionContext(INVOICE)
    out = asyncio.run(DocumentTypePass().execute(INVOICE, [date, account], context))
    assert context.document_type is DocumentType.INVOICE
    assert context.document_confidence >= 0.4
    assert out[0] == date
    assert out[1].confidence == pytest.approx(0.7)


def test_letter_signatory_promoted():
    person = cand(EntityType.PERSON, "Jean Dupont", LETTER)
    out = asyncio.run(DocumentTypePass().execute(LETTER, [person], DetectionContext(LETTER)))
    assert out[0].confidence == pytest.approx(0.75)


def test_confidence_clamped():
    person = cand(EntityType.PERSON, "Jean Dupont", LETTER, confidence=0.95)
    out = asyncio.run(DocumentTypePass().execute(LETTER, [person], DetectionContext(LETTER)))
    assert out[0].confidence == 1.0


def test_low_confidence_classification_leaves_candidates():
    text = "Facture"
    person = Candidate(EntityType.PERSON, "Facture", 0, 7, 0.5, Source.ML)
    context = DetectionContext(text)
    out = asyncio.run(DocumentTypePass().execute(text, [person], context))
    assert out == [person]
    assert context.document_confidence < 0.4
