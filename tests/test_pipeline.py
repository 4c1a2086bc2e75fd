"""Tests for the passes and the multi-pass pipeline."""

import asyncio
import re

import pytest

from conftest import failing_source, slow_source, tagging_source
from pii_pseudonymizer.errors import DetectionCancelled, DetectionTimeout
from pii_pseudonymizer.passes import (
    ContextRule,
    ContextScoringPass,
    DetectionPass,
    Effect,
    default_passes,
)
from pii_pseudonymizer.patterns import default_registry
from pii_pseudonymizer.pipeline import CancellationToken, DetectionPipeline
from pii_pseudonymizer.recognizer import RecognizerAdapter
from pii_pseudonymizer.types import DocumentType, EntityType, Source
from pii_pseudonymizer.validators import is_valid_iban


def make_pipeline(source=None):
    recognizer = RecognizerAdapter(source) if source is not None else None
    return DetectionPipeline(default_passes(default_registry(), recognizer))


def types_of(result):
    return [c.entity_type for c in result.candidates]


# ── Scenarios ────────────────────────────────────────────────────────

def test_avs_scenario():
    result = make_pipeline().run_sync("AVS: 756.1234.5678.97")
    ids = result.by_type(EntityType.NATIONAL_ID)
    assert [c.text for c in ids] == ["756.1234.5678.97"]


def test_avs_broken_checksum_scenario():
    result = make_pipeline().run_sync("756.1234.5678.99")
    assert result.by_type(EntityType.NATIONAL_ID) == []


def test_iban_scenario():
    result = make_pipeline().run_sync("IBAN CH93 0076 2011 6238 5295 7")
    accounts = result.by_type(EntityType.BANK_ACCOUNT)
    assert len(accounts) == 1
    assert is_valid_iban(re.sub(r"\s", "", accounts[0].text))
    # the phone-shaped digits inside the IBAN lose to the bank account
    assert result.by_type(EntityType.PHONE) == []


def test_product_code_never_phone():
    result = make_pipeline().run_sync("Article ART-021-627-4137 en stock")
    assert result.by_type(EntityType.PHONE) == []


def test_product_code_is_suppressed_by_context_pass():
    result = make_pipeline().run_sync("Article ART-021-627-4137 en stock")
    passes = {p.name: p for p in result.passes}
    high_recall, context = passes["high_recall"], passes["context_scoring"]
    assert any(c.entity_type is EntityType.PHONE for c in high_recall.candidates)
    assert context.removed == 1


def test_masked_phone_detected():
    result = make_pipeline().run_sync("Tel. +41 21 XXX XX 37")
    phones = result.by_type(EntityType.PHONE)
    assert [c.text for c in phones] == ["+41 21 XXX XX 37"]


def test_phone_keyword_promotes():
    plain = make_pipeline().run_sync("Numéro 021 345 67 89")
    labelled = make_pipeline().run_sync("Téléphone 021 345 67 89")
    assert plain.by_type(EntityType.PHONE)[0].confidence < labelled.by_type(EntityType.PHONE)[0].confidence


def test_french_mobile_scenario():
    result = make_pipeline().run_sync("Tél: +33 6 12 34 56 78")
    assert [c.text for c in result.by_type(EntityType.PHONE)] == ["+33 6 12 34 56 78"]


def test_table_header_tagged_as_person_is_dropped():
    text = "Montant  Total\nJean Dupont  1'250.00"
    source = tagging_source([("Total", "PER"), ("Jean Dupont", "PER"), ("Montant", "PER")])
    result = make_pipeline(source).run_sync(text)
    assert [c.text for c in result.by_type(EntityType.PERSON)] == ["Jean Dupont"]
    deny = next(p for p in result.passes if p.name == "deny_list")
    assert deny.removed == 2


def test_address_block_scenario():
    text = "Contact Jean Dupont\nRue de Lausanne 12\n1003 Lausanne\nSuisse\n"
    result = make_pipeline().run_sync(text)
    (address,) = result.by_type(EntityType.ADDRESS)
    assert address.text == "Rue de Lausanne 12\n1003 Lausanne\nSuisse"
    assert [c.text for c in result.by_type(EntityType.PERSON)] == ["Jean Dupont"]


def test_document_type_reported():
    text = (
        "Facture no 2024-118\n"
        "Quantité  Prix unitaire  Montant\n"
        "Total: CHF 1'250.00\n"
        "Net à payer dans les 30 jours, échéance le 12.04.2024\n"
    )
    result = make_pipeline().run_sync(text)
    assert result.document_type is DocumentType.INVOICE
    assert result.document_confidence > 0.25


# ── Pass mechanics ───────────────────────────────────────────────────

def test_pass_results_report_counts():
    result = make_pipeline().run_sync("Email: jean.dupont@example.ch")
    names = [p.name for p in result.passes]
    assert names == [
        "high_recall", "deny_list", "format_validation",
        "context_scoring", "document_type", "address_linking",
    ]
    high_recall, validation = result.passes[0], result.passes[2]
    assert high_recall.added == 1
    assert high_recall.removed == 0
    assert validation.modified == 1      # confidence boost
    assert all(p.duration_ms >= 0 for p in result.passes)


def test_passes_sorted_by_order():
    class Late(DetectionPass):
        name, order = "late", 99

        async def execute(self, text, candidates, context):
            return candidates

    class Early(DetectionPass):
        name, order = "early", 1

        async def execute(self, text, candidates, context):
            return candidates

    pipeline = DetectionPipeline([Late(), Early()])
    assert pipeline.pass_names == ["early", "late"]
    with pytest.raises(ValueError):
        pipeline.register_pass(Early())
    pipeline.unregister_pass("early")
    assert pipeline.pass_names == ["late"]


def test_failing_pass_keeps_previous_candidates():
    class Broken(DetectionPass):
        name, order = "broken", 25

        async def execute(self, text, candidates, context):
            raise RuntimeError("bad pass")

    pipeline = make_pipeline()
    pipeline.register_pass(Broken())
    result = pipeline.run_sync("Email: jean.dupont@example.ch")
    broken = next(p for p in result.passes if p.name == "broken")
    assert broken.error == "RuntimeError"
    assert types_of(result) == [EntityType.EMAIL]


def test_custom_context_policy():
    policy = (ContextRule("no_emails_here", frozenset({EntityType.EMAIL}), ("noreply",), Effect.SUPPRESS),)
    pipeline = make_pipeline()
    pipeline.unregister_pass("context_scoring")
    pipeline.register_pass(ContextScoringPass(policy))
    assert pipeline.run_sync("noreply: a.b@example.ch").candidates == []
    assert types_of(pipeline.run_sync("write to a.b@example.ch")) == [EntityType.EMAIL]


def test_empty_input():
    result = make_pipeline().run_sync("")
    assert result.candidates == []
    assert result.passes == []
    assert make_pipeline().run_sync(None).candidates == []


def test_idempotent_runs():
    text = "Contact Jean Dupont, AVS 756.1234.5678.97, Tél: +41 21 345 67 89"
    pipeline = make_pipeline()
    assert pipeline.run_sync(text).candidates == pipeline.run_sync(text).candidates


def test_no_overlaps_in_final_set():
    text = (
        "Contact Jean Dupont\nRue de Lausanne 12\n1003 Lausanne\n"
        "IBAN CH93 0076 2011 6238 5295 7\nTél: +41 21 345 67 89\n"
        "Contrat n° 2024-001234, le 12.03.2024"
    )
    found = make_pipeline().run_sync(text).candidates
    for a, b in zip(found, found[1:]):
        assert a.end <= b.start


# ── Recognizer integration ───────────────────────────────────────────

def test_recognizer_hits_expanded_to_all_occurrences():
    text = "Meeting with Hans Müller. Later, HANS MÜLLER signed."
    result = make_pipeline(tagging_source([("Hans Müller", "PER")])).run_sync(text)
    people = result.by_type(EntityType.PERSON)
    assert [c.text for c in people] == ["Hans Müller", "HANS MÜLLER"]
    assert all(c.source is Source.ML for c in people)


def test_rule_and_recognizer_agreement_is_both():
    text = "Contact Hans Müller"
    result = make_pipeline(tagging_source([("Hans Müller", "PER")])).run_sync(text)
    people = result.by_type(EntityType.PERSON)
    assert len(people) == 1
    assert people[0].source is Source.BOTH


def test_degraded_mode_keeps_rules():
    result = make_pipeline(failing_source).run_sync("AVS: 756.1234.5678.97")
    assert result.ml_skipped is True
    assert "RuntimeError" in result.ml_error
    assert types_of(result) == [EntityType.NATIONAL_ID]


# ── Cancellation / timeouts ──────────────────────────────────────────

def test_cancelled_before_start():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(DetectionCancelled):
        make_pipeline().run_sync("AVS: 756.1234.5678.97", cancel=token)


def test_cancelled_between_passes():
    token = CancellationToken()

    class CancelAfterRecall(DetectionPass):
        name, order = "cancel", 15

        async def execute(self, text, candidates, context):
            token.cancel()
            return candidates

    pipeline = make_pipeline()
    pipeline.register_pass(CancelAfterRecall())
    with pytest.raises(DetectionCancelled):
        pipeline.run_sync("AVS: 756.1234.5678.97", cancel=token)


def test_pipeline_timeout():
    with pytest.raises(DetectionTimeout):
        make_pipeline(slow_source).run_sync("AVS: 756.1234.5678.97", timeout=0.05)


def test_concurrent_runs_share_nothing():
    pipeline = make_pipeline()

    async def both():
        return await asyncio.gather(
            pipeline.run("AVS: 756.1234.5678.97"),
            pipeline.run("Email: jean.dupont@example.ch"),
        )

    a, b = asyncio.run(both())
    assert types_of(a) == [EntityType.NATIONAL_ID]
    assert types_of(b) == [EntityType.EMAIL]
