"""Tests for token merging and the recognizer adapter."""

import asyncio
from types import SimpleNamespace

import pytest

from conftest import failing_source, tagging_source
from pii_pseudonymizer.errors import RecognizerUnavailableError
from pii_pseudonymizer.recognizer import (
    PresidioTokenSource,
    RecognizerAdapter,
    RetryPolicy,
    merge_tokens,
)
from pii_pseudonymizer.types import EntityType


def tok(entity, word, score=0.95, start=None, end=None):
    t = {"entity": entity, "word": word, "score": score}
    if start is not None:
        t.update(start=start, end=end)
    return t


# ── Merge rule ───────────────────────────────────────────────────────

def test_subword_tokens_merge():
    merged = merge_tokens([
        tok("B-PER", "Hans", 0.99, 0, 4),
        tok("I-PER", "Mü", 0.98, 5, 7),
        tok("I-PER", "##ller", 0.97, 7, 11),
    ])
    assert len(merged) == 1
    assert merged[0].entity_type is EntityType.PERSON
    assert merged[0].text == "HansMüller"
    assert (merged[0].start, merged[0].end) == (0, 11)
    assert merged[0].score == pytest.approx(0.98)


def test_type_change_ends_merge():
    merged = merge_tokens([tok("B-PER", "John"), tok("I-ORG", "Acme")])
    assert [(m.entity_type, m.text) for m in merged] == [
        (EntityType.PERSON, "John"),
        (EntityType.ORGANIZATION, "Acme"),
    ]


def test_low_confidence_token_ends_merge():
    merged = merge_tokens([
        tok("B-PER", "Anna", 0.9),
        tok("I-PER", "von", 0.3),
        tok("I-PER", "Muster", 0.9),
    ])
    assert [m.text for m in merged] == ["Anna", "Muster"]


def test_floor_is_configurable():
    tokens = [tok("B-PER", "Anna", 0.9), tok("I-PER", "Muster", 0.4)]
    assert [m.text for m in merge_tokens(tokens)] == ["Anna"]
    assert [m.text for m in merge_tokens(tokens, floor=0.3)] == ["AnnaMuster"]


def test_begin_tag_starts_new_entity():
    merged = merge_tokens([tok("B-PER", "Anna"), tok("B-PER", "Marc")])
    assert [m.text for m in merged] == ["Anna", "Marc"]


def test_begin_tag_on_subword_continues():
    merged = merge_tokens([tok("B-LOC", "Lau"), tok("B-LOC", "##sanne")])
    assert [m.text for m in merged] == ["Lausanne"]


def test_punctuation_stripped_hyphen_apostrophe_kept():
    merged = merge_tokens([tok("B-PER", "Jean-Luc"), tok("I-PER", "O'Brien,")])
    assert merged[0].text == "Jean-LucO'Brien"


def test_empty_merge_dropped():
    assert merge_tokens([tok("B-PER", ","), tok("I-PER", ".")]) == []


def test_unknown_labels_ignored():
    merged = merge_tokens([tok("B-MISC", "Swiss"), tok("O", "said"), tok("B-LOC", "Bern")])
    assert [(m.entity_type, m.text) for m in merged] == [(EntityType.LOCATION, "Bern")]


def test_labels_without_prefix():
    merged = merge_tokens([{"entity_group": "PER", "word": "Hans", "score": 0.9}])
    assert merged[0].entity_type is EntityType.PERSON


# ── Adapter ──────────────────────────────────────────────────────────

def test_adapter_recognize_async():
    adapter = RecognizerAdapter(tagging_source([("Hans Müller", "PER")]))
    merged = asyncio.run(adapter.recognize("Meeting with Hans Müller today"))
    assert [(m.text, m.start, m.end) for m in merged] == [("HansMüller", 13, 24)]


def test_adapter_failure_hides_input_text():
    adapter = RecognizerAdapter(failing_source)
    with pytest.raises(RecognizerUnavailableError) as exc_info:
        adapter.recognize_sync("secret Hans Müller")
    assert "Hans" not in str(exc_info.value)
    assert exc_info.value.__cause__ is None


def test_adapter_chunks_keep_document_offsets():
    text = "first line\n" * 5 + "Hans Müller\n"
    adapter = RecognizerAdapter(tagging_source([("Hans Müller", "PER")]), chunk_size=20)
    merged = adapter.recognize_sync(text)
    assert len(merged) == 1
    assert text[merged[0].start:merged[0].end] == "Hans Müller"


def test_adapter_model_identifier():
    adapter = RecognizerAdapter(tagging_source([]), model_identifier="fake-ner")
    assert adapter.model_identifier == "fake-ner"
    assert RecognizerAdapter(PresidioTokenSource("fr")).model_identifier == "presidio/fr_core_web_sm"


# ── Retry ────────────────────────────────────────────────────────────

def flaky_source(errors, tokens=()):
    """Raise each of ``errors`` in turn, then return ``tokens``."""
    calls = []

    def source(text):
        calls.append(text)
        if len(calls) <= len(errors):
            raise errors[len(calls) - 1]
        return list(tokens)
    source.calls = calls
    return source


NO_WAIT = RetryPolicy(initial_delay_ms=0)


def test_transient_failure_retried():
    source = flaky_source(
        [RuntimeError("model loading"), ConnectionError("reset")],
        [tok("B-PER", "Hans", 0.99, 0, 4)],
    )
    adapter = RecognizerAdapter(source, retry=NO_WAIT)
    merged = adapter.recognize_sync("Hans wrote")
    assert [m.text for m in merged] == ["Hans"]
    assert len(source.calls) == 3


def test_fatal_failure_not_retried():
    source = flaky_source([RuntimeError("model not found: Hans Müller")])
    adapter = RecognizerAdapter(source, retry=NO_WAIT)
    with pytest.raises(RecognizerUnavailableError) as exc_info:
        adapter.recognize_sync("Hans Müller")
    assert len(source.calls) == 1
    assert "Hans" not in str(exc_info.value)


def test_retries_exhausted():
    source = flaky_source([TimeoutError()] * 5)
    adapter = RecognizerAdapter(source, retry=RetryPolicy(max_retries=2, initial_delay_ms=0))
    with pytest.raises(RecognizerUnavailableError):
        adapter.recognize_sync("Hans")
    assert len(source.calls) == 3


def test_unclassified_failure_not_retried():
    adapter = RecognizerAdapter(failing_source, retry=NO_WAIT)
    with pytest.raises(RecognizerUnavailableError):
        adapter.recognize_sync("Hans")


def test_backoff_delays():
    policy = RetryPolicy(initial_delay_ms=100, max_delay_ms=500)
    assert [policy.delay_ms(i) for i in range(4)] == [100, 200, 400, 500]
    linear = RetryPolicy(initial_delay_ms=100, exponential=False)
    assert [linear.delay_ms(i) for i in range(3)] == [100, 200, 300]


def test_retryable_classification():
    policy = RetryPolicy()
    assert policy.is_retryable(RuntimeError("HTTP 503 Service Unavailable"))
    assert policy.is_retryable(OSError("rate limit exceeded"))
    assert not policy.is_retryable(RuntimeError("HTTP 401 unauthorized"))
    assert not policy.is_retryable(TimeoutError("out of memory"))
    assert not policy.is_retryable(ValueError("bad value"))


# ── Presidio source ─────────────────────────────────────────────────

def test_presidio_spans_become_bio_tokens():
    source = PresidioTokenSource("en")
    source._engine = SimpleNamespace(analyze=lambda **kw: [
        SimpleNamespace(entity_type="PERSON", start=8, end=19, score=0.85),
    ])
    tokens = source("Contact Hans Müller now")
    assert [(t["entity"], t["word"], t["start"]) for t in tokens] == [
        ("B-PERSON", "Hans", 8),
        ("I-PERSON", "Müller", 13),
    ]
    merged = merge_tokens(tokens)
    assert merged[0].text == "HansMüller"
    assert merged[0].entity_type is EntityType.PERSON
