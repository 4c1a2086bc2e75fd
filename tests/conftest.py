import os
import re
import sys
import time

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from pii_pseudonymizer import Anonymizer, AnonymizerConfig
from pii_pseudonymizer.recognizer import RecognizerAdapter


def tagging_source(names, *, score=0.95, first_only=True):
    """Token source that tags the given (name, label) pairs word by word."""
    def source(text):
        tokens = []
        for name, label in names:
            matches = list(re.finditer(re.escape(name), text))
            if first_only:
                matches = matches[:1]
            for m in matches:
                for i, w in enumerate(re.finditer(r"\S+", m.group())):
                    tokens.append({
                        "entity": f"{'B' if i == 0 else 'I'}-{label}",
                        "word": w.group(),
                        "score": score,
                        "start": m.start() + w.start(),
                        "end": m.start() + w.end(),
                    })
        tokens.sort(key=lambda t: t["start"])
        return tokens
    return source


def failing_source(text):
    raise RuntimeError(f"model crashed on: {text}")


def slow_source(text):
    time.sleep(0.5)
    return []


@pytest.fixture
def rules_only():
    return Anonymizer(AnonymizerConfig(use_recognizer=False))


@pytest.fixture
def make_anonymizer():
    def factory(source, **config):
        return Anonymizer(
            AnonymizerConfig(**config),
            recognizer=RecognizerAdapter(source, model_identifier="fake-ner"),
        )
    return factory
