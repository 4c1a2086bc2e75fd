"""YAML/dict config loader for pii-pseudonymizer.

Supports loading from a YAML file or a plain dict (for embedding in a
larger application config).

Example YAML:

    pii_pseudonymizer:
      recognizer:
        enabled: true
        backend: transformers     # "transformers" or "presidio"
        model: Davlan/distilbert-base-multilingual-cased-ner-hrl
        language: en
        merge_floor: 0.5
        retries: 3               # transient failures only
        retry_delay_ms: 100
      thresholds:
        high_recall: 0.3
        needs_review: 0.7
      context_window: 50
      fuzzy_budget_ms: 100
      pipeline_timeout: 30
      skip_types:
        - DATE
      allow_list:
        - info@example.com
      deny_list:
        use_defaults: true
        global: [Montant, Betrag]
        by_type:
          PERSON: [Beilage]
      address_linking: true
      document_classification: true
"""

from __future__ import annotations
from pathlib import Path
from typing import Any

from .anonymizer import Anonymizer, AnonymizerConfig
from .errors import ConfigError
from .recognizer import DEFAULT_MODEL
from .types import EntityType


def _entity_types(names: list[str]) -> set[EntityType]:
    try:
        return {EntityType(str(n).upper()) for n in names}
    except ValueError:
        raise ConfigError("unknown entity type in skip_types") from None


def load_config(data: dict[str, Any] | None) -> AnonymizerConfig:
    """Build an AnonymizerConfig from a dict (YAML or inline)."""
    data = data or {}
    # Support nested under "pii_pseudonymizer" key or flat
    if "pii_pseudonymizer" in data:
        data = data["pii_pseudonymizer"] or {}

    recognizer = data.get("recognizer", {}) or {}
    thresholds = data.get("thresholds", {}) or {}
    deny_list = data.get("deny_list", {}) or {}
    if not isinstance(deny_list, dict):
        raise ConfigError("deny_list must be a mapping")

    config = AnonymizerConfig(
        use_recognizer=recognizer.get("enabled", True),
        recognizer_backend=recognizer.get("backend", "transformers"),
        model_name=recognizer.get("model", DEFAULT_MODEL),
        language=recognizer.get("language", "en"),
        device=recognizer.get("device", -1),
        token_merge_floor=float(recognizer.get("merge_floor", 0.5)),
        high_recall_floor=float(thresholds.get("high_recall", 0.3)),
        needs_review_threshold=float(thresholds.get("needs_review", 0.7)),
        context_window=int(data.get("context_window", 50)),
        fuzzy_budget_ms=float(data.get("fuzzy_budget_ms", 100)),
        pipeline_timeout=data.get("pipeline_timeout"),
        skip_types=_entity_types(data.get("skip_types", []) or []),
        allow_list=set(data.get("allow_list", []) or []),
        deny_list=deny_list,
        use_default_deny_list=bool(deny_list.get("use_defaults", True)),
        link_addresses=bool(data.get("address_linking", True)),
        classify_documents=bool(data.get("document_classification", True)),
        recognizer_retries=int(recognizer.get("retries", 3)),
        retry_delay_ms=float(recognizer.get("retry_delay_ms", 100)),
    )
    config.validate()
    return config


def load_from_yaml(path: str | Path) -> AnonymizerConfig:
    """Load config from a YAML file."""
    import yaml
    with open(path, encoding="utf-8") as f:
        return load_config(yaml.safe_load(f))


def create_anonymizer(config: dict[str, Any] | AnonymizerConfig | None = None) -> Anonymizer:
    """Create a fully configured Anonymizer from a config dict."""
    if not isinstance(config, AnonymizerConfig):
        config = load_config(config)
    return Anonymizer(config)
