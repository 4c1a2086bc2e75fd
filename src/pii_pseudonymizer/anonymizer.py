"""Anonymizer — the main API.  Rules and recognizer, then review, then output.

Usage:
    from pii_pseudonymizer import Anonymizer, AnonymizerConfig, PseudonymSession

    anonymizer = Anonymizer(AnonymizerConfig(use_recognizer=False))
    session = PseudonymSession()              # one per document

    review = anonymizer.detect_sync("AVS: 756.1234.5678.97", session)
    review.edit("e1", "[AVS]")                # optional human review
    result = anonymizer.finalize(review)
    print(result.text)                        # "AVS: [AVS]"
    print(result.mapping.to_json())           # recovery mapping
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from .denylist import DenyList
from .errors import ConfigError, SessionStateError
from .mapping import MappingArtifact, build_artifact
from .passes import default_passes
from .patterns import RuleRegistry, default_registry
from .pipeline import CancellationToken, DetectionPipeline
from .recognizer import (
    DEFAULT_MODEL,
    PresidioTokenSource,
    RecognizerAdapter,
    RetryPolicy,
    TransformersTokenSource,
)
from .review import DocumentReview, build_review
from .session import PseudonymSession, SessionState
from .types import EntityType

log = logging.getLogger(__name__)

BACKENDS = ("transformers", "presidio")


@dataclass
class AnonymizerConfig:
    """Configuration for the Anonymizer."""
    use_recognizer: bool = True            # enable the statistical layer
    recognizer_backend: str = "transformers"
    model_name: str = DEFAULT_MODEL
    language: str = "en"                   # presidio model, per-language deny entries
    device: int = -1                       # transformers device, -1 = CPU
    token_merge_floor: float = 0.5
    high_recall_floor: float = 0.3
    needs_review_threshold: float = 0.7
    context_window: int = 50
    fuzzy_budget_ms: float = 100
    pipeline_timeout: float | None = None  # seconds per document
    # Entity types never reported (e.g. dates)
    skip_types: set[EntityType] = field(default_factory=set)
    # Values that should NEVER be pseudonymized
    allow_list: set[str] = field(default_factory=set)
    # Extra deny-list entries: {"global": [...], "by_type": {...}, "by_language": {...}}
    deny_list: dict[str, Any] = field(default_factory=dict)
    use_default_deny_list: bool = True
    link_addresses: bool = True
    classify_documents: bool = True
    recognizer_retries: int = 3
    retry_delay_ms: float = 100

    def validate(self) -> None:
        if self.recognizer_backend not in BACKENDS:
            raise ConfigError(f"unknown recognizer backend: {self.recognizer_backend}")
        for name in ("token_merge_floor", "high_recall_floor", "needs_review_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1]")
        if self.context_window < 0:
            raise ConfigError("context_window must be >= 0")
        if self.fuzzy_budget_ms <= 0:
            raise ConfigError("fuzzy_budget_ms must be > 0")
        if self.pipeline_timeout is not None and self.pipeline_timeout <= 0:
            raise ConfigError("pipeline_timeout must be > 0")
        if self.recognizer_retries < 0:
            raise ConfigError("recognizer_retries must be >= 0")
        if self.retry_delay_ms < 0:
            raise ConfigError("retry_delay_ms must be >= 0")
        build_deny_list(self)


@dataclass(slots=True)
class AnonymizedDocument:
    """Final output for one document."""
    text: str
    mapping: MappingArtifact
    review: DocumentReview


def build_recognizer(config: AnonymizerConfig) -> RecognizerAdapter:
    if config.recognizer_backend == "presidio":
        source = PresidioTokenSource(config.language)
    else:
        source = TransformersTokenSource(config.model_name, device=config.device)
    retry = RetryPolicy(max_retries=config.recognizer_retries, initial_delay_ms=config.retry_delay_ms)
    return RecognizerAdapter(source, merge_floor=config.token_merge_floor, retry=retry)


def build_deny_list(config: AnonymizerConfig) -> DenyList:
    base = DenyList.default() if config.use_default_deny_list else None
    return DenyList.from_dict(config.deny_list, base=base)


class Anonymizer:
    """Hybrid detector plus pseudonymizer.

    The instance holds only configuration, the rule registry and the
    (lazily loaded) recognizer; all per-document state lives in the
    ``PseudonymSession`` passed to ``detect``.
    """

    def __init__(
        self,
        config: AnonymizerConfig | None = None,
        *,
        registry: RuleRegistry | None = None,
        recognizer: RecognizerAdapter | None = None,
        pipeline: DetectionPipeline | None = None,
    ) -> None:
        self.config = config or AnonymizerConfig()
        self.config.validate()
        self.registry = registry or default_registry()
        if recognizer is None and self.config.use_recognizer:
            recognizer = build_recognizer(self.config)
        self.recognizer = recognizer
        self.pipeline = pipeline or DetectionPipeline(default_passes(
            self.registry,
            self.recognizer,
            high_recall_floor=self.config.high_recall_floor,
            context_window=self.config.context_window,
            fuzzy_budget_ms=self.config.fuzzy_budget_ms,
            deny_list=build_deny_list(self.config),
            language=self.config.language,
            link_addresses=self.config.link_addresses,
            classify_documents=self.config.classify_documents,
        ))

    @property
    def model_identifier(self) -> str | None:
        return self.recognizer.model_identifier if self.recognizer is not None else None

    async def detect(
        self,
        text: str,
        session: PseudonymSession | None = None,
        *,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> DocumentReview:
        """Detect PII and assign pseudonyms.  Returns a reviewable result.

        Pseudonyms are only assigned once the whole pipeline has
        finished, so a cancelled or timed-out run leaves the session
        untouched.
        """
        session = session if session is not None else PseudonymSession()
        if session.state is not SessionState.INGESTED:
            raise SessionStateError("session already holds a document")
        text = text if isinstance(text, str) else ""

        detection = await self.pipeline.run(
            text,
            cancel=cancel,
            timeout=timeout if timeout is not None else self.config.pipeline_timeout,
        )
        detection.candidates = [
            c for c in detection.candidates
            if c.entity_type not in self.config.skip_types
            and c.text not in self.config.allow_list
        ]
        review = build_review(
            text, session, detection,
            needs_review_threshold=self.config.needs_review_threshold,
        )
        session.mark_detected()
        if detection.ml_skipped:
            log.warning("session %s: recognizer skipped, rule-based results only", session.session_id)
        return review

    def detect_sync(self, text: str, session: PseudonymSession | None = None, **kwargs) -> DocumentReview:
        return asyncio.run(self.detect(text, session, **kwargs))

    def finalize(self, review: DocumentReview) -> AnonymizedDocument:
        """Render the approved selection and export the mapping.  Once per session."""
        session = review.session
        if session.state not in (SessionState.DETECTED, SessionState.REVIEWED):
            raise SessionStateError(f"cannot finalize a session in state {session.state.value}")

        replacements = review.replacements()
        methods = ["rules"]
        if self.recognizer is not None and not review.detection.ml_skipped:
            methods.append("recognizer")
        methods.extend(self.pipeline.pass_names)

        artifact = build_artifact(
            replacements,
            model_identifier=self.model_identifier if "recognizer" in methods else None,
            detection_methods=methods,
        )
        text = review.render()
        session.mark_finalized()
        log.info("session %s finalized with %d replacements", session.session_id, len(replacements))
        return AnonymizedDocument(text=text, mapping=artifact, review=review)

    async def anonymize(
        self,
        text: str,
        session: PseudonymSession | None = None,
        **kwargs,
    ) -> AnonymizedDocument:
        """Detect and finalize in one go, accepting every detection."""
        review = await self.detect(text, session, **kwargs)
        return self.finalize(review)

    def anonymize_sync(self, text: str, session: PseudonymSession | None = None, **kwargs) -> AnonymizedDocument:
        return asyncio.run(self.anonymize(text, session, **kwargs))
