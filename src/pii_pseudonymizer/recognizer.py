"""Statistical recognizer layer: names, organizations, locations.

A token source is any callable ``text -> list[dict]`` returning
token-classification output, one dict per (sub-word) token::

    {"entity": "B-PER", "word": "Hans", "score": 0.99, "start": 0, "end": 4}

Two sources ship here: a Hugging Face ``transformers`` pipeline and a
Presidio/spaCy analyzer whose spans are re-expressed as B-/I- tokens.
``RecognizerAdapter`` merges tokens into whole entities and runs the
blocking source off the event loop.
"""

from __future__ import annotations
import asyncio
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator

from .errors import RecognizerUnavailableError
from .types import EntityType

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

log = logging.getLogger(__name__)

TokenSource = Callable[[str], "list[dict[str, Any]]"]

DEFAULT_MODEL = "Davlan/distilbert-base-multilingual-cased-ner-hrl"
DEFAULT_MERGE_FLOOR = 0.5
DEFAULT_CHUNK_SIZE = 2000

# Matched against "ExcType: message".  Fatal wins over retryable.
_FATAL_ERRORS = re.compile(
    r"invalid input|model not found|no such file|corrupt|out of memory|\boom\b|"
    r"unsupported|\b(?:400|401|403|404|422)\b",
    re.IGNORECASE,
)
_RETRYABLE_ERRORS = re.compile(
    r"timeout|timed out|network|connection|model not ready|model loading|"
    r"temporar|rate limit|too many requests|service unavailable|\b(?:429|502|503|504)\b",
    re.IGNORECASE,
)

# Model label (prefix stripped) → entity type.  Anything else (MISC, O) is ignored.
LABEL_TYPES: dict[str, EntityType] = {
    "PER": EntityType.PERSON,
    "PERSON": EntityType.PERSON,
    "ORG": EntityType.ORGANIZATION,
    "ORGANIZATION": EntityType.ORGANIZATION,
    "LOC": EntityType.LOCATION,
    "LOCATION": EntityType.LOCATION,
    "GPE": EntityType.LOCATION,
}

# Sub-word / word-boundary markers used by WordPiece, SentencePiece and BPE.
_MARKERS = ("##", "▁", "Ġ")
_NOISE = re.compile(r"[^\w'’\-]")


@dataclass(frozen=True, slots=True)
class MergedEntity:
    """A whole entity assembled from consecutive tokens."""
    entity_type: EntityType
    text: str
    score: float
    start: int | None = None
    end: int | None = None


@dataclass(slots=True)
class _Merge:
    entity_type: EntityType
    parts: list[str] = field(default_factory=list)
    scores: list[float] = field(default_factory=list)
    start: int | None = None
    end: int | None = None

    def add(self, word: str, score: float, start: Any, end: Any) -> None:
        if word:
            self.parts.append(word)
        self.scores.append(score)
        if self.start is None and isinstance(start, int):
            self.start = start
        if isinstance(end, int):
            self.end = end

    def build(self) -> MergedEntity | None:
        text = "".join(self.parts)
        if not text:
            return None
        return MergedEntity(
            entity_type=self.entity_type,
            text=text,
            score=sum(self.scores) / len(self.scores),
            start=self.start,
            end=self.end,
        )


def _clean_word(word: str) -> str:
    for marker in _MARKERS:
        word = word.replace(marker, "")
    return _NOISE.sub("", word)


def merge_tokens(
    tokens: Iterable[dict[str, Any]],
    *,
    floor: float = DEFAULT_MERGE_FLOOR,
) -> list[MergedEntity]:
    """Merge B-/I- tagged sub-word tokens into entities.

    Consecutive tokens of the same type are concatenated.  A type change,
    a token scoring below ``floor``, or a ``B-`` tag on a token that is
    not a ``##`` continuation closes the current entity.  Empty merges
    are dropped.
    """
    merged: list[MergedEntity] = []
    current: _Merge | None = None

    def close() -> None:
        nonlocal current
        if current is not None:
            entity = current.build()
            if entity is not None:
                merged.append(entity)
        current = None

    for token in tokens:
        label = str(token.get("entity") or token.get("entity_group") or "")
        prefix, _, raw_type = label.rpartition("-")
        entity_type = LABEL_TYPES.get(raw_type.upper())
        score = float(token.get("score", 0.0))
        word = str(token.get("word", ""))

        if entity_type is None or score < floor:
            close()
            continue

        begins = prefix.upper() == "B" and not word.startswith("##")
        if current is None or current.entity_type is not entity_type or begins:
            close()
            current = _Merge(entity_type)
        current.add(_clean_word(word), score, token.get("start"), token.get("end"))

    close()
    return merged


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff for transient recognizer failures (model still loading, network)."""
    max_retries: int = 3
    initial_delay_ms: float = 100
    max_delay_ms: float = 5000
    multiplier: float = 2.0
    exponential: bool = True

    def delay_ms(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        if self.exponential:
            delay = self.initial_delay_ms * self.multiplier ** attempt
        else:
            delay = self.initial_delay_ms * (attempt + 1)
        return min(delay, self.max_delay_ms)

    def is_retryable(self, exc: BaseException) -> bool:
        message = f"{type(exc).__name__}: {exc}"
        if _FATAL_ERRORS.search(message):
            return False
        if isinstance(exc, (TimeoutError, ConnectionError)):
            return True
        return bool(_RETRYABLE_ERRORS.search(message))


def _chunks(text: str, size: int) -> Iterator[tuple[int, str]]:
    """Split on line breaks into pieces of at most ``size`` chars (plus one line)."""
    if len(text) <= size:
        yield 0, text
        return
    offset = 0
    buf: list[str] = []
    buf_len = 0
    for line in text.splitlines(keepends=True):
        if buf and buf_len + len(line) > size:
            yield offset, "".join(buf)
            offset += buf_len
            buf, buf_len = [], 0
        buf.append(line)
        buf_len += len(line)
    if buf:
        yield offset, "".join(buf)


class RecognizerAdapter:
    """Wraps a token source: chunking, merging, thread offload, failure mapping.

    Calls are serialized with a lock, so a single adapter (and its loaded
    model) can be shared across documents processed concurrently.
    """

    def __init__(
        self,
        source: TokenSource,
        *,
        merge_floor: float = DEFAULT_MERGE_FLOOR,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        model_identifier: str | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._source = source
        self._lock = threading.Lock()
        self.merge_floor = merge_floor
        self.chunk_size = chunk_size
        self.retry = retry if retry is not None else RetryPolicy()
        self.model_identifier = model_identifier or getattr(
            source, "model_identifier", type(source).__name__
        )

    def _call_source(self, chunk: str) -> list[dict[str, Any]]:
        # Error messages may quote the input; only the class name is logged.
        for attempt in range(self.retry.max_retries + 1):
            try:
                return self._source(chunk)
            except Exception as exc:
                name = type(exc).__name__
                if attempt < self.retry.max_retries and self.retry.is_retryable(exc):
                    delay = self.retry.delay_ms(attempt)
                    log.info("recognizer attempt %d failed (%s), retrying in %.0f ms",
                             attempt + 1, name, delay)
                    time.sleep(delay / 1000)
                    continue
                log.warning("recognizer failed after %d attempt(s): %s", attempt + 1, name)
                raise RecognizerUnavailableError(f"recognizer failed ({name})") from None
        raise RecognizerUnavailableError("recognizer failed")

    def recognize_sync(self, text: str) -> list[MergedEntity]:
        entities: list[MergedEntity] = []
        with self._lock:
            for offset, chunk in _chunks(text, self.chunk_size):
                if not chunk.strip():
                    continue
                tokens = self._call_source(chunk)
                for entity in merge_tokens(tokens, floor=self.merge_floor):
                    if offset and entity.start is not None and entity.end is not None:
                        entity = MergedEntity(
                            entity.entity_type, entity.text, entity.score,
                            entity.start + offset, entity.end + offset,
                        )
                    entities.append(entity)
        log.debug("recognizer produced %d entities", len(entities))
        return entities

    async def recognize(self, text: str) -> list[MergedEntity]:
        """Run recognition in a worker thread so the event loop stays free."""
        return await asyncio.to_thread(self.recognize_sync, text)


# ── Token sources ──────────────────────────────────────────────────

class TransformersTokenSource:
    """Hugging Face token-classification pipeline, loaded on first use."""

    def __init__(self, model_name: str = DEFAULT_MODEL, *, device: int = -1) -> None:
        self.model_name = model_name
        self.device = device
        self._pipeline = None

    @property
    def model_identifier(self) -> str:
        return self.model_name

    def _load(self):
        if self._pipeline is None:
            from transformers import pipeline

            log.info("loading token-classification model %s", self.model_name)
            self._pipeline = pipeline(
                "token-classification",
                model=self.model_name,
                aggregation_strategy="none",
                device=self.device,
            )
        return self._pipeline

    def __call__(self, text: str) -> list[dict[str, Any]]:
        return list(self._load()(text))


# Presidio entity names we forward; others (DATE_TIME, NRP, URL...) are
# covered by pattern rules or out of scope.
PRESIDIO_ENTITIES = ["PERSON", "ORGANIZATION", "LOCATION"]


class PresidioTokenSource:
    """Presidio + spaCy analyzer, with results re-tokenized per word.

    Presidio returns whole spans; each span is split on whitespace and
    emitted as ``B-``/``I-`` tokens so it flows through the same merge
    step as transformer output.
    """

    def __init__(
        self,
        language: str = "en",
        *,
        entities: list[str] | None = None,
        score_threshold: float = 0.35,
    ) -> None:
        self.language = language
        self.entities = entities or PRESIDIO_ENTITIES
        self.score_threshold = score_threshold
        self._engine: AnalyzerEngine | None = None

    @property
    def model_identifier(self) -> str:
        return f"presidio/{self.language}_core_web_sm"

    def _get_engine(self) -> AnalyzerEngine:
        """Lazy-init the Presidio analyzer engine."""
        if self._engine is None:
            from presidio_analyzer import AnalyzerEngine
            from presidio_analyzer.nlp_engine import NlpEngineProvider

            provider = NlpEngineProvider(nlp_configuration={
                "nlp_engine_name": "spacy",
                "models": [{"lang_code": self.language, "model_name": f"{self.language}_core_web_sm"}],
            })
            self._engine = AnalyzerEngine(
                nlp_engine=provider.create_engine(),
                supported_languages=[self.language],
            )
        return self._engine

    def __call__(self, text: str) -> list[dict[str, Any]]:
        results = self._get_engine().analyze(
            text=text,
            language=self.language,
            entities=self.entities,
            score_threshold=self.score_threshold,
        )
        tokens: list[dict[str, Any]] = []
        for r in sorted(results, key=lambda r: r.start):
            for i, m in enumerate(re.finditer(r"\S+", text[r.start:r.end])):
                tokens.append({
                    "entity": f"{'B' if i == 0 else 'I'}-{r.entity_type}",
                    "word": m.group(),
                    "score": r.score,
                    "start": r.start + m.start(),
                    "end": r.start + m.end(),
                })
        return tokens
