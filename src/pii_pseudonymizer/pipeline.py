"""Multi-pass detection pipeline.

    pipeline = DetectionPipeline(default_passes(default_registry()))
    result = await pipeline.run(text)
    for c in result.candidates:
        print(c.entity_type, c.start, c.end)

Passes run one after another; the statistical recognizer (inside the
high-recall pass) is the only awaited call.  Between passes the run
checks an optional cancellation token and an optional deadline.
"""

from __future__ import annotations
import asyncio
import logging
import threading
import time
from typing import Iterable, Mapping

from .errors import DetectionCancelled, DetectionTimeout
from .overlap import resolve_overlaps
from .passes import DetectionContext, DetectionPass
from .types import TYPE_PRIORITY, Candidate, DetectionResult, EntityType, PassResult

log = logging.getLogger(__name__)


class CancellationToken:
    """Caller-held flag checked between pipeline stages.  Thread-safe."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DetectionCancelled("detection cancelled by caller")


class DetectionPipeline:
    """Ordered chain of passes followed by overlap resolution."""

    def __init__(
        self,
        passes: Iterable[DetectionPass] = (),
        *,
        priorities: Mapping[EntityType, int] | None = None,
    ) -> None:
        self._passes: list[DetectionPass] = []
        self.priorities = dict(priorities or TYPE_PRIORITY)
        for p in passes:
            self.register_pass(p)

    def register_pass(self, detection_pass: DetectionPass) -> None:
        if any(p.name == detection_pass.name for p in self._passes):
            raise ValueError(f"pass already registered: {detection_pass.name}")
        self._passes.append(detection_pass)
        self._passes.sort(key=lambda p: p.order)   # stable: equal orders keep insertion order

    def unregister_pass(self, name: str) -> None:
        self._passes = [p for p in self._passes if p.name != name]

    @property
    def passes(self) -> tuple[DetectionPass, ...]:
        return tuple(self._passes)

    @property
    def pass_names(self) -> list[str]:
        return [p.name for p in self._passes]

    async def run(
        self,
        text: str,
        *,
        cancel: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> DetectionResult:
        """Detect PII in one document.

        Raises DetectionCancelled or DetectionTimeout between stages;
        a recognizer failure does not raise but sets ``ml_skipped``.
        """
        started = time.monotonic()
        deadline = started + timeout if timeout is not None else None
        if not isinstance(text, str) or not text.strip():
            return DetectionResult()

        context = DetectionContext(text=text)
        candidates: list[Candidate] = []
        results: list[PassResult] = []

        for p in self._passes:
            _checkpoint(cancel, deadline)
            t0 = time.perf_counter()
            try:
                refined = await _bounded(p.execute(text, list(candidates), context), deadline)
            except (DetectionCancelled, DetectionTimeout):
                raise
            except Exception as exc:
                log.error("pass %s failed (%s), keeping previous candidates", p.name, type(exc).__name__)
                results.append(PassResult(
                    name=p.name,
                    candidates=list(candidates),
                    duration_ms=(time.perf_counter() - t0) * 1000,
                    error=type(exc).__name__,
                ))
                continue
            result = _diff(p.name, candidates, refined, (time.perf_counter() - t0) * 1000)
            log.info(
                "pass %s: +%d -%d ~%d (%.1fms)",
                p.name, result.added, result.removed, result.modified, result.duration_ms,
            )
            results.append(result)
            candidates = refined

        _checkpoint(cancel, deadline)
        final = resolve_overlaps(candidates, self.priorities)
        duration = (time.monotonic() - started) * 1000
        log.info("detected %d entities in %.1fms", len(final), duration)
        return DetectionResult(
            candidates=final,
            passes=results,
            ml_skipped=context.ml_skipped,
            ml_error=context.ml_error,
            duration_ms=duration,
            document_type=context.document_type,
            document_confidence=context.document_confidence,
        )

    def run_sync(self, text: str, **kwargs) -> DetectionResult:
        """Blocking wrapper around ``run`` for callers without an event loop."""
        return asyncio.run(self.run(text, **kwargs))


def _checkpoint(cancel: CancellationToken | None, deadline: float | None) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled()
    if deadline is not None and time.monotonic() >= deadline:
        raise DetectionTimeout("document time budget exhausted")


async def _bounded(coro, deadline: float | None):
    if deadline is None:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout=max(0.0, deadline - time.monotonic()))
    except asyncio.TimeoutError:
        raise DetectionTimeout("document time budget exhausted") from None


def _diff(
    name: str,
    before: list[Candidate],
    after: list[Candidate],
    duration_ms: float,
) -> PassResult:
    old = {c.key: c for c in before}
    new = {c.key: c for c in after}
    return PassResult(
        name=name,
        candidates=list(after),
        added=sum(1 for k in new if k not in old),
        removed=sum(1 for k in old if k not in new),
        modified=sum(1 for k, c in new.items() if k in old and old[k] != c),
        duration_ms=duration_ms,
    )
