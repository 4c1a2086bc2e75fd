"""Selective substitution of approved entities into the source text."""

from __future__ import annotations
import logging
from typing import Iterable

log = logging.getLogger(__name__)


def apply_selective(original_text: str, replacements: Iterable[tuple[str, str]]) -> str:
    """Replace every literal occurrence of each original with its replacement.

    Always call with the unmodified source text: re-running after review
    changes then gives the same result as a first run.  Longer originals
    are applied first, so ``John Smith`` is replaced before ``Smith`` can
    break it apart.  Originals no longer present are skipped.
    """
    if not isinstance(original_text, str):
        return ""

    ordered = sorted(
        ((orig, repl) for orig, repl in replacements if orig),
        key=lambda pair: len(pair[0]),
        reverse=True,
    )
    result = original_text
    skipped = 0
    for orig, repl in ordered:
        if orig not in result:
            skipped += 1
            continue
        result = result.replace(orig, repl)
    if skipped:
        log.debug("%d approved entities no longer present verbatim", skipped)
    return result
