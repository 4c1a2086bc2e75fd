"""Exception taxonomy.

Messages carry entity types, counts and class names only, never the
matched values themselves.
"""

from __future__ import annotations


class PseudonymizerError(Exception):
    """Base class for all engine errors."""


class ConfigError(PseudonymizerError, ValueError):
    """Invalid configuration value."""


class RecognizerUnavailableError(PseudonymizerError):
    """The statistical recognizer could not be loaded or failed during inference."""


class DetectionCancelled(PseudonymizerError):
    """The caller cancelled detection between pipeline stages."""


class DetectionTimeout(PseudonymizerError):
    """The whole-document time budget ran out between pipeline stages."""


class SessionStateError(PseudonymizerError):
    """An operation was attempted in the wrong session state."""
