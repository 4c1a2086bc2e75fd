"""pii-pseudonymizer — hybrid PII detection and reversible pseudonymization."""

from .anonymizer import AnonymizedDocument, Anonymizer, AnonymizerConfig
from .config import create_anonymizer, load_config, load_from_yaml
from .denylist import DenyList
from .documents import DocumentClassification, classify_document
from .errors import (
    ConfigError,
    DetectionCancelled,
    DetectionTimeout,
    PseudonymizerError,
    RecognizerUnavailableError,
    SessionStateError,
)
from .mapping import MappingArtifact, restore
from .patterns import PatternRule, RuleRegistry, default_registry
from .pipeline import CancellationToken, DetectionPipeline
from .recognizer import RecognizerAdapter, RetryPolicy
from .review import DocumentReview, ReviewItem, ReviewStatus
from .session import PseudonymSession, SessionState
from .substitution import apply_selective
from .types import Candidate, DetectionResult, DocumentType, EntityType, PassResult, Source

__all__ = [
    "Anonymizer", "AnonymizerConfig", "AnonymizedDocument",
    "create_anonymizer", "load_config", "load_from_yaml",
    "PseudonymizerError", "ConfigError", "RecognizerUnavailableError",
    "DetectionCancelled", "DetectionTimeout", "SessionStateError",
    "MappingArtifact", "restore",
    "PatternRule", "RuleRegistry", "default_registry",
    "CancellationToken", "DetectionPipeline",
    "RecognizerAdapter", "RetryPolicy",
    "DenyList", "DocumentClassification", "classify_document",
    "DocumentReview", "ReviewItem", "ReviewStatus",
    "PseudonymSession", "SessionState",
    "apply_selective",
    "Candidate", "DetectionResult", "DocumentType", "EntityType", "PassResult", "Source",
]
__version__ = "0.1.0"
