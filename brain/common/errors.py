"""
Error taxonomy for the knowledge pipeline.

Each external-call adapter classifies its failures into an ErrorKind at the
boundary, so fallback and diagnostics work on typed values.
"""

from enum import Enum
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .model_chain import GenerationAttempt


class ErrorKind(str, Enum):
    """Closed set of generation failure categories"""
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    RATE_LIMIT = "rate_limit"
    SAFETY = "safety"
    EMPTY = "empty"
    OTHER = "other"


# User-facing diagnostics, one per ErrorKind
USER_MESSAGES = {
    ErrorKind.NOT_FOUND: (
        "Failed to get an answer from the AI: the model is unavailable. "
        "Check that the model name is correct and enabled for this API key."
    ),
    ErrorKind.PERMISSION: (
        "Failed to get an answer from the AI: the credentials lack permission "
        "or the API is not enabled for this project."
    ),
    ErrorKind.RATE_LIMIT: (
        "Failed to get an answer from the AI: the API quota was exceeded. "
        "Please try again later."
    ),
    ErrorKind.SAFETY: (
        "Failed to get an answer from the AI: the response was filtered by "
        "the model's safety settings."
    ),
    ErrorKind.EMPTY: "Failed to get an answer from the AI: the model returned an empty response.",
    ErrorKind.OTHER: "Failed to get an answer from the AI. Please try again later.",
}


class BrainError(Exception):
    """Base class for pipeline errors"""


class ExtractionFailed(BrainError):
    """A supported file could not be parsed. Recoverable per file."""

    def __init__(self, file_name: str, cause: BaseException):
        self.file_name = file_name
        self.cause = cause
        super().__init__(f"Failed to extract text from {file_name}: {cause!r}")


class InvalidArticleId(BrainError, ValueError):
    """An article id that cannot name a durable record"""

    def __init__(self, article_id: str):
        self.article_id = article_id
        super().__init__(f"Invalid article id: {article_id!r} (allowed: letters, digits, '.', '_', '-')")


class EmbeddingUnavailable(BrainError):
    """Embedding backend failed (network, quota, auth). Retryable."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class IndexInconsistency(BrainError):
    """Durable store and vector index disagree about one article.

    Logged as a warning, never raised to callers. Fixed by re-upsert or
    KnowledgeIndex.reconcile().
    """

    def __init__(self, article_id: str, detail: str):
        self.article_id = article_id
        self.detail = detail
        super().__init__(f"Index inconsistency for {article_id}: {detail}")


class GenerationError(BrainError):
    """One generation candidate failed"""

    def __init__(self, kind: ErrorKind, model: str, cause: Optional[BaseException] = None):
        self.kind = kind
        self.model = model
        self.cause = cause
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"Model {model} failed ({kind.value}){detail}")


class AllModelsFailed(BrainError):
    """Every candidate in the fallback chain failed. Terminal for one request."""

    def __init__(self, attempts: List["GenerationAttempt"]):
        self.attempts = attempts
        models = ", ".join(a.model for a in attempts) or "none"
        super().__init__(f"All models failed ({models})")

    @property
    def kind(self) -> ErrorKind:
        """Kind of the last failure"""
        if not self.attempts:
            return ErrorKind.OTHER
        return self.attempts[-1].error_kind or ErrorKind.OTHER

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]
