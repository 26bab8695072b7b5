"""Error taxonomy shared by the ask pipeline and the HTTP layer."""
from __future__ import annotations


class AskError(RuntimeError):
    """Base class for failures surfaced to API callers."""

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        details: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.__cause__ = cause

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class MissingInputError(AskError):
    """Raised when a request carries neither files nor an upload id."""

    status_code = 400


class NoDocumentsError(AskError):
    """Raised when document resolution produced nothing readable."""

    status_code = 400


class DocumentReadError(NoDocumentsError):
    """Raised when a stored session file disappeared or could not be read."""

    status_code = 500


class MissingQuestionError(AskError):
    """Raised when no question field was supplied at all."""

    status_code = 400


class ExtractionError(AskError):
    """Raised when text could not be extracted from a document."""


class EmbeddingProviderError(AskError):
    """Raised when the embedding capability fails or returns an unusable shape."""


class CompletionProviderError(AskError):
    """Raised when the completion capability fails."""


class RequestTimeoutError(AskError):
    """Raised when the whole request exceeds its time limit."""

    status_code = 504


__all__ = [
    "AskError",
    "CompletionProviderError",
    "DocumentReadError",
    "EmbeddingProviderError",
    "ExtractionError",
    "MissingInputError",
    "MissingQuestionError",
    "NoDocumentsError",
    "RequestTimeoutError",
]
