"""
Exception hierarchy for TinyChat.

Every error raised by the chain, memory and generation layers derives from
TinyChatError, so callers (and the HTTP layer) can catch one type.
"""

from typing import Any


class TinyChatError(Exception):
    """
    Base exception for all TinyChat errors.

    Carries an optional context dictionary with identifiers useful for logs
    and API responses.
    """

    def __init__(self, message: str, context: dict | None = None):
        """
        Initialize TinyChat error.

        Args:
            message: Error message
            context: Optional context dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class StoreError(TinyChatError):
    """
    Storage operation errors.
    Raised when the underlying database rejects or fails an operation.
    """

    pass


class NotFoundError(TinyChatError):
    """
    Resource not found errors.
    Raised when a referenced folder, chat, message or pairing doesn't exist.
    The failing operation leaves storage untouched.
    """

    pass


class InvalidStateError(TinyChatError):
    """
    Invalid state errors.
    Raised when an operation would break a chain invariant, or asks for
    something the current state forbids (e.g. a temporary message inside a
    non-temporary chat).
    """

    pass


class ValidationError(TinyChatError):
    """
    Validation errors.
    Raised when input validation fails or data is invalid.
    """

    pass


class ConfigurationError(TinyChatError):
    """
    Configuration errors.
    Raised when configuration is invalid or missing required values.
    """

    pass


class EmbeddingError(TinyChatError):
    """
    Embedding generation errors.
    Raised when a model service fails to embed a batch.
    """

    pass


class UpstreamServiceError(TinyChatError):
    """
    Model service failures.

    Raised after the generation orchestrator has rolled back the reply it was
    producing. ``original_data`` holds the user's input so the caller can
    offer it again for retry.
    """

    def __init__(
        self,
        message: str,
        context: dict | None = None,
        original_data: list[Any] | None = None,
    ):
        super().__init__(message, context)
        self.original_data = original_data or []
