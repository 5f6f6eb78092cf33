"""Utility modules for TinyChat."""

from tinychat.utils.cancellation import CancellationToken
from tinychat.utils.exceptions import (
    ConfigurationError,
    EmbeddingError,
    InvalidStateError,
    NotFoundError,
    StoreError,
    TinyChatError,
    UpstreamServiceError,
    ValidationError,
)
from tinychat.utils.id_generator import (
    generate_chat_id,
    generate_folder_id,
    generate_memory_id,
    generate_message_id,
    generate_pairing_id,
    generate_summary_id,
)
from tinychat.utils.logger import get_logger, setup_logging

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    # Cancellation
    "CancellationToken",
    # ID Generators
    "generate_folder_id",
    "generate_chat_id",
    "generate_message_id",
    "generate_memory_id",
    "generate_summary_id",
    "generate_pairing_id",
    # Exceptions
    "TinyChatError",
    "StoreError",
    "NotFoundError",
    "InvalidStateError",
    "ValidationError",
    "ConfigurationError",
    "EmbeddingError",
    "UpstreamServiceError",
]
