"""Utils package for the matching core."""

from src.utils.errors import (
    ConfigurationError,
    DatabaseError,
    ExternalServiceError,
    IntegrityViolationError,
    MatchCoreError,
    NotFoundError,
    PolicyViolationError,
    RateLimitError,
    TransientStorageError,
    ValidationError,
)
from src.utils.logging import configure_logging, get_logger, log_error
from src.utils.security import escape_html, sanitize_message_text

__all__ = [
    "ConfigurationError",
    "DatabaseError",
    "ExternalServiceError",
    "IntegrityViolationError",
    "MatchCoreError",
    "NotFoundError",
    "PolicyViolationError",
    "RateLimitError",
    "TransientStorageError",
    "ValidationError",
    "configure_logging",
    "escape_html",
    "get_logger",
    "log_error",
    "sanitize_message_text",
]
