"""Custom exceptions for the matching core."""

from typing import Any, Dict, Optional


class MatchCoreError(Exception):
    """Base exception for all matching core errors."""

    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ) -> None:
        """
        Initialize the error with a message and optional details.

        Args:
            message (str): Error message describing what went wrong.
            status_code (int): HTTP status code associated with the error (default 500).
            details (Optional[Dict[str, Any]]): Additional context or debug information.
            code (Optional[str]): Machine readable code the caller can render on.
        """
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ConfigurationError(MatchCoreError):
    """Raised when there's an issue with the application configuration."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 500, details)


class PolicyViolationError(MatchCoreError):
    """
    Raised when an action is rejected by a domain rule.

    Policy violations are recoverable and user facing: the caller renders
    a message based on ``code`` (e.g. ``CONVERSATION_BLOCKED`` to ask the
    user to wait for a reply). State is never modified when one is raised.
    """

    code = "POLICY_VIOLATION"

    def __init__(self, message: str, code: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 403, details, code=code)


class NotFoundError(MatchCoreError):
    """Raised when a requested resource is not found."""

    code = "NOT_FOUND"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 404, details)


class ValidationError(MatchCoreError):
    """Raised when data validation fails."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 400, details)


class DatabaseError(MatchCoreError):
    """Raised when there's an issue with the database operations."""

    code = "DATABASE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, status_code: int = 500) -> None:
        super().__init__(message, status_code, details)


class TransientStorageError(DatabaseError):
    """
    Raised on transaction conflicts or lost connections.

    The unit of work retries these for idempotent work; anything that still
    fails is surfaced to the caller as retryable (503).
    """

    code = "TRANSIENT_STORAGE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details, status_code=503)


class IntegrityViolationError(DatabaseError):
    """Raised when stored data contradicts a core invariant."""

    code = "INTEGRITY_VIOLATION"


class RateLimitError(MatchCoreError):
    """Raised when rate limiting is triggered."""

    code = "RATE_LIMITED"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 429, details)


class ExternalServiceError(MatchCoreError):
    """Raised when an external collaborator (push, room service, etc.) fails."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str, service: str, details: Optional[Dict[str, Any]] = None) -> None:
        error_details = details or {}
        error_details["service"] = service
        super().__init__(message, 502, error_details)


# Policy codes surfaced to callers
SELF_INTERACTION = "SELF_INTERACTION"
BLOCKED_PAIR = "BLOCKED_PAIR"
CONVERSATION_BLOCKED = "CONVERSATION_BLOCKED"
EMPTY_MESSAGE = "EMPTY_MESSAGE"
CONVERSATION_NOT_ACCEPTED = "CONVERSATION_NOT_ACCEPTED"
NOT_PARTICIPANT = "NOT_PARTICIPANT"
NOT_CALLABLE = "NOT_CALLABLE"
CALL_IN_PROGRESS = "CALL_IN_PROGRESS"
NO_ACTIVE_CALL = "NO_ACTIVE_CALL"
