"""Typed failures raised by the service layer and rendered by the API."""

from typing import Optional


class ChatServiceError(Exception):
    """Base class for classified failures.

    Each subclass carries the HTTP status and a stable ``error_code`` so the
    API layer never has to guess how to render it.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(self, message: str, *, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class Unauthenticated(ChatServiceError):
    status_code = 401
    error_code = "unauthenticated"


class Forbidden(ChatServiceError):
    status_code = 403
    error_code = "forbidden"


class NotFound(ChatServiceError):
    status_code = 404
    error_code = "not_found"


class Conflict(ChatServiceError):
    status_code = 409
    error_code = "conflict"


class Expired(ChatServiceError):
    """Invite or share link is past its expiry; a new one is needed."""

    status_code = 410
    error_code = "expired"


class ValidationFailure(ChatServiceError):
    status_code = 400
    error_code = "validation_error"


class UpstreamFailure(ChatServiceError):
    """Completion or blob provider failed; safe for the user to retry."""

    status_code = 502
    error_code = "upstream_failure"

    def __init__(self, message: str, *, timeout: bool = False, details: Optional[dict] = None) -> None:
        super().__init__(message, details=details)
        self.timeout = timeout
