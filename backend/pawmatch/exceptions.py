"""
PawMatch Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for the conversation subsystem.
How:   Each exception carries a user-safe message and an optional context dict.
       Global exception handlers (registered in main.py) turn them into
       structured JSON error responses with the right HTTP status code.
Who:   Raised by services and dependencies; caught by global handlers.

Exception Hierarchy:
    PawMatchError (base)
    ├── ValidationError              → 400 Bad Request
    ├── UnauthorizedError            → 401 Unauthorized
    ├── NotFoundError                → 404 Not Found
    │   ├── AnimalNotFoundError
    │   └── ConversationNotFoundError
    ├── StorageConflictError         → 409 Conflict (normally caught and re-read)
    ├── DatabaseError                → 500 Internal Server Error
    └── RateLimitExceededError       → 429 Too Many Requests
"""

from typing import Any, Dict, Optional


class PawMatchError(Exception):
    """
    Base exception for all PawMatch application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(PawMatchError):
    """
    Raised when client input fails a business rule.

    When:    Malformed animal/conversation id, empty message text,
             missing required field.
    HTTP:    400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "text required",
            "details": {"field": "text"}
        }
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnauthorizedError(PawMatchError):
    """
    Raised when no identity could be resolved from the request credentials,
    or when the resolved caller kind may not use the endpoint.

    HTTP:    401 Unauthorized. Never retried.
    """

    def __init__(
        self,
        message: str = "Unauthorized",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(PawMatchError):
    """
    Raised when a requested resource does not exist or is not owned by the caller.

    HTTP:    404 Not Found

    Ownership failures deliberately look like absence: a shelter probing
    another shelter's conversation ids learns nothing.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class AnimalNotFoundError(NotFoundError):
    """The referenced animal does not exist (or the calling shelter does not own it)."""

    def __init__(self, animal_id: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(resource="animal", resource_id=animal_id, context=context)


class ConversationNotFoundError(NotFoundError):
    """No conversation matches the caller and the given animal or conversation id."""

    def __init__(
        self,
        conversation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(resource="conversation", resource_id=conversation_id, context=context)


class StorageConflictError(PawMatchError):
    """
    Raised when a conditional write matched no row although one was expected.

    When:    A device conversation was claimed by a different user first,
             or the claiming user already owns a conversation for the animal.
    HTTP:    409 Conflict

    Services treat this as benign: they catch it, re-read the stored state
    and carry on with that. The handler only fires if one escapes.
    """

    def __init__(
        self,
        message: str = "The record was changed by a concurrent request",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(PawMatchError):
    """
    Raised when database operations fail unexpectedly.

    HTTP:    500 Internal Server Error

    The client always gets a generic message. The context (identity kind,
    animal id, conversation id, original error type) is logged server-side.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(PawMatchError):
    """
    Raised when a caller exceeds the request rate limit.

    HTTP:    429 Too Many Requests, with a Retry-After header.
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
