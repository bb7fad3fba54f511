"""
Travis API — Custom Exception Hierarchy
=========================================

What:  Application-specific exceptions for the errors the API layer knows about.
Why:   Endpoints raise a typed error; one global handler turns it into a JSON
       response with the right status code. Anything outside this hierarchy is
       "unhandled" and belongs to the error fallback stage of the pipeline.

Exception Hierarchy:
    APIError (base)
    ├── ValidationError          → 400 Bad Request
    │   └── MalformedBodyError   → 400 Bad Request (body is not valid JSON)
    ├── NotFoundError            → 404 Not Found
    ├── DatabaseError            → 500 Internal Server Error
    └── ServiceUnavailableError  → 503 Service Unavailable

    ConfigurationError           → raised at setup time, never rendered
"""

from typing import Any, Dict, Optional


class APIError(Exception):
    """
    Base exception for errors the API renders itself.

    Attributes:
        message:      User-facing error description (safe to return)
        context:      Additional debug info (logged, NOT returned)
        status_code:  HTTP status used by the global handler
        error_code:   Machine-readable error identifier
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(APIError):
    """Client input the client can fix."""

    status_code = 400
    error_code = "validation_error"

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


class MalformedBodyError(ValidationError):
    """
    Request declared a JSON body that does not parse.

    Raised by the body parser stage, which renders it directly since it runs
    outside FastAPI's exception handling.
    """

    error_code = "malformed_body"

    def __init__(
        self,
        message: str = "Failed to parse request body as JSON",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, field="body", context=context)


class NotFoundError(APIError):
    status_code = 404
    error_code = "not_found"

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


class DatabaseError(APIError):
    """
    Database access failed or was attempted before setup connected it.

    The default message is generic; connection details stay in the server
    log.
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ServiceUnavailableError(APIError):
    status_code = 503
    error_code = "service_unavailable"

    def __init__(
        self,
        message: str = "A backing service is temporarily unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConfigurationError(Exception):
    """Invalid wiring detected while building the application (e.g. duplicate endpoint)."""
