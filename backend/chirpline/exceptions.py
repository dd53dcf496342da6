"""
Chirpline Backend — Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for the ingress pipeline and its
       collaborators.
How:   Each exception class carries a message, an optional context dict, and
       the HTTP status / machine-readable error code it maps to.
       error_response() renders any of them into the uniform JSON body; the
       global handlers in main.py and the body-parsing middleware both use it.
Who:   Raised by middleware, the SPA fallback, the media provider and the
       database collaborator.

Exception Hierarchy:
    ChirplineError (base)                → 500
    ├── MalformedBodyError               → 400 Bad Request
    ├── PayloadTooLargeError             → 413 Payload Too Large
    ├── TooManyParametersError           → 413 Payload Too Large
    ├── UnsupportedMediaTypeError        → 415 Unsupported Media Type
    ├── NotFoundError                    → 404 Not Found
    ├── MediaProviderError               → 502 Bad Gateway
    ├── DatabaseError                    → 500 Internal Server Error
    └── ConfigurationError               → 500 Internal Server Error
"""

from typing import Any, Dict, Optional

from starlette.responses import JSONResponse


class ChirplineError(Exception):
    """
    Base exception for all Chirpline application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    status_code: int = 500
    error_code: str = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class MalformedBodyError(ChirplineError):
    """
    The request body could not be decoded.

    When:  Invalid JSON, a JSON body whose top level is not an object or
           array, a form body that is not valid percent-encoding, or a
           Content-Length header that is not an integer.
    """

    status_code = 400
    error_code = "malformed_body"

    def __init__(
        self,
        message: str = "Request body could not be parsed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PayloadTooLargeError(ChirplineError):
    """Body exceeds the limit configured for its content type."""

    status_code = 413
    error_code = "payload_too_large"

    def __init__(
        self,
        limit: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["limit"] = limit
        super().__init__(
            message=f"Request body exceeds the {limit} byte limit",
            context=ctx,
        )
        self.limit = limit


class TooManyParametersError(ChirplineError):
    """URL-encoded form carries more fields than the parameter limit."""

    status_code = 413
    error_code = "too_many_parameters"

    def __init__(
        self,
        limit: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["limit"] = limit
        super().__init__(
            message=f"Form body has more than {limit} parameters",
            context=ctx,
        )
        self.limit = limit


class UnsupportedMediaTypeError(ChirplineError):
    """Body uses a charset or Content-Encoding the parser cannot decode."""

    status_code = 415
    error_code = "unsupported_media_type"

    def __init__(
        self,
        message: str = "Unsupported request body encoding",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(ChirplineError):
    """
    Nothing handles the requested path.

    When:  A path inside a route group that the group does not define, a
           non-GET request outside every group, or a production request
           when the SPA entry document is missing from the asset root.
    """

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = "The requested resource was not found"
        if path:
            message = f"No route matches '{path}'"
        ctx = context or {}
        if path:
            ctx["path"] = path
        super().__init__(message=message, context=ctx)


class MediaProviderError(ChirplineError):
    """
    The media provider rejected or failed an operation.

    When:  Upload or destroy calls fail inside the Cloudinary SDK, or are
           attempted before credentials were configured.
    HTTP:  502, the failure is upstream of this server.
    """

    status_code = 502
    error_code = "media_provider_error"

    def __init__(
        self,
        message: str = "Media provider request failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(ChirplineError):
    """
    Database connection or query failure.

    The message returned to the client is always generic; driver details go
    to the server log only.
    """

    status_code = 500
    error_code = "server_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConfigurationError(ChirplineError):
    """Settings are missing or inconsistent for the requested operation."""

    status_code = 500
    error_code = "configuration_error"


def error_response(exc: ChirplineError, request_id: str = "") -> JSONResponse:
    """
    Render an application error as the uniform JSON error body.

    Shape:
        {"error": <error_code>, "message": <message>, "request_id": <id>}

    Server-side errors (5xx) return a generic message; their real message
    and context are for the log only.
    """
    message = exc.message
    if exc.status_code >= 500 and not isinstance(exc, MediaProviderError):
        message = "An internal error occurred. Please try again later."
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": message,
            "request_id": request_id,
        },
    )


def internal_error_response(request_id: str = "") -> JSONResponse:
    """The 500 body for exceptions that are not ChirplineErrors."""
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": request_id,
        },
    )
