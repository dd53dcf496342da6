"""
Chirpline Backend — Body and Cookie Parsing Middleware
========================================================

What:  Builds the RequestContext (parsed body + cookies) for every request
       and rejects bodies that are oversized or undecodable before any
       route group runs.
How:   Two-phase size check, then decode:
         1. Content-Length fast path: reject without reading a byte.
         2. Rolling cap while streaming (chunked uploads, compressed bodies).
       The bytes read are cached on the request so downstream handlers can
       read the body again.

Parsed content types:
    application/json                   → strict JSON, 5 MB limit
    application/x-www-form-urlencoded  → nested form, 100 KB limit
    anything else / no body            → body = {}, stream left untouched

Rejections are rendered here with error_response(): exceptions raised in
middleware never reach the FastAPI exception handlers.
"""

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from chirpline.config import Settings
from chirpline.context import RequestContext
from chirpline.exceptions import (
    ChirplineError,
    MalformedBodyError,
    PayloadTooLargeError,
    error_response,
)
from chirpline.middleware.request_id import request_id_var
from chirpline.parsing import (
    FORM_MEDIA_TYPE,
    JSON_MEDIA_TYPE,
    decode_form,
    decode_json,
    inflate,
    parse_content_type,
    parse_cookies,
)

logger = logging.getLogger(__name__)


def has_body(request: Request) -> bool:
    """A request has a body when it declares a length or a transfer coding."""
    headers = request.headers
    return "transfer-encoding" in headers or "content-length" in headers


class BodyParsingMiddleware(BaseHTTPMiddleware):
    """
    Populates request.state.context for every request.

    Registration (in create_app()):
        app.add_middleware(BodyParsingMiddleware, settings=settings)
    """

    def __init__(self, app, settings: Settings):
        super().__init__(app)
        self.json_limit = settings.json_body_limit
        self.form_limit = settings.form_body_limit
        self.parameter_limit = settings.form_parameter_limit

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            body = await self.parse_body(request)
        except ChirplineError as exc:
            rid = request_id_var.get("")
            logger.warning(
                "[%s] Rejected %s %s body: %s",
                rid,
                request.method,
                request.url.path,
                exc.message,
            )
            return error_response(exc, rid)

        request.state.context = RequestContext(
            method=request.method,
            path=request.url.path,
            headers=request.headers,
            body=body,
            cookies=parse_cookies(request.headers.get("cookie")),
        )
        return await call_next(request)

    async def parse_body(self, request: Request) -> Any:
        if not has_body(request):
            return {}

        media_type, params = parse_content_type(request.headers.get("content-type"))
        if media_type == JSON_MEDIA_TYPE:
            limit = self.json_limit
        elif media_type == FORM_MEDIA_TYPE:
            limit = self.form_limit
        else:
            return {}

        raw = await self.read_limited(request, limit)
        charset = params.get("charset")
        if media_type == JSON_MEDIA_TYPE:
            return decode_json(raw, charset)
        return decode_form(raw, charset, parameter_limit=self.parameter_limit)

    async def read_limited(self, request: Request, limit: int) -> bytes:
        """
        Read the whole body, failing as soon as it passes limit.

        Raises:
            MalformedBodyError:   Content-Length is not an integer
            PayloadTooLargeError: declared, streamed or inflated size > limit
        """
        encoding = request.headers.get("content-encoding", "identity")
        identity = encoding.strip().lower() == "identity"

        # ── Phase 1: Content-Length fast path ─────────────────────────────
        declared = request.headers.get("content-length")
        if declared is not None:
            try:
                declared_size = int(declared)
            except ValueError:
                raise MalformedBodyError(
                    "Invalid Content-Length header",
                    context={"content_length": declared},
                )
            if identity and declared_size > limit:
                raise PayloadTooLargeError(limit, context={"declared": declared_size})

        # ── Phase 2: Rolling cap ──────────────────────────────────────────
        # Compressed bodies are capped on the wire and again after inflation
        chunks = []
        received = 0
        async for chunk in request.stream():
            received += len(chunk)
            if received > limit:
                raise PayloadTooLargeError(limit, context={"received": received})
            chunks.append(chunk)
        raw = b"".join(chunks)

        # Request.body() returns this cache instead of re-reading the stream
        request._body = raw  # type: ignore[attr-defined]

        return inflate(raw, encoding, limit)
