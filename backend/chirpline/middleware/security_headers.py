"""
Chirpline Backend — Security Header Middleware
================================================

What:  Adds a Content-Security-Policy and the standard browser hardening
       headers to every response, whatever produced it.
How:   SecurityPolicy is built once from Settings and renders its header
       values at construction; the middleware only copies a precomputed
       dict onto each response. It never inspects or blocks the request.

Resulting Content-Security-Policy (default settings):
    default-src 'self';
    script-src 'self' https://vercel.live;
    connect-src 'self' https://vercel.live;
    img-src 'self' data: blob: https://res.cloudinary.com;
    style-src 'self' 'unsafe-inline';
    font-src 'self' https://fonts.googleapis.com https://fonts.gstatic.com;
    object-src 'none';
    upgrade-insecure-requests;
    base-uri 'self'; form-action 'self'; frame-ancestors 'self';
    script-src-attr 'none'

The explicit directives come first; baseline directives the explicit set
does not mention are appended after them.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from chirpline.config import Settings
from chirpline.exceptions import internal_error_response
from chirpline.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

SELF = "'self'"
NONE = "'none'"
UNSAFE_INLINE = "'unsafe-inline'"

# Merged in behind the explicit directives unless overridden
BASELINE_DIRECTIVES: Dict[str, Tuple[str, ...]] = {
    "default-src": (SELF,),
    "base-uri": (SELF,),
    "font-src": (SELF, "https:", "data:"),
    "form-action": (SELF,),
    "frame-ancestors": (SELF,),
    "img-src": (SELF, "data:"),
    "object-src": (NONE,),
    "script-src": (SELF,),
    "script-src-attr": (NONE,),
    "style-src": (SELF, "https:", UNSAFE_INLINE),
    "upgrade-insecure-requests": (),
}

HARDENING_HEADERS: Dict[str, str] = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


@dataclass(frozen=True)
class SecurityPolicy:
    """
    Immutable CSP directive set plus the companion header switches.

    directives maps a directive name to its sources in emission order.
    A directive with no sources (upgrade-insecure-requests) is emitted
    as a bare name.
    """

    directives: Tuple[Tuple[str, Tuple[str, ...]], ...]
    cross_origin_embedder_policy: bool = False
    headers: Mapping[str, str] = field(init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        rendered = dict(HARDENING_HEADERS)
        rendered["Content-Security-Policy"] = self.render_csp()
        if self.cross_origin_embedder_policy:
            rendered["Cross-Origin-Embedder-Policy"] = "require-corp"
        object.__setattr__(self, "headers", rendered)

    @classmethod
    def build(
        cls,
        explicit: Mapping[str, Tuple[str, ...]],
        cross_origin_embedder_policy: bool = False,
    ) -> "SecurityPolicy":
        merged = dict(explicit)
        for name, sources in BASELINE_DIRECTIVES.items():
            merged.setdefault(name, sources)
        return cls(
            directives=tuple(merged.items()),
            cross_origin_embedder_policy=cross_origin_embedder_policy,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecurityPolicy":
        trusted = settings.csp_trusted_origin
        return cls.build(
            {
                "default-src": (SELF,),
                "script-src": (SELF, trusted),
                "connect-src": (SELF, trusted),
                "img-src": (SELF, "data:", "blob:", settings.csp_media_origin),
                "style-src": (SELF, UNSAFE_INLINE),
                "font-src": (SELF, *settings.csp_font_origins_list),
                "object-src": (NONE,),
                "upgrade-insecure-requests": (),
            },
            # Embedded third-party widgets break under require-corp
            cross_origin_embedder_policy=False,
        )

    def directive(self, name: str) -> Optional[Tuple[str, ...]]:
        return dict(self.directives).get(name)

    def render_csp(self) -> str:
        parts = []
        for name, sources in self.directives:
            parts.append(" ".join((name, *sources)) if sources else name)
        return "; ".join(parts)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Copies the policy's headers onto every outgoing response.

    An unhandled exception from a route group is rendered here as the
    generic 500 body, so error responses carry the headers too.
    """

    def __init__(self, app, policy: SecurityPolicy):
        super().__init__(app)
        self.policy = policy

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            response = await call_next(request)
        except Exception as exc:
            rid = request_id_var.get("")
            logger.error("[%s] Unexpected error: %s", rid, exc, exc_info=True)
            response = internal_error_response(rid)
        for name, value in self.policy.headers.items():
            response.headers[name] = value
        if "x-powered-by" in response.headers:
            del response.headers["x-powered-by"]
        return response
