"""RequestContext — the parsed view of a request that route groups consume."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from starlette.requests import Request

from chirpline.exceptions import ConfigurationError


@dataclass(frozen=True)
class RequestContext:
    """
    Per-request record filled in by BodyParsingMiddleware.

    body is the decoded JSON value or nested form mapping, ``{}`` when the
    request carried nothing the pipeline parses. cookies is a flat
    name → value mapping.
    """

    method: str
    path: str
    headers: Mapping[str, str]
    body: Any = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)


def get_request_context(request: Request) -> RequestContext:
    """
    FastAPI dependency returning the context for the current request.

    Usage in a route group:
        @router.post("/login")
        async def login(ctx: RequestContext = Depends(get_request_context)):
            ...
    """
    context = getattr(request.state, "context", None)
    if context is None:
        raise ConfigurationError(
            "Request context is missing; BodyParsingMiddleware is not installed",
            context={"path": request.url.path},
        )
    return context
