"""
/api/auth route group (sign-up, login, logout and session lookup).

The server mounts `router` under /api/auth. Endpoints added here see the
pre-parsed body and cookies through `Depends(get_request_context)`.
"""

from fastapi import APIRouter

router = APIRouter(tags=["Auth"])
