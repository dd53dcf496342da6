"""
/api/users route group (profiles, follow/unfollow and suggestions).

The server mounts `router` under /api/users. Endpoints added here see the
pre-parsed body and cookies through `Depends(get_request_context)`.
"""

from fastapi import APIRouter

router = APIRouter(tags=["Users"])
