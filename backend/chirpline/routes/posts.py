"""
/api/posts route group (posts, likes, comments and feeds).

The server mounts `router` under /api/posts. Endpoints added here see the
pre-parsed body and cookies through `Depends(get_request_context)`.
"""

from fastapi import APIRouter

router = APIRouter(tags=["Posts"])
