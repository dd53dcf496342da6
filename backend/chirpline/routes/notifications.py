"""
/api/notifications route group (notification listing and clearing).

The server mounts `router` under /api/notifications. Endpoints added here see the
pre-parsed body and cookies through `Depends(get_request_context)`.
"""

from fastapi import APIRouter

router = APIRouter(tags=["Notifications"])
