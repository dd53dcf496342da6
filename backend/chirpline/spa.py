"""
Chirpline Backend — Static Assets and Catch-all Fallback
==========================================================

What:  Answers every request that no route group handled.
How:   A small ordered chain, evaluated per request:

         1. Path owned by a route group     → 404 (the group has no such route)
         2. Method other than GET/HEAD      → 404
         3. Development mode                → "API is running" (text/plain)
         4. Production, file in asset root  → the file
         5. Production, anything else       → the SPA entry document (200)

       The mode is fixed when the handler is built. Development mode never
       touches the filesystem.

Note: in production, /api/... paths outside the four groups also receive the
entry document. Client-side routing relies on unknown paths returning the
app shell, and the server cannot tell a mistyped API call from a deep link.
"""

import logging
from pathlib import Path

from fastapi import Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import FileResponse, PlainTextResponse, Response
from starlette.staticfiles import StaticFiles

from chirpline.config import Settings
from chirpline.exceptions import NotFoundError
from chirpline.routing import RouteTable

logger = logging.getLogger(__name__)

READINESS_MARKER = "API is running"
FALLBACK_METHODS = ("GET", "HEAD")


class SPAFallback:
    """Catch-all endpoint; mount it last."""

    def __init__(self, settings: Settings, route_table: RouteTable):
        self.production = settings.is_production
        self.route_table = route_table
        self.asset_root: Path = settings.client_dist_path
        self.entry_document: Path = self.asset_root / settings.client_entry_document
        self.static = None
        if self.production:
            # check_dir=False: a missing build is reported by check_assets()
            self.static = StaticFiles(directory=self.asset_root, check_dir=False)

    def check_assets(self) -> bool:
        """Log whether the production build is in place. Called at startup."""
        if not self.production:
            return True
        if not self.entry_document.is_file():
            logger.error(
                "SPA entry document not found at %s; run the frontend build",
                self.entry_document,
            )
            return False
        logger.info("Serving SPA assets from %s", self.asset_root)
        return True

    async def handle(self, request: Request, full_path: str) -> Response:
        path = request.url.path

        group = self.route_table.resolve(path)
        if group is not None:
            raise NotFoundError(path, context={"route_group": group.name})

        if request.method not in FALLBACK_METHODS:
            raise NotFoundError(path)

        if not self.production:
            return PlainTextResponse(READINESS_MARKER)

        try:
            return await self.static.get_response(full_path, request.scope)
        except StarletteHTTPException as exc:
            if exc.status_code != 404:
                raise
        return self.entry_document_response(path)

    def entry_document_response(self, path: str) -> Response:
        if not self.entry_document.is_file():
            raise NotFoundError(path, context={"entry_document": str(self.entry_document)})
        return FileResponse(self.entry_document, media_type="text/html")
