"""
Chirpline Backend — Media Provider Client
===========================================

What:  Configures the Cloudinary SDK once at startup and exposes async
       upload/destroy wrappers for the post and profile route groups.
How:   cloudinary.config() is process-global; configure() calls it exactly
       once with the credentials from Settings. The SDK is synchronous, so
       every network call runs in a worker thread via asyncio.to_thread.
Who:   Built by create_app(), configured in the lifespan, reachable from
       handlers through Depends(get_media_provider).

Missing credentials are not fatal: the server boots, logs a warning, and
upload attempts raise MediaProviderError until the variables are set.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from fastapi import Request

from chirpline.config import Settings
from chirpline.exceptions import ConfigurationError, MediaProviderError

logger = logging.getLogger(__name__)


class MediaProvider:
    """Thin async facade over the Cloudinary uploader."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._configured = False

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(self) -> bool:
        """
        Apply credentials to the SDK. Returns False when any are missing.

        Idempotent: a second call after success does nothing.
        """
        if self._configured:
            return True

        missing = self._settings.missing_media_credentials()
        if missing:
            logger.warning(
                "Cloudinary not configured, missing %s; image uploads are disabled",
                ", ".join(missing),
            )
            return False

        cloudinary.config(
            cloud_name=self._settings.cloudinary_cloud_name,
            api_key=self._settings.cloudinary_api_key,
            api_secret=self._settings.cloudinary_api_secret,
            secure=True,
        )
        self._configured = True
        logger.info("Cloudinary configured for cloud '%s'", self._settings.cloudinary_cloud_name)
        return True

    async def upload(
        self,
        file: Any,
        folder: Optional[str] = None,
        **options: Any,
    ) -> Dict[str, Any]:
        """
        Upload an image (path, URL, data URI, bytes or file object).

        Returns the SDK's result dict; `secure_url` and `public_id` are the
        fields callers usually persist.
        """
        self._require_configured("upload")
        if folder:
            options["folder"] = folder
        try:
            result = await asyncio.to_thread(cloudinary.uploader.upload, file, **options)
        except cloudinary.exceptions.Error as e:
            logger.error("Cloudinary upload failed: %s", e)
            raise MediaProviderError(
                "Image upload failed",
                context={"error": str(e), "folder": folder},
            ) from e
        logger.info("Uploaded media %s", result.get("public_id"))
        return result

    async def destroy(self, public_id: str) -> Dict[str, Any]:
        """Delete a previously uploaded asset by its public ID."""
        self._require_configured("destroy")
        try:
            result = await asyncio.to_thread(cloudinary.uploader.destroy, public_id)
        except cloudinary.exceptions.Error as e:
            logger.error("Cloudinary destroy failed for %s: %s", public_id, e)
            raise MediaProviderError(
                "Image deletion failed",
                context={"error": str(e), "public_id": public_id},
            ) from e
        if result.get("result") != "ok":
            logger.warning("Cloudinary destroy for %s returned %s", public_id, result.get("result"))
        return result

    def _require_configured(self, operation: str) -> None:
        if not self._configured:
            raise MediaProviderError(
                "Media uploads are not configured on this server",
                context={"operation": operation},
            )


def get_media_provider(request: Request) -> MediaProvider:
    """FastAPI dependency returning the app's MediaProvider."""
    media = getattr(request.app.state, "media", None)
    if media is None:
        raise ConfigurationError("Media provider is not initialized")
    return media
