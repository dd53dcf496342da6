"""
Chirpline Backend — Media Provider Tests
==========================================

What:  Cloudinary configuration and the async upload/destroy wrappers.
How:   The SDK entry points are patched; nothing leaves the process.
"""

from unittest.mock import patch

import cloudinary.exceptions
import pytest

from chirpline.exceptions import MediaProviderError
from chirpline.media import MediaProvider

CREDENTIALS = {
    "cloudinary_cloud_name": "chirpline-test",
    "cloudinary_api_key": "123456",
    "cloudinary_api_secret": "shh",
}


@pytest.fixture
def provider(make_settings):
    media = MediaProvider(make_settings(**CREDENTIALS))
    with patch("chirpline.media.cloudinary.config"):
        assert media.configure() is True
    return media


class TestConfigure:

    def test_missing_credentials(self, make_settings, caplog):
        media = MediaProvider(make_settings(cloudinary_api_key="only-the-key"))
        with patch("chirpline.media.cloudinary.config") as mock_config:
            assert media.configure() is False

        mock_config.assert_not_called()
        assert media.is_configured is False
        assert "CLOUDINARY_CLOUD_NAME" in caplog.text
        assert "CLOUDINARY_API_SECRET" in caplog.text
        assert "CLOUDINARY_API_KEY" not in caplog.text

    def test_applies_credentials_once(self, make_settings):
        media = MediaProvider(make_settings(**CREDENTIALS))
        with patch("chirpline.media.cloudinary.config") as mock_config:
            assert media.configure() is True
            assert media.configure() is True

        mock_config.assert_called_once_with(
            cloud_name="chirpline-test",
            api_key="123456",
            api_secret="shh",
            secure=True,
        )
        assert media.is_configured is True


class TestUpload:

    @pytest.mark.asyncio
    async def test_upload_before_configure(self, make_settings):
        media = MediaProvider(make_settings())
        with pytest.raises(MediaProviderError, match="not configured"):
            await media.upload(b"image bytes")

    @pytest.mark.asyncio
    async def test_upload_passes_folder(self, provider):
        result = {"public_id": "posts/abc", "secure_url": "https://res.cloudinary.com/x.png"}
        with patch("chirpline.media.cloudinary.uploader.upload", return_value=result) as mock_upload:
            assert await provider.upload("data:image/png;base64,AAA", folder="posts") == result

        mock_upload.assert_called_once_with("data:image/png;base64,AAA", folder="posts")

    @pytest.mark.asyncio
    async def test_sdk_error_wrapped(self, provider):
        with patch(
            "chirpline.media.cloudinary.uploader.upload",
            side_effect=cloudinary.exceptions.Error("Invalid image file"),
        ):
            with pytest.raises(MediaProviderError) as exc_info:
                await provider.upload(b"not an image")

        assert exc_info.value.status_code == 502
        assert "Invalid image file" in exc_info.value.context["error"]


class TestDestroy:

    @pytest.mark.asyncio
    async def test_destroy(self, provider):
        with patch(
            "chirpline.media.cloudinary.uploader.destroy", return_value={"result": "ok"}
        ) as mock_destroy:
            assert await provider.destroy("posts/abc") == {"result": "ok"}
        mock_destroy.assert_called_once_with("posts/abc")

    @pytest.mark.asyncio
    async def test_destroy_missing_asset_warns(self, provider, caplog):
        with patch(
            "chirpline.media.cloudinary.uploader.destroy", return_value={"result": "not found"}
        ):
            result = await provider.destroy("posts/gone")

        assert result["result"] == "not found"
        assert "posts/gone" in caplog.text

    @pytest.mark.asyncio
    async def test_destroy_error_wrapped(self, provider):
        with patch(
            "chirpline.media.cloudinary.uploader.destroy",
            side_effect=cloudinary.exceptions.NotFound("gone"),
        ):
            with pytest.raises(MediaProviderError):
                await provider.destroy("posts/gone")
