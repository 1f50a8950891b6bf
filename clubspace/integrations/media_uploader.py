# clubspace/integrations/media_uploader.py
"""Cloudinary media upload client.

Uploads image, video and audio attachments with an unsigned upload preset
and returns the durable ``secure_url``. Audio is uploaded through the
``video`` resource, as Cloudinary requires.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
import uuid

import httpx
from pydantic import SecretStr

from ..core.config import MEGABYTE, Settings
from ..core.exceptions import (
    NetworkFailureException,
    ServiceException,
    ValidationException,
)

logger = logging.getLogger(__name__)


def detect_media_type(content_type: str) -> str:
    """Map a MIME type to image | video | audio."""
    for media_type in ("image", "video", "audio"):
        if content_type.startswith(f"{media_type}/"):
            return media_type
    raise ValidationException(
        "Unsupported file type. Please upload an image, video, or audio file.",
        code="UNSUPPORTED_MEDIA_TYPE",
        details={"content_type": content_type},
    )


def validate_file_size(size: int, media_type: str, limits: dict[str, int]) -> None:
    max_size = limits[media_type]
    if size > max_size:
        max_mb = round(max_size / MEGABYTE)
        raise ValidationException(
            f"File is too large. Maximum size for {media_type} is {max_mb} MB.",
            code="MEDIA_TOO_LARGE",
            details={"size": size, "limit": max_size},
        )


class MediaUploader(Protocol):
    async def upload(self, data: bytes, filename: str, content_type: str) -> str: ...

    async def aclose(self) -> None: ...


class CloudinaryUploader:
    """HTTP client for the Cloudinary unsigned upload API."""

    def __init__(
        self,
        *,
        cloud_name: str | None,
        upload_preset: str | SecretStr | None,
        folder: str = "clubspace",
        base_url: str = "https://api.cloudinary.com/v1_1",
        limits: dict[str, int] | None = None,
        timeout: float = 60.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._cloud_name = cloud_name
        self._upload_preset = (
            upload_preset.get_secret_value()
            if isinstance(upload_preset, SecretStr)
            else upload_preset
        )
        self._folder = folder
        self._base_url = base_url.rstrip("/")
        self._limits = limits or {
            "image": 10 * MEGABYTE,
            "video": 100 * MEGABYTE,
            "audio": 50 * MEGABYTE,
        }
        self.http = http or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(
        cls, settings: Settings, http: httpx.AsyncClient | None = None
    ) -> "CloudinaryUploader":
        return cls(
            cloud_name=settings.cloudinary_cloud_name,
            upload_preset=settings.cloudinary_upload_preset,
            folder=settings.cloudinary_folder,
            base_url=settings.cloudinary_api_base,
            limits=settings.media_limits(),
            timeout=settings.media_upload_timeout,
            http=http,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._cloud_name and self._upload_preset)

    def upload_url(self, media_type: str) -> str:
        resource_type = "video" if media_type == "audio" else media_type
        return f"{self._base_url}/{self._cloud_name}/{resource_type}/upload"

    async def aclose(self) -> None:
        await self.http.aclose()

    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        media_type = detect_media_type(content_type)
        validate_file_size(len(data), media_type, self._limits)

        if not self.is_configured:
            raise ValidationException(
                "Media uploads are not configured. Set CLUBSPACE_CLOUDINARY_CLOUD_NAME "
                "and CLUBSPACE_CLOUDINARY_UPLOAD_PRESET.",
                code="MEDIA_NOT_CONFIGURED",
            )

        url = self.upload_url(media_type)
        try:
            response = await self.http.post(
                url,
                data={"upload_preset": self._upload_preset, "folder": self._folder},
                files={"file": (filename, data, content_type)},
            )
        except httpx.TimeoutException as exc:
            raise NetworkFailureException(
                "Upload timed out. Please try again.", code="MEDIA_UPLOAD_TIMEOUT"
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkFailureException(
                "Network error during upload. Please check your connection.",
                code="MEDIA_UPLOAD_NETWORK",
            ) from exc

        if response.status_code >= 500:
            raise NetworkFailureException(
                "Upload failed. Please try again.",
                code="MEDIA_UPLOAD_FAILED",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            logger.warning(
                "[MEDIA] Upload rejected",
                extra={"status_code": response.status_code, "media_type": media_type},
            )
            raise ServiceException(
                "Upload failed. Please try again.",
                code="MEDIA_UPLOAD_REJECTED",
                details={"status_code": response.status_code},
            )

        payload: dict[str, Any] = response.json()
        secure_url = payload.get("secure_url")
        if not secure_url:
            raise ServiceException("Upload response had no URL", code="MEDIA_UPLOAD_NO_URL")
        logger.info(
            "[MEDIA] Uploaded attachment",
            extra={"media_type": media_type, "public_id": payload.get("public_id")},
        )
        return str(secure_url)


class FakeMediaUploader:
    """In-memory stub for local runs and tests."""

    def __init__(self, limits: dict[str, int] | None = None) -> None:
        self.uploads: list[dict[str, Any]] = []
        self._limits = limits or {
            "image": 10 * MEGABYTE,
            "video": 100 * MEGABYTE,
            "audio": 50 * MEGABYTE,
        }
        self._error: Exception | None = None

    def set_error(self, error: Exception) -> None:
        """Inject an error for deterministic failure testing."""
        self._error = error

    def clear_errors(self) -> None:
        self._error = None

    async def upload(self, data: bytes, filename: str, content_type: str) -> str:
        media_type = detect_media_type(content_type)
        validate_file_size(len(data), media_type, self._limits)
        if self._error is not None:
            raise self._error
        url = f"https://media.invalid/clubspace/{media_type}/{uuid.uuid4().hex[:12]}/{filename}"
        self.uploads.append(
            {"filename": filename, "content_type": content_type, "size": len(data), "url": url}
        )
        return url

    async def aclose(self) -> None:
        return None


def create_media_uploader(settings: Settings) -> MediaUploader:
    """
    Cloudinary when credentials are configured or in production, the fake otherwise.

    An unconfigured production uploader fails each upload with
    ``MEDIA_NOT_CONFIGURED`` rather than storing placeholder URLs.
    """
    configured = bool(settings.cloudinary_cloud_name and settings.cloudinary_upload_preset)
    if configured or settings.environment == "production":
        if not configured:
            logger.warning("[MEDIA] Cloudinary not configured in production, uploads will fail")
        return CloudinaryUploader.from_settings(settings)
    logger.info("[MEDIA] Cloudinary not configured, using in-memory uploader")
    return FakeMediaUploader(limits=settings.media_limits())
