"""Third-party service clients."""

from .media_uploader import (
    CloudinaryUploader,
    FakeMediaUploader,
    MediaUploader,
    create_media_uploader,
)

__all__ = ["CloudinaryUploader", "FakeMediaUploader", "MediaUploader", "create_media_uploader"]
