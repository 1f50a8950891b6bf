"""Tests for the Cloudinary uploader, using respx to mock the HTTP API."""

import httpx
import pytest
import pytest_asyncio
import respx

from clubspace.core.exceptions import (
    NetworkFailureException,
    ServiceException,
    ValidationException,
)
from clubspace.integrations.media_uploader import (
    CloudinaryUploader,
    FakeMediaUploader,
    create_media_uploader,
    detect_media_type,
)

BASE = "https://api.cloudinary.test/v1_1"


@pytest_asyncio.fixture
async def uploader():
    uploader = CloudinaryUploader(
        cloud_name="demo",
        upload_preset="unsigned",
        base_url=BASE,
        limits={"image": 100, "video": 1000, "audio": 500},
    )
    yield uploader
    await uploader.aclose()


class TestDetectMediaType:
    @pytest.mark.parametrize(
        "content_type,expected",
        [("image/png", "image"), ("video/mp4", "video"), ("audio/mpeg", "audio")],
    )
    def test_known_types(self, content_type, expected):
        assert detect_media_type(content_type) == expected

    def test_unknown_type(self):
        with pytest.raises(ValidationException) as exc_info:
            detect_media_type("application/pdf")
        assert exc_info.value.code == "UNSUPPORTED_MEDIA_TYPE"


class TestCloudinaryUploader:
    @pytest.mark.asyncio
    @respx.mock
    async def test_upload_returns_secure_url(self, uploader):
        route = respx.post(f"{BASE}/demo/image/upload").mock(
            return_value=httpx.Response(
                200, json={"secure_url": "https://res.cloudinary.com/x.png", "public_id": "x"}
            )
        )

        url = await uploader.upload(b"png", "x.png", "image/png")

        assert url == "https://res.cloudinary.com/x.png"
        assert route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_audio_goes_through_video_resource(self, uploader):
        route = respx.post(f"{BASE}/demo/video/upload").mock(
            return_value=httpx.Response(200, json={"secure_url": "https://cdn/a.mp3"})
        )

        await uploader.upload(b"mp3", "a.mp3", "audio/mpeg")

        assert route.called

    @pytest.mark.asyncio
    async def test_too_large_is_rejected_before_upload(self, uploader):
        with pytest.raises(ValidationException) as exc_info:
            await uploader.upload(b"x" * 101, "big.png", "image/png")
        assert exc_info.value.code == "MEDIA_TOO_LARGE"

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_is_network_failure(self, uploader):
        respx.post(f"{BASE}/demo/image/upload").mock(return_value=httpx.Response(502))

        with pytest.raises(NetworkFailureException):
            await uploader.upload(b"png", "x.png", "image/png")

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejection_is_service_error(self, uploader):
        respx.post(f"{BASE}/demo/image/upload").mock(return_value=httpx.Response(400))

        with pytest.raises(ServiceException) as exc_info:
            await uploader.upload(b"png", "x.png", "image/png")
        assert exc_info.value.code == "MEDIA_UPLOAD_REJECTED"

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout(self, uploader):
        respx.post(f"{BASE}/demo/image/upload").mock(side_effect=httpx.ConnectTimeout)

        with pytest.raises(NetworkFailureException) as exc_info:
            await uploader.upload(b"png", "x.png", "image/png")
        assert exc_info.value.code == "MEDIA_UPLOAD_TIMEOUT"

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        uploader = CloudinaryUploader(cloud_name=None, upload_preset=None)
        try:
            with pytest.raises(ValidationException) as exc_info:
                await uploader.upload(b"png", "x.png", "image/png")
            assert exc_info.value.code == "MEDIA_NOT_CONFIGURED"
        finally:
            await uploader.aclose()


class TestFakeUploader:
    @pytest.mark.asyncio
    async def test_records_uploads(self):
        fake = FakeMediaUploader()

        url = await fake.upload(b"abc", "a.png", "image/png")

        assert url.endswith("/a.png")
        assert fake.uploads[0]["size"] == 3

    @pytest.mark.asyncio
    async def test_injected_error(self):
        fake = FakeMediaUploader()
        fake.set_error(NetworkFailureException("offline"))

        with pytest.raises(NetworkFailureException):
            await fake.upload(b"abc", "a.png", "image/png")

    def test_factory_falls_back_to_fake(self, settings):
        assert isinstance(create_media_uploader(settings), FakeMediaUploader)

    @pytest.mark.asyncio
    async def test_factory_never_falls_back_in_production(self, settings):
        production = settings.model_copy(update={"environment": "production"})

        uploader = create_media_uploader(production)
        try:
            assert isinstance(uploader, CloudinaryUploader)
            with pytest.raises(ValidationException) as exc_info:
                await uploader.upload(b"png", "x.png", "image/png")
            assert exc_info.value.code == "MEDIA_NOT_CONFIGURED"
        finally:
            await uploader.aclose()
