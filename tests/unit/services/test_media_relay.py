"""
Unit tests for the media relay - staged URLs are what providers fetch
"""

import base64
from unittest.mock import MagicMock

import pytest

from schemas.publishing import MediaInput
from services.media_relay import (
    LocalStorageBackend,
    MediaRelay,
    SupabaseStorageBackend,
    build_media_relay,
    decode_payload,
)
from utils.exceptions import ConfigurationError, InvalidMediaData, StorageUnavailable

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"jpeg-body" * 10


@pytest.fixture
def relay(tmp_path):
    return MediaRelay(LocalStorageBackend(tmp_path, "https://app.socialflow.test"))


class TestDecodePayload:
    """Test transport encodings clients send media in"""

    def test_raw_bytes_pass_through(self):
        assert decode_payload(JPEG_BYTES) == JPEG_BYTES

    def test_base64_and_data_url(self):
        encoded = base64.b64encode(JPEG_BYTES).decode()

        assert decode_payload(encoded) == JPEG_BYTES
        assert decode_payload(f"data:image/jpeg;base64,{encoded}") == JPEG_BYTES

    def test_byte_value_list(self):
        assert decode_payload([255, 216, 255]) == b"\xff\xd8\xff"

    @pytest.mark.parametrize("payload", ["not base64!!", [256], b"", ""])
    def test_invalid_payloads_are_caller_errors(self, payload):
        with pytest.raises(InvalidMediaData):
            decode_payload(payload)


class TestMediaRelay:
    """Test staging to local storage"""

    async def test_stage_writes_bytes_and_returns_public_url(self, relay, tmp_path):
        url = await relay.stage(JPEG_BYTES, "image/jpeg")

        assert url.startswith("https://app.socialflow.test/media/")
        assert url.endswith(".jpg")
        key = url.split("/media/", 1)[1]
        assert (tmp_path / key).read_bytes() == JPEG_BYTES

    async def test_staging_twice_yields_two_independent_urls(self, relay, tmp_path):
        """
        Business Critical: staging does not dedupe; each URL stays fetchable on its own
        """
        first = await relay.stage(JPEG_BYTES, "image/jpeg")
        second = await relay.stage(JPEG_BYTES, "image/jpeg")

        assert first != second
        for url in (first, second):
            assert (tmp_path / url.split("/media/", 1)[1]).read_bytes() == JPEG_BYTES

    async def test_unsupported_mime_type_rejected(self, relay):
        with pytest.raises(InvalidMediaData, match="Unsupported media type"):
            await relay.stage(b"%PDF-1.7", "application/pdf")

    async def test_oversized_media_rejected(self, tmp_path):
        relay = MediaRelay(LocalStorageBackend(tmp_path, "https://app.socialflow.test"), max_size=10)

        with pytest.raises(InvalidMediaData, match="maximum upload size"):
            await relay.stage(b"x" * 11, "video/mp4")

    async def test_write_failure_is_storage_unavailable(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where a directory is expected")
        relay = MediaRelay(LocalStorageBackend(blocker, "https://app.socialflow.test"))

        with pytest.raises(StorageUnavailable):
            await relay.stage(JPEG_BYTES, "image/jpeg")

    async def test_stage_input_keeps_already_staged_url(self, relay):
        media = await relay.stage_input(MediaInput(mime_type="video/mp4", url="https://cdn.test/clip.mp4"))

        assert media.url == "https://cdn.test/clip.mp4"
        assert media.is_video

    async def test_stage_input_requires_data_or_url(self, relay):
        with pytest.raises(InvalidMediaData):
            await relay.stage_input(MediaInput(mime_type="image/png"))


class TestSupabaseBackend:
    """Test Supabase Storage uploads through the client"""

    async def test_put_uploads_and_returns_public_url(self):
        client = MagicMock()
        bucket = client.storage.from_.return_value
        bucket.get_public_url.return_value = "https://project.supabase.co/storage/v1/object/public/media/a.jpg?"
        backend = SupabaseStorageBackend("https://project.supabase.co", "service-key", "media", client=client)

        url = await backend.put("a.jpg", JPEG_BYTES, "image/jpeg")

        client.storage.from_.assert_called_with("media")
        bucket.upload.assert_called_once_with("a.jpg", JPEG_BYTES, file_options={"content-type": "image/jpeg"})
        assert url == "https://project.supabase.co/storage/v1/object/public/media/a.jpg"


def test_build_media_relay_requires_supabase_settings(test_config):
    config = test_config.model_copy(update={"media_storage_backend": "supabase"})

    with pytest.raises(ConfigurationError):
        build_media_relay(config)
