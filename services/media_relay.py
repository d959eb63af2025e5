"""
Media relay: stages caller-supplied media bytes at a URL providers can fetch
"""

import asyncio
import base64
import binascii
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union
from uuid import uuid4

import httpx
from storage3.exceptions import StorageException
from supabase import Client, create_client

from schemas.publishing import MediaInput, PublishMedia
from utils.config import Config
from utils.exceptions import ConfigurationError, InvalidMediaData, StorageUnavailable
from utils.logging import get_logger

logger = get_logger(__name__)

MAX_FILE_SIZE = 100 * 1024 * 1024

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
}
ALLOWED_MIME_TYPES = frozenset(EXTENSIONS)

MediaPayload = Union[bytes, bytearray, str, List[int]]


def decode_payload(data: MediaPayload) -> bytes:
    """
    Decode the transport encodings clients send media in.

    Accepts raw bytes, a base64 string (optionally a `data:` URL) or a list of byte values.
    """
    if isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
    elif isinstance(data, str):
        encoded = data.split(",", 1)[1] if data.startswith("data:") and "," in data else data
        try:
            raw = base64.b64decode(encoded.strip(), validate=True)
        except (binascii.Error, ValueError):
            raise InvalidMediaData("Media payload is not valid base64")
    elif isinstance(data, list):
        try:
            raw = bytes(data)
        except (TypeError, ValueError):
            raise InvalidMediaData("Media payload byte list contains values outside 0-255")
    else:
        raise InvalidMediaData(f"Unsupported media payload type: {type(data).__name__}")

    if not raw:
        raise InvalidMediaData("Media payload is empty")
    return raw


def check_mime_type(mime_type: str) -> str:
    normalized = (mime_type or "").lower().strip()
    if normalized not in ALLOWED_MIME_TYPES:
        raise InvalidMediaData(
            f"Unsupported media type: {mime_type}",
            {"allowed": sorted(ALLOWED_MIME_TYPES)}
        )
    return normalized


class StorageBackend(ABC):
    """Durable blob storage with public read URLs"""

    @abstractmethod
    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        """Store the blob under `key` and return its public URL"""


class LocalStorageBackend(StorageBackend):
    """Writes to a local directory the app serves under /media"""

    def __init__(self, base_dir: Union[str, Path], public_base_url: str):
        self.base_dir = Path(base_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _write(self, key: str, data: bytes) -> None:
        path = self.base_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        try:
            await asyncio.to_thread(self._write, key, data)
        except OSError as e:
            raise StorageUnavailable("Local media storage write failed", {"reason": type(e).__name__})
        return f"{self.public_base_url}/media/{key}"


class SupabaseStorageBackend(StorageBackend):
    """Uploads to a public Supabase Storage bucket"""

    def __init__(self, supabase_url: str, service_role_key: str, bucket: str, client: Optional[Client] = None):
        self.bucket = bucket
        self._supabase_url = supabase_url
        self._service_role_key = service_role_key
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(self._supabase_url, self._service_role_key)
        return self._client

    def _upload(self, key: str, data: bytes, mime_type: str) -> str:
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(key, data, file_options={"content-type": mime_type})
        return bucket.get_public_url(key)

    async def put(self, key: str, data: bytes, mime_type: str) -> str:
        try:
            url = await asyncio.to_thread(self._upload, key, data, mime_type)
        except (StorageException, httpx.HTTPError) as e:
            raise StorageUnavailable("Supabase storage upload failed", {"reason": str(e)})
        return url.rstrip("?")


class MediaRelay:
    """Validates media and stages it; every call yields a new, independently fetchable URL"""

    def __init__(self, backend: StorageBackend, max_size: int = MAX_FILE_SIZE):
        self.backend = backend
        self.max_size = max_size

    async def stage(self, data: MediaPayload, mime_type: str) -> str:
        mime_type = check_mime_type(mime_type)
        raw = decode_payload(data)
        if len(raw) > self.max_size:
            raise InvalidMediaData(
                "Media exceeds the maximum upload size",
                {"size": len(raw), "limit": self.max_size}
            )

        key = f"{datetime.now(timezone.utc):%Y/%m/%d}/{uuid4().hex}{EXTENSIONS[mime_type]}"
        url = await self.backend.put(key, raw, mime_type)
        logger.info("Media staged", key=key, mime_type=mime_type, size=len(raw))
        return url

    async def stage_input(self, media: MediaInput) -> PublishMedia:
        """Stage a caller-supplied item unless it already points at a staged URL"""
        mime_type = check_mime_type(media.mime_type)
        if media.url:
            return PublishMedia(url=media.url, mime_type=mime_type, thumbnail_url=media.thumbnail_url)
        if media.data is None:
            raise InvalidMediaData("Media item needs either data or a url")
        url = await self.stage(media.data, mime_type)
        return PublishMedia(url=url, mime_type=mime_type, thumbnail_url=media.thumbnail_url)


def build_media_relay(config: Config) -> MediaRelay:
    """Pick the storage backend named by MEDIA_STORAGE_BACKEND"""
    if config.media_storage_backend == "supabase":
        if not config.supabase_url or not config.supabase_service_role_key:
            raise ConfigurationError(
                "Missing Supabase storage configuration",
                {"missing": [name for name, value in (
                    ("SUPABASE_URL", config.supabase_url),
                    ("SUPABASE_SERVICE_ROLE_KEY", config.supabase_service_role_key),
                ) if not value]}
            )
        backend: StorageBackend = SupabaseStorageBackend(
            config.supabase_url,
            config.supabase_service_role_key,
            config.supabase_bucket
        )
    else:
        backend = LocalStorageBackend(config.media_local_dir, config.public_base_url)
    return MediaRelay(backend)
