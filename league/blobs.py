"""Blob storage for spider photos."""

import asyncio
import errno
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import unquote, urlparse

from .config import (
    BLOB_BASE_URL, BLOB_ROOT, IMAGE_CONTENT_TYPE, MAX_IMAGE_MB, MAX_IMAGE_SIDE, MIN_IMAGE_SIDE,
    STORE_MAX_RETRIES, STORE_RETRY_BASE_SECONDS,
)
from .errors import InvalidData, NotFound, QuotaExceeded, Unavailable
from .models import ImageMetadata
from .retry import retry_unavailable

logger = logging.getLogger(__name__)


def validate_image(metadata: ImageMetadata):
    """Reject photos that are too large or whose dimensions are out of range."""
    if metadata.size_mb > MAX_IMAGE_MB:
        raise InvalidData(f"Image is {metadata.size_mb:.1f} MB; the limit is {MAX_IMAGE_MB:g} MB")
    if metadata.width < MIN_IMAGE_SIDE or metadata.height < MIN_IMAGE_SIDE:
        raise InvalidData(
            f"Image is {metadata.width}x{metadata.height}; it must be at least {MIN_IMAGE_SIDE}x{MIN_IMAGE_SIDE}"
        )
    if metadata.width > MAX_IMAGE_SIDE or metadata.height > MAX_IMAGE_SIDE:
        raise InvalidData(
            f"Image is {metadata.width}x{metadata.height}; it must be at most {MAX_IMAGE_SIDE}x{MAX_IMAGE_SIDE}"
        )


def spider_image_path(spider_id: str) -> str:
    return f"spiders/{spider_id}/{uuid.uuid4()}.jpg"


class BlobStore(ABC):
    """Stores binary objects and hands back a URL for each."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str = IMAGE_CONTENT_TYPE) -> str:
        """Store data at path and return its URL."""

    @abstractmethod
    async def delete(self, url: str):
        """Remove the object behind url."""


class LocalBlobStore(BlobStore):
    """Keeps blobs as files under a root directory.

    Transient I/O failures are retried like document store calls.
    """

    def __init__(self, root: str = BLOB_ROOT, base_url: str = BLOB_BASE_URL,
                 max_retries: int = STORE_MAX_RETRIES,
                 retry_base_seconds: float = STORE_RETRY_BASE_SECONDS):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds

    def _target(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise InvalidData(f"Blob path escapes the store: {path}")
        return target

    def url_for(self, path: str) -> str:
        if self.base_url == "file:":
            return self._target(path).as_uri()
        return f"{self.base_url}/{path}"

    def path_for(self, url: str) -> Path:
        if url.startswith("file://") and self.base_url == "file:":
            local = Path(unquote(urlparse(url).path))
            return self._target(str(local.relative_to(self.root)))
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            raise InvalidData(f"Not a URL from this blob store: {url}")
        return self._target(url[len(prefix):])

    async def _retrying(self, label: str, operation, *args):
        return await retry_unavailable(
            f"Blob {label}", operation, *args,
            max_retries=self.max_retries, base_seconds=self.retry_base_seconds,
        )

    async def _write(self, target: Path, data: bytes):
        def write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(write)
        except OSError as e:
            if e.errno == errno.ENOSPC:
                raise QuotaExceeded(str(e)) from e
            raise Unavailable(str(e)) from e

    async def _unlink(self, target: Path):
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:  # removed by an earlier attempt
            return
        except OSError as e:
            raise Unavailable(str(e)) from e

    async def upload(self, path: str, data: bytes, content_type: str = IMAGE_CONTENT_TYPE) -> str:
        target = self._target(path)
        await self._retrying("upload", self._write, target, data)
        logger.info(f"Uploaded {len(data)} bytes ({content_type}) to {path}")
        return self.url_for(path)

    async def delete(self, url: str):
        try:
            target = self.path_for(url)
        except ValueError as e:
            raise InvalidData(f"Not a URL from this blob store: {url}") from e
        if not target.exists():
            raise NotFound("blob", url)
        await self._retrying("delete", self._unlink, target)
        logger.info(f"Deleted blob {url}")
