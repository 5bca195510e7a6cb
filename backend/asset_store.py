"""
Asset Store - local persistence for provider results.

Provider result URLs are short-lived, so every completed task's result is
downloaded into the outputs directory and served from there. Images are
validated with Pillow and get a JPEG thumbnail next to the original; other
media (videos) are stored as-is.

Example Usage:
    store = AssetStore()
    stored = await store.persist("https://cdn.example.com/abc.png", "task-123")
    stored.url            # "/outputs/task-123.png"
    stored.thumbnail_url  # "/outputs/task-123_thumb.jpg"
"""

import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import httpx

import config
from utils.async_helpers import run_in_thread
from utils.image_utils import load_image, save_thumbnail, thumbnail_name

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r'[^A-Za-z0-9_.-]+')

_CONTENT_TYPE_EXTENSIONS = {
    'image/png': '.png',
    'image/jpeg': '.jpg',
    'image/webp': '.webp',
    'image/gif': '.gif',
    'video/mp4': '.mp4',
    'video/webm': '.webm',
    'video/quicktime': '.mov',
}


class AssetPersistError(Exception):
    """Downloading or storing a remote result failed."""


@dataclass
class StoredAsset:
    filename: str
    path: Path
    url: str
    content_type: str
    size: int
    thumbnail_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'filename': self.filename,
            'url': self.url,
            'thumbnailUrl': self.thumbnail_url,
            'contentType': self.content_type,
            'size': self.size,
        }


class AssetStore:
    """Downloads remote results into ``outputs_dir`` and resolves them for serving."""

    def __init__(
        self,
        outputs_dir: Union[str, Path, None] = None,
        url_prefix: str = config.OUTPUTS_URL_PREFIX,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = config.DOWNLOAD_TIMEOUT,
    ):
        self.outputs_dir = Path(outputs_dir or config.OUTPUTS_DIR)
        self.outputs_dir.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix.rstrip('/')
        self._transport = transport
        self._timeout = timeout

    def url_for(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    async def persist(self, remote_url: Optional[str], name_hint: Optional[str] = None) -> StoredAsset:
        """
        Download ``remote_url`` and store it under a name derived from ``name_hint``.

        Raises AssetPersistError when the download fails or an image payload
        cannot be decoded.
        """
        if not remote_url:
            raise AssetPersistError("No result URL to persist")

        content, content_type = await self._download(remote_url)
        extension = self._extension_for(remote_url, content_type)
        stem = _SAFE_NAME_RE.sub('_', name_hint or '') or Path(urlparse(remote_url).path).stem or 'asset'
        filename = f"{stem}{extension}"

        try:
            return await run_in_thread(self._store, filename, content, content_type)
        except (OSError, ValueError) as exc:
            raise AssetPersistError(f"Could not store {filename}: {exc}") from exc

    async def _download(self, remote_url: str):
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(remote_url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AssetPersistError(f"Download of {remote_url} failed: {exc}") from exc

        content_type = response.headers.get('content-type', '').split(';')[0].strip().lower()
        return response.content, content_type

    @staticmethod
    def _extension_for(remote_url: str, content_type: str) -> str:
        if content_type in _CONTENT_TYPE_EXTENSIONS:
            return _CONTENT_TYPE_EXTENSIONS[content_type]
        suffix = Path(urlparse(remote_url).path).suffix.lower()
        if suffix:
            return suffix
        return mimetypes.guess_extension(content_type or '') or '.png'

    def _store(self, filename: str, content: bytes, content_type: str) -> StoredAsset:
        path = self.outputs_dir / filename
        is_image = content_type.startswith('image/') or (
            not content_type.startswith('video/') and path.suffix in ('.png', '.jpg', '.jpeg', '.webp')
        )

        thumbnail_url = None
        if is_image:
            image = load_image(content)
            path.write_bytes(content)
            thumb_file = thumbnail_name(filename)
            save_thumbnail(image, self.outputs_dir / thumb_file)
            thumbnail_url = self.url_for(thumb_file)
        else:
            path.write_bytes(content)

        logger.info("Stored %s (%d bytes)", filename, len(content))
        return StoredAsset(
            filename=filename,
            path=path,
            url=self.url_for(filename),
            content_type=content_type or 'application/octet-stream',
            size=len(content),
            thumbnail_url=thumbnail_url,
        )

    def resolve(self, filename: str) -> Path:
        """Path of a stored asset; LookupError if it is missing or outside the store."""
        path = (self.outputs_dir / filename).resolve()
        if self.outputs_dir.resolve() not in path.parents or not path.is_file():
            raise LookupError(f"Asset not found: {filename}")
        return path
