"""
Image storage for artwork pictures.

Two interchangeable stores implement the same capability:

* ``LocalImageStore`` writes files under an upload directory and hands back a
  ``/uploads/<file>`` reference.
* ``GcsImageStore`` uploads to a Google Cloud Storage bucket and hands back the
  public URL of the blob.

The active store is chosen once from settings by ``get_image_store()``; callers
only ever use ``put`` and ``delete``.
"""

from __future__ import annotations

import asyncio
import mimetypes
import os
import random
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import storage

from artshop.db.models import ImageUpload
from artshop.utils.config import MAX_IMAGE_BYTES, get_settings
from artshop.utils.logger import get_logger

_logger = get_logger(__name__)

LOCAL_PREFIX = "/uploads/"
GCS_PUBLIC_ROOT = "https://storage.googleapis.com"


class ImageStoreError(Exception):
    """An image could not be stored or removed.

    `retryable` is True for timeouts and other transient failures.
    """

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


def unique_name(filename: str) -> str:
    """`<ms timestamp>-<random>` plus the extension of the uploaded file."""
    ext = os.path.splitext(filename or "")[1].lower()
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"


class ImageStore(ABC):
    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    async def _bounded(self, func, *args):
        """Run a blocking call in a thread, failing with a retryable error on timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout
            )
        except TimeoutError as exc:
            raise ImageStoreError(
                f"Image storage did not answer within {self.timeout:g}s",
                retryable=True,
            ) from exc

    @abstractmethod
    async def put(self, upload: ImageUpload) -> str:
        """Store the image and return a reference that is readable right away."""

    @abstractmethod
    async def delete(self, reference: str) -> None:
        """Remove a previously stored image. Missing images are not an error."""


class LocalImageStore(ImageStore):
    def __init__(self, upload_dir: str, timeout: float = 20.0) -> None:
        super().__init__(timeout)
        self.upload_dir = Path(upload_dir)

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def put(self, upload: ImageUpload) -> str:
        name = unique_name(upload.filename)
        try:
            await self._bounded(self._write, self.upload_dir / name, upload.data)
        except OSError as exc:
            raise ImageStoreError(f"Failed to save file: {exc}") from exc
        _logger.debug(f"Stored {upload.filename} as {name}")
        return LOCAL_PREFIX + name

    def path_for(self, reference: str) -> Optional[Path]:
        if not reference.startswith(LOCAL_PREFIX):
            return None
        name = reference[len(LOCAL_PREFIX) :]
        # refuse anything that would escape the upload dir
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            return None
        return self.upload_dir / name

    async def delete(self, reference: str) -> None:
        path = self.path_for(reference)
        if path is None:
            _logger.debug(f"Not a local image reference: {reference}")
            return
        try:
            await self._bounded(path.unlink, True)
        except OSError as exc:
            raise ImageStoreError(f"Failed to remove {path.name}: {exc}") from exc


class GcsImageStore(ImageStore):
    """Stores images as public blobs in a Google Cloud Storage bucket."""

    def __init__(self, bucket, folder: str = "artworks", timeout: float = 20.0):
        super().__init__(timeout)
        self.bucket = bucket
        self.folder = folder.strip("/")

    def public_url(self, blob_name: str) -> str:
        return f"{GCS_PUBLIC_ROOT}/{self.bucket.name}/{blob_name}"

    def blob_name_for(self, reference: str) -> Optional[str]:
        prefix = f"{GCS_PUBLIC_ROOT}/{self.bucket.name}/"
        if not reference.startswith(prefix):
            return None
        return reference[len(prefix) :] or None

    def _upload(self, blob_name: str, upload: ImageUpload) -> None:
        blob = self.bucket.blob(blob_name)
        blob.cache_control = "public, max-age=31536000"
        blob.upload_from_string(upload.data, content_type=upload.content_type)
        blob.make_public()

    def _remove(self, blob_name: str) -> None:
        try:
            self.bucket.blob(blob_name).delete()
        except NotFound:
            _logger.debug(f"Blob {blob_name} already gone")

    async def put(self, upload: ImageUpload) -> str:
        blob_name = f"{self.folder}/{unique_name(upload.filename)}"
        try:
            await self._bounded(self._upload, blob_name, upload)
        except GoogleAPIError as exc:
            raise ImageStoreError(
                f"Failed to upload image: {exc}", retryable=True
            ) from exc
        _logger.debug(f"Uploaded {upload.filename} to {blob_name}")
        return self.public_url(blob_name)

    async def delete(self, reference: str) -> None:
        blob_name = self.blob_name_for(reference)
        if blob_name is None:
            _logger.debug(f"Not an image of bucket {self.bucket.name}: {reference}")
            return
        try:
            await self._bounded(self._remove, blob_name)
        except GoogleAPIError as exc:
            raise ImageStoreError(f"Failed to delete {blob_name}: {exc}") from exc


_store: Optional[ImageStore] = None


def _build_store() -> ImageStore:
    settings = get_settings()
    if settings.image_store == "gcs":
        if not settings.gcs_bucket:
            raise ImageStoreError("ARTSHOP_GCS_BUCKET must be set for the gcs store")
        _logger.info(f"Using Cloud Storage bucket {settings.gcs_bucket} for images")
        bucket = storage.Client().bucket(settings.gcs_bucket)
        return GcsImageStore(bucket, settings.image_folder, settings.upload_timeout)
    _logger.info(f"Using local directory {settings.upload_dir} for images")
    return LocalImageStore(settings.upload_dir, settings.upload_timeout)


def get_image_store() -> ImageStore:
    """The store of this process, built from settings on first use."""
    global _store
    if _store is None:
        _store = _build_store()
    return _store


def set_image_store(store: Optional[ImageStore]) -> None:
    """Install a specific store, or None to rebuild from settings next time."""
    global _store
    _store = store


def read_image_file(path: str, max_bytes: int = MAX_IMAGE_BYTES) -> ImageUpload:
    """
    Load an image from disk for upload.
    Raises ImageStoreError if the file is missing, not an image, or over max_bytes.
    """
    file = Path(path).expanduser()
    if not file.is_file():
        raise ImageStoreError(f"No such file: {path}")
    content_type, _ = mimetypes.guess_type(file.name)
    if not content_type or not content_type.startswith("image/"):
        raise ImageStoreError(f"Not an image file: {file.name}")
    size = file.stat().st_size
    if size > max_bytes:
        raise ImageStoreError(
            f"{file.name} is {size / 1024 / 1024:.1f} MiB, the limit is "
            f"{max_bytes / 1024 / 1024:g} MiB"
        )
    return ImageUpload(file.name, file.read_bytes(), content_type)
