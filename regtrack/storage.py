"""
regtrack.storage
================

Object storage for evidence documents.

Two backends with the same three-method surface:

* :class:`LocalFileStorage` – files under a directory, ``file://`` URLs
  (default when no hosted backend is configured);
* :class:`SupabaseStorage` – the hosted bucket through its HTTP object
  API, using *httpx*.

``put(key, content, content_type)`` returns the public URL of the stored
object, ``remove(url)`` deletes it again and ``owns(url)`` tells whether
a URL points into this storage at all (external links never do).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from regtrack.settings import STORAGE_DIR, Settings, settings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when an object cannot be stored or removed."""


class LocalFileStorage:
    """Evidence files kept on local disk."""

    def __init__(self, base_path: Optional[Path] = None):
        """
        Args:
            base_path: Root directory for stored objects (created if missing)
        """
        self.base_path = Path(base_path or STORAGE_DIR)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for(self, url: str) -> Path:
        return Path(unquote(urlparse(url).path))

    def put(self, key: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        path = self.base_path / key
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, "wb") as f:
                f.write(content)
        except OSError as exc:
            raise StorageError(f"could not write {key}: {exc}") from exc
        logger.info(f"Stored {len(content)} bytes at {path}")
        return path.resolve().as_uri()

    def owns(self, url: str) -> bool:
        if not url or not url.startswith("file://"):
            return False
        try:
            self._path_for(url).resolve().relative_to(self.base_path.resolve())
        except ValueError:
            return False
        return True

    def remove(self, url: str) -> None:
        if not self.owns(url):
            raise StorageError(f"{url} is not in {self.base_path}")
        path = self._path_for(url)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"Stored object {path} was already gone")
        except OSError as exc:
            raise StorageError(f"could not remove {path}: {exc}") from exc


class SupabaseStorage:
    """
    Hosted bucket accessed over the storage REST API.

    Objects are uploaded to ``/storage/v1/object/<bucket>/<key>`` and
    served from ``/storage/v1/object/public/<bucket>/<key>``.
    """

    def __init__(self, base_url: str, api_key: str, bucket: str, timeout: float = 30.0,
                 client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self._client = client or httpx.Client(
            headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> Optional["SupabaseStorage"]:
        cfg = cfg or settings
        if not cfg.supabase_url:
            return None
        return cls(cfg.supabase_url, cfg.supabase_key, cfg.storage_bucket, cfg.http_timeout)

    @property
    def public_prefix(self) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/"

    def _object_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{key}"

    def put(self, key: str, content: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            resp = self._client.post(
                self._object_url(key),
                content=content,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"upload of {key} failed: {exc}") from exc
        return self.public_prefix + key

    def owns(self, url: str) -> bool:
        return bool(url) and url.startswith(self.public_prefix)

    def remove(self, url: str) -> None:
        if not self.owns(url):
            raise StorageError(f"{url} is not in bucket {self.bucket}")
        key = url[len(self.public_prefix):]
        try:
            resp = self._client.request(
                "DELETE",
                f"{self.base_url}/storage/v1/object/{self.bucket}",
                json={"prefixes": [key]},
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"delete of {key} failed: {exc}") from exc


def storage_from_settings(cfg: Optional[Settings] = None, base_path: Optional[Path] = None):
    """Hosted bucket when configured, else local disk."""
    return SupabaseStorage.from_settings(cfg) or LocalFileStorage(base_path)
