"""
Blob storage for uploaded documents.

The engine only ever sees opaque keys: it stores bytes, keeps the key on
the record, and later asks for a time-limited read URL. Bucket layout is
the storage backend's business.
"""

from __future__ import annotations

import logging
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    @abstractmethod
    def put(self, data: bytes, folder: str, filename: str) -> str:
        """Store bytes and return an opaque key."""

    @abstractmethod
    def get_read_url(self, key: str | None, ttl: int = 3600) -> Optional[str]:
        """Temporary read URL for a key, or None when unavailable."""


class LocalBlobStorage(BlobStorage):
    """Filesystem-backed storage under a single root directory.

    Read URLs are ``file://`` URIs, or ``{base_url}/{key}?expires=...`` when
    a public base URL fronts the directory.
    """

    def __init__(self, root: str | Path, base_url: str | None = None):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/") if base_url else None

    def put(self, data: bytes, folder: str, filename: str) -> str:
        suffix = PurePosixPath(filename).suffix.lower()
        key = f"{folder}/{uuid.uuid4()}{suffix}"
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("Stored %d bytes at %s", len(data), key)
        return key

    def get_read_url(self, key: str | None, ttl: int = 3600) -> Optional[str]:
        if not key:
            return None
        try:
            path = self._path(key)
        except ValueError:
            logger.warning("Refusing read URL for suspicious key %r", key)
            return None
        if not path.is_file():
            logger.warning("No stored object for key %s", key)
            return None
        if self.base_url:
            return f"{self.base_url}/{key}?expires={int(time.time()) + ttl}"
        return path.resolve().as_uri()

    def _path(self, key: str) -> Path:
        parts = PurePosixPath(key).parts
        if not parts or ".." in parts or PurePosixPath(key).is_absolute():
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.root.joinpath(*parts)
