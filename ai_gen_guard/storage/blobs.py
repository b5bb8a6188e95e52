"""
Blob storage for generated artifacts.

Provider outputs that arrive as raw bytes (audio, images) and cached results
are written here. The interface is what the rest of the package depends on;
``LocalBlobStorage`` is the filesystem-backed implementation.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional

from ai_gen_guard.core.errors import StorageError

logger = logging.getLogger(__name__)


class BlobStorage(ABC):
    """Uploads and deletes artifacts addressed by relative path."""

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``path`` and return its public location.

        Raises:
            StorageError: If the write fails
        """

    @abstractmethod
    def delete(self, paths: Iterable[str]) -> None:
        """Remove the given paths. Missing paths are ignored.

        Raises:
            StorageError: If a delete fails
        """


class LocalBlobStorage(BlobStorage):
    """Stores blobs under a root directory.

    Locations are ``file://`` URIs unless ``base_url`` is given, in which case
    they are ``<base_url>/<path>``.
    """

    def __init__(self, root: str, base_url: Optional[str] = None):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/") if base_url else None

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Blob path escapes storage root: {path}")
        return target

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to upload {path}: {e}") from e

        logger.debug("Stored %d bytes of %s at %s", len(data), content_type, target)
        if self.base_url:
            return f"{self.base_url}/{path}"
        return target.as_uri()

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def delete(self, paths: Iterable[str]) -> None:
        for path in paths:
            target = self._resolve(path)
            try:
                target.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to delete {path}: {e}") from e
