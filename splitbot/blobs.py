from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol

import anyio

logger = logging.getLogger(__name__)


class BlobStoreError(RuntimeError):
    """Raised when an image cannot be written to or read from blob storage."""


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> None: ...

    async def get(self, key: str) -> Optional[bytes]: ...

    async def delete(self, key: str) -> None: ...


class FileSystemBlobStore:
    """Blob store that keeps each object as a file below ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = anyio.Path(root)

    def _path_for(self, key: str) -> anyio.Path:
        parts = PurePosixPath(key).parts
        if not parts or any(part in {"..", "/"} for part in parts):
            raise BlobStoreError(f"Invalid blob key '{key}'.")
        return self.root.joinpath(*parts)

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path_for(key)
        try:
            await path.parent.mkdir(parents=True, exist_ok=True)
            await path.write_bytes(data)
        except OSError as exc:
            raise BlobStoreError(f"Could not store blob '{key}'.") from exc
        logger.info("Stored blob %s (%s, %d bytes)", key, content_type, len(data))

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            return await path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise BlobStoreError(f"Could not read blob '{key}'.") from exc

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await path.unlink(missing_ok=True)
        except OSError as exc:
            raise BlobStoreError(f"Could not delete blob '{key}'.") from exc
