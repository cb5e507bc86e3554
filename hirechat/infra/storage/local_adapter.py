# =============================================================================
# File: hirechat/infra/storage/local_adapter.py
# Description: Local file storage adapter implementing ObjectStoragePort
#              (for development; production uses an object store)
# =============================================================================

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath
from typing import Optional

import aiofiles
import aiofiles.os

from hirechat.common.exceptions.exceptions import StorageError
from hirechat.config.storage_config import StorageConfig, get_storage_config

log = logging.getLogger("hirechat.infra.storage")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_object_path(path: str) -> str:
    """
    Normalise a bucket-relative object path.

    Drops empty, '.' and '..' segments and replaces characters outside
    [A-Za-z0-9._-] in each segment with '_'.

    Raises:
        StorageError: nothing usable remains
    """
    segments = []
    for part in PurePosixPath(path.replace("\\", "/")).parts:
        if part in ("", ".", "..", "/"):
            continue
        cleaned = _UNSAFE_CHARS.sub("_", part).strip("_") or "_"
        segments.append(cleaned)
    if not segments:
        raise StorageError(f"Invalid object path: {path!r}")
    return "/".join(segments)


class LocalStorageAdapter:
    """
    Stores files in a local directory and serves them under a static URL.

    Usage:
        storage = LocalStorageAdapter.from_config()
        url = await storage.upload("chat-attachments/p1/temp-1-cv.pdf", data, "application/pdf")
    """

    def __init__(self, base_path: str = "storage", base_url: str = "/static/storage"):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_config(cls, config: Optional[StorageConfig] = None) -> 'LocalStorageAdapter':
        config = config or get_storage_config()
        return cls(base_path=config.base_path, base_url=config.base_url)

    async def upload(self, path: str, content: bytes, content_type: str) -> str:
        """
        Write an object and return its public URL.

        Raises:
            StorageError: the file could not be written
        """
        relative = sanitize_object_path(path)
        file_path = self.base_path / relative
        try:
            await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(content)
        except OSError as error:
            log.error(f"Failed to upload {relative}: {error}")
            raise StorageError(f"Upload of {relative} failed: {error}") from error

        public_url = f"{self.base_url}/{relative}"
        log.info(f"File uploaded ({content_type}, {len(content)}B): {file_path} -> {public_url}")
        return public_url

    async def delete_by_url(self, url: str) -> bool:
        """Delete an object by its public URL. Returns False when absent."""
        if not url.startswith(self.base_url):
            log.warning(f"URL does not match base URL: {url}")
            return False

        file_path = self.base_path / sanitize_object_path(url[len(self.base_url):])
        if await aiofiles.os.path.exists(file_path):
            await aiofiles.os.remove(file_path)
            log.info(f"File deleted by URL: {file_path}")
            return True

        log.warning(f"File not found for deletion: {file_path}")
        return False
