"""
File storage adapters for uploaded media.

Only the local filesystem adapter is implemented. Stored files get a
random hex prefix so two uploads with the same name never collide:

    <STORAGE_LOCAL_PATH>/
    ├── 3f9a1c2e-grandma.jpg
    └── backups/
        └── pre-import-backup-<timestamp>.zip

Writes here are not part of any database transaction.
"""

import mimetypes
import os
import secrets
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os

from app.core.config import settings


class StorageAdapter(Protocol):
    """What the importer and snapshot builder need from a storage backend."""

    root: Path

    async def upload(self, data: bytes, filename: str, content_type: str | None = None) -> str: ...

    def get_url(self, stored_path: str) -> str: ...

    def path_from_url(self, url: str) -> str | None: ...

    async def read(self, stored_path: str) -> bytes: ...


def guess_content_type(filename: str) -> str:
    """Content type from the file extension, defaulting to JPEG for photos."""
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "image/jpeg"


class LocalStorage:
    """Stores files under a local directory and serves them from a URL prefix."""

    def __init__(self, root: str | Path | None = None, url_prefix: str | None = None) -> None:
        self.root = Path(root or settings.STORAGE_LOCAL_PATH)
        self.url_prefix = (url_prefix or settings.STORAGE_PUBLIC_URL_PREFIX).rstrip("/")

    async def upload(self, data: bytes, filename: str, content_type: str | None = None) -> str:
        """
        Write data under a unique name and return its storage-relative path.

        content_type is accepted for interface parity with object stores;
        the local filesystem does not record it.
        """
        await aiofiles.os.makedirs(self.root, exist_ok=True)
        name = os.path.basename(filename) or "upload"
        stored_name = f"{secrets.token_hex(4)}-{name}"
        async with aiofiles.open(self.root / stored_name, "wb") as fh:
            await fh.write(data)
        return stored_name

    def get_url(self, stored_path: str) -> str:
        return f"{self.url_prefix}/{stored_path}"

    def path_from_url(self, url: str) -> str | None:
        """Inverse of get_url; None when the URL is not served by this storage."""
        prefix = f"{self.url_prefix}/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]

    async def read(self, stored_path: str) -> bytes:
        async with aiofiles.open(self.root / stored_path, "rb") as fh:
            return await fh.read()


def get_storage_adapter() -> LocalStorage:
    """Storage adapter configured from settings (FastAPI dependency)."""
    return LocalStorage()
