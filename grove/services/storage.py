import asyncio
import logging
import os
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from grove.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class StoredFile:
    url: str
    key: str


class LocalStorage:
    """Keeps uploads on the local filesystem and serves them under base_url."""

    def __init__(self, root: str, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes the storage root: {key}")
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def store(self, data: bytes, folder: str = "uploads", filename: str = "") -> StoredFile:
        extension = os.path.splitext(filename)[1].lower()
        key = f"{folder}/{int(time.time() * 1000)}-{secrets.token_hex(4)}{extension}"
        await asyncio.to_thread(self._write, self._path(key), data)
        return StoredFile(url=f"{self.base_url}/{key}", key=key)

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await asyncio.to_thread(path.unlink, True)

    def key_for_url(self, url: str) -> Optional[str]:
        """Media rows may point at external URLs; only ours map back to a key."""
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]


def build_storage(settings: Settings) -> LocalStorage:
    return LocalStorage(settings.STORAGE_LOCAL_PATH, settings.STORAGE_BASE_URL)


async def purge_media(storage: LocalStorage, urls: Iterable[str]) -> int:
    """Deletes stored files behind media URLs removed from the database."""
    removed = 0
    for url in urls:
        key = storage.key_for_url(url)
        if key is None:
            continue
        try:
            await storage.delete(key)
            removed += 1
        except (OSError, ValueError) as e:
            logger.error(f"Failed to delete stored file {key}: {e}")
    return removed
