"""Filesystem object storage for uploaded document bytes.

Objects live under a bucket directory and are addressed by relative paths
such as `<document_id>/<file_name>`. Every call runs in a worker thread
under a timeout.
"""
import asyncio
import shutil
from pathlib import Path

import structlog

from fundingiq import config
from fundingiq.errors import FetchError

logger = structlog.get_logger()


class ObjectStorage:
    """Bucket-style storage backed by a local directory."""

    def __init__(self, root: Path = None, timeout: float = None):
        """Initialize the storage.

        Args:
            root: Bucket directory (default from config)
            timeout: Per-call timeout in seconds (default from config)
        """
        self.root = Path(root or config.STORAGE_DIR)
        self.timeout = config.STORAGE_TIMEOUT if timeout is None else timeout
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        """Resolve an object path, refusing anything outside the bucket."""
        root = self.root.resolve()
        target = (root / path).resolve()
        if target == root or root not in target.parents:
            raise ValueError(f"Invalid storage path: {path}")
        return target

    async def upload(self, path: str, data: bytes) -> str:
        """Store bytes at `path`, replacing any existing object."""
        target = self._resolve(path)

        def _write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        async with asyncio.timeout(self.timeout):
            await asyncio.to_thread(_write)

        logger.info("object_uploaded", path=path, size=len(data))
        return path

    async def download(self, path: str) -> bytes:
        """Read the bytes stored at `path`.

        Raises:
            FetchError: If the object doesn't exist, can't be read, or the
                read times out
        """
        try:
            target = self._resolve(path)
            async with asyncio.timeout(self.timeout):
                data = await asyncio.to_thread(target.read_bytes)
        except TimeoutError as e:
            logger.error("object_download_timeout", path=path, timeout=self.timeout)
            raise FetchError(f"Timed out downloading file: {path}") from e
        except (OSError, ValueError) as e:
            logger.error("object_download_failed", path=path, error=str(e))
            raise FetchError(f"Failed to download file: {path}") from e

        logger.debug("object_downloaded", path=path, size=len(data))
        return data

    async def remove(self, path: str) -> bool:
        """Remove the object at `path` and its now-empty parent folder.

        Returns:
            True if an object was removed, False if it didn't exist
        """
        target = self._resolve(path)

        def _remove() -> bool:
            if not target.exists():
                return False
            target.unlink()
            parent = target.parent
            if parent != self.root.resolve() and not any(parent.iterdir()):
                shutil.rmtree(parent)
            return True

        async with asyncio.timeout(self.timeout):
            removed = await asyncio.to_thread(_remove)

        logger.info("object_removed", path=path, removed=removed)
        return removed


# Singleton instance for convenience
_storage_instance = None


def get_storage() -> ObjectStorage:
    """Get a singleton storage instance rooted at config.STORAGE_DIR."""
    global _storage_instance
    if _storage_instance is None:
        _storage_instance = ObjectStorage()
    return _storage_instance
