import os
import shutil
import logging
from typing import Optional
from storage.base import BlobStore
from config.settings import settings

logger = logging.getLogger(__name__)

class LocalBlobStore(BlobStore):
    """
    Implements BlobStore on the local disk.
    Object paths are relative keys such as
    users/<owner>/conversations/<id>/<timestamp>_<name>.pdf
    """

    def __init__(self, root_path: Optional[str] = None):
        self.root_path = os.path.abspath(root_path or settings.storage.blob_path)
        os.makedirs(self.root_path, exist_ok=True)

    def _resolve(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root_path, path))
        if full != self.root_path and not full.startswith(self.root_path + os.sep):
            raise ValueError(f"Blob path escapes the store root: {path}")
        return full

    def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        full = self._resolve(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as f:
            f.write(data)
        logger.info(f"Stored blob {path} ({len(data)} bytes)")
        return path

    def get(self, path: str) -> bytes:
        with open(self._resolve(path), "rb") as f:
            return f.read()

    def exists(self, path: str) -> bool:
        return os.path.exists(self._resolve(path))

    def delete(self, path: str) -> None:
        full = self._resolve(path)
        if os.path.exists(full):
            os.remove(full)

    def delete_prefix(self, prefix: str) -> int:
        full = self._resolve(prefix)
        if not os.path.isdir(full):
            return 0
        count = sum(len(files) for _, _, files in os.walk(full))
        shutil.rmtree(full)
        return count
