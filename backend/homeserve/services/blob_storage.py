import logging
import os
import re
import time
from pathlib import Path
from uuid import uuid4

from homeserve.services.errors import StorageFailureError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class LocalBlobStorage:
    def __init__(self, root_dir: str) -> None:
        self.root = Path(root_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def store(self, *, owner_id: str, filename: str, content: bytes) -> str:
        owner_dir = _UNSAFE_CHARS.sub("_", owner_id) or "anonymous"
        suffix = _UNSAFE_CHARS.sub("", Path(filename).suffix.lower())
        name = f"doc-{int(time.time() * 1000)}-{uuid4().hex[:10]}{suffix}"
        storage_path = f"{owner_dir}/{name}"
        target = self._resolve(storage_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            raise StorageFailureError(f"Could not store {filename}") from exc
        logger.info("Stored blob %s (%d bytes)", storage_path, len(content))
        return storage_path

    def delete(self, storage_path: str) -> None:
        target = self._resolve(storage_path)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFailureError(f"Could not delete {storage_path}") from exc

    def exists(self, storage_path: str) -> bool:
        return self._resolve(storage_path).is_file()

    def _resolve(self, storage_path: str) -> Path:
        target = (self.root / storage_path).resolve()
        if self.root not in target.parents:
            raise StorageFailureError(f"Storage path escapes upload root: {storage_path}")
        return target


default_uploads = str(Path(__file__).resolve().parents[2] / "data" / "uploads")
blob_storage = LocalBlobStorage(root_dir=os.getenv("UPLOADS_DIR", default_uploads))
