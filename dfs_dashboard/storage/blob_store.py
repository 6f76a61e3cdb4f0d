"""Blob storage for uploaded file contents, addressed by generated ``uuid.ext`` paths."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Iterable, Optional

from ..errors import BlobStoreError

logger = logging.getLogger(__name__)


class DiskBlobStore:
    """Disk-backed blob store keeping one file per upload inside a bucket directory."""

    def __init__(self, base_path: str, bucket: str = "file_uploads"):
        self.base_path = Path(base_path).expanduser().resolve() / bucket
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BlobStoreError(f"Unable to prepare blob bucket {self.base_path}: {exc}") from exc

    def put(self, data: bytes, original_name: Optional[str] = None) -> str:
        suffix = ""
        if original_name:
            suffix = Path(original_name).suffix
        if not suffix:
            suffix = ".bin"
        blob_path = f"{uuid.uuid4().hex}{suffix}"
        target = self.base_path / blob_path
        temp = target.with_suffix(target.suffix + ".tmp")
        try:
            temp.write_bytes(data)
            temp.replace(target)
        except OSError as exc:
            temp.unlink(missing_ok=True)
            raise BlobStoreError(f"Unable to store upload '{original_name or blob_path}': {exc}") from exc
        return blob_path

    def get(self, blob_path: str) -> Optional[bytes]:
        target = self._resolve(blob_path)
        if not target.is_file():
            return None
        try:
            return target.read_bytes()
        except OSError as exc:
            raise BlobStoreError(f"Unable to read blob {blob_path}: {exc}") from exc

    def delete(self, blob_path: str) -> None:
        target = self._resolve(blob_path)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise BlobStoreError(f"Unable to delete blob {blob_path}: {exc}") from exc

    def exists(self, blob_path: str) -> bool:
        return self._resolve(blob_path).is_file()

    def cleanup_orphans(self, known_paths: Iterable[str]) -> list[str]:
        known = set(known_paths)
        removed: list[str] = []
        for path in self.base_path.glob("*"):
            if not path.is_file() or path.name in known:
                continue
            try:
                path.unlink()
            except OSError:
                logger.warning("Unable to remove orphan blob %s", path.name)
                continue
            removed.append(path.name)
        return removed

    def _resolve(self, blob_path: str) -> Path:
        target = (self.base_path / blob_path).resolve()
        if target.parent != self.base_path:
            raise BlobStoreError(f"Blob path {blob_path!r} escapes the bucket")
        return target
