# backend/docgen/services/storage.py
from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Optional

from ..config import settings
from ..errors import StorageError


def artifact_key(module: str, project_id: int, doc_type: str, version: int, *, failed: bool = False) -> str:
    # placeholders never share a key with the real artifact an abandoned unit may still write
    suffix = "-failed" if failed else ""
    return f"{module}/{project_id}/{doc_type}-v{version}{suffix}.docx"


class ArtifactStorage:
    """Opaque byte store. Implementations raise StorageError on failure."""

    def put(self, key: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def get(self, key: str) -> bytes:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class LocalArtifactStorage(ArtifactStorage):
    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.artifact_root).resolve()

    def _path(self, key: str) -> Path:
        p = (self.root / key).resolve()
        if self.root not in p.parents:
            raise StorageError(f"key escapes storage root: {key}")
        return p

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"put failed for {key}: {e}") from e

    def get(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as e:
            raise StorageError(f"get failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"delete failed for {key}: {e}") from e


class InMemoryArtifactStorage(ArtifactStorage):
    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str) -> None:
        with self._lock:
            self.objects[key] = (bytes(data), content_type)

    def get(self, key: str) -> bytes:
        with self._lock:
            try:
                return self.objects[key][0]
            except KeyError:
                raise StorageError(f"no object at {key}") from None

    def delete(self, key: str) -> None:
        with self._lock:
            self.objects.pop(key, None)
