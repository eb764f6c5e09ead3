from __future__ import annotations

import threading
from pathlib import Path
from typing import Protocol

from books_api_pipeline.core import atomic_write_bytes, sha256_bytes
from books_api_pipeline.pipeline.types import ArtifactRef


class ArtifactNotFoundError(KeyError):
    """No artifact stored under the requested key"""


class ArtifactStore(Protocol):
    def put_bytes(
        self,
        *,
        name: str,
        key: str,
        data: bytes,
        content_type: str | None = None,
    ) -> ArtifactRef: ...

    def get_bytes(self, key: str) -> bytes: ...

    def exists(self, key: str) -> bool: ...


def _clean_key(key: str) -> str:
    parts = [p for p in key.replace("\\", "/").split("/") if p]
    if not parts or any(p in (".", "..") for p in parts):
        raise ValueError(f"Invalid artifact key: {key!r}")
    return "/".join(parts)


class LocalArtifactStore:
    """
    Artifact bucket on the local filesystem: `{root}/{key}`.

    Writes are atomic; a key is immutable once written with different content.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        return self.root / _clean_key(key)

    def put_bytes(
        self,
        *,
        name: str,
        key: str,
        data: bytes,
        content_type: str | None = None,
    ) -> ArtifactRef:
        path = self.path_for(key)
        digest = sha256_bytes(data)
        with self._lock:
            if path.exists() and sha256_bytes(path.read_bytes()) != digest:
                raise FileExistsError(f"Artifact key already holds different content: {key}")
            atomic_write_bytes(path, data)
        return ArtifactRef(
            name=name,
            key=_clean_key(key),
            bytes=len(data),
            sha256=digest,
            content_type=content_type,
        )

    def get_bytes(self, key: str) -> bytes:
        path = self.path_for(key)
        if not path.is_file():
            raise ArtifactNotFoundError(key)
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()
