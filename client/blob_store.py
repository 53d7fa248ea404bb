"""Key-value blob stores holding the client's persisted sync state and replica."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class BlobStore(Protocol):
    """Minimal string blob store, the shape of browser ``localStorage``."""

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryBlobStore:
    """Non-persistent store, for tests and embedding."""

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._blobs.get(key)

    def put(self, key: str, value: str) -> None:
        self._blobs[key] = value

    def delete(self, key: str) -> None:
        self._blobs.pop(key, None)


class DirectoryBlobStore:
    """One file per key under ``root``. Writes are atomic (temp file + rename)."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def put(self, key: str, value: str) -> None:
        path = self._path(key)
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except OSError:
            logger.error("Failed to write blob %s", path)
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
