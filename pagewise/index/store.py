from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[bytes]: ...

    async def put(self, key: str, blob: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store; snapshots live as long as the object."""

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, blob: bytes) -> None:
        self._data[key] = bytes(blob)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


def _safe_name(key: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", key).strip("._") or "_"


class FileStore:
    """One file per key under ``root``. Writes go through a temp file and ``os.replace``."""

    def __init__(self, root: str | Path, suffix: str = ".json") -> None:
        self.root = Path(root)
        self.suffix = suffix
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.root / f"{_safe_name(key)}{self.suffix}"

    def _read(self, key: str) -> Optional[bytes]:
        p = self.path_for(key)
        if not p.exists():
            return None
        return p.read_bytes()

    def _write(self, key: str, blob: bytes) -> None:
        target = self.path_for(key)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=self.suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("Wrote %d bytes to %s", len(blob), target)

    def _delete(self, key: str) -> None:
        p = self.path_for(key)
        if p.exists():
            p.unlink()

    async def get(self, key: str) -> Optional[bytes]:
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, blob: bytes) -> None:
        await asyncio.to_thread(self._write, key, blob)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)


def make_store(cfg: dict) -> KeyValueStore:
    backend = (cfg.get("backend") or "memory").lower()
    if backend == "file":
        return FileStore(cfg.get("dir") or ".pagewise/cache")
    if backend == "memory":
        return MemoryStore()
    raise RuntimeError(f"Unsupported store backend: {backend}")
