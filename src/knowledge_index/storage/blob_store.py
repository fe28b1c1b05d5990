"""
Blob Store

Async key → JSON object store used as the persistence backend of the index
and of the knowledge entities (nodes, conversation logs, documents).

Contract
--------
- ``save_json(key, value)``  overwrite whatever is stored under ``key``
- ``read_json(key)``         the stored value, or ``None`` when absent
- ``list_keys(prefix)``      sorted keys starting with ``prefix``
- ``ping()``                 True when the backend is reachable

No partial writes and no locking primitive are offered. Callers that need
read-modify-write consistency must serialize themselves.

Keys
----
Keys are ``/``-separated segments of ``[A-Za-z0-9._-]``. Empty segments and
``..`` are rejected to prevent path traversal in the file backend.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..config import settings
from ..core.errors import BlobStoreError

logger = logging.getLogger("kindex.blob_store")


# ---------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------

KEY_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def validate_key(key: str) -> str:
    """
    Validate a blob key and return it unchanged.

    Raises
    ------
    BlobStoreError
        If the key is empty, has empty segments, or contains ``..``.
    """
    if not key or not isinstance(key, str):
        raise BlobStoreError("Blob key is required.")

    for segment in key.split("/"):
        if segment in ("", ".", "..") or not KEY_SEGMENT_PATTERN.match(segment):
            raise BlobStoreError(f"Invalid blob key '{key}'.")

    return key


# ---------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------

@runtime_checkable
class BlobStore(Protocol):
    async def read_json(self, key: str) -> Optional[Any]: ...

    async def save_json(self, key: str, value: Any) -> None: ...

    async def list_keys(self, prefix: str = "") -> List[str]: ...

    async def ping(self) -> bool: ...


# ---------------------------------------------------------------------
# Filesystem Backend
# ---------------------------------------------------------------------

class FileBlobStore:
    """
    Stores each key as a JSON file under a root directory.

    Writes go to a temporary file in the target directory and are moved into
    place with ``os.replace`` so a reader never sees a half-written document.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        self._root = Path(root or settings.data_root_path)

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, key: str) -> Path:
        return self._root.joinpath(*validate_key(key).split("/"))

    # ------------------------------------------------------------------
    # Sync implementations (run in a worker thread)
    # ------------------------------------------------------------------

    def _read_sync(self, path: Path) -> Optional[Any]:
        if not path.exists():
            return None

        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise BlobStoreError(
                f"Failed to read blob '{path.name}': {type(exc).__name__}"
            ) from exc

    def _write_sync(self, path: Path, value: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(value, f, ensure_ascii=False, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise BlobStoreError(
                f"Failed to write blob '{path.name}': {type(exc).__name__}"
            ) from exc

    def _list_sync(self, prefix: str) -> List[str]:
        if not self._root.exists():
            return []

        keys = []
        for path in self._root.rglob("*.json"):
            if path.name.startswith("."):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def read_json(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read_sync, self._path_for(key))

    async def save_json(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(self._write_sync, path, value)
        logger.debug("Saved blob %s", key)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._list_sync, prefix)

    async def ping(self) -> bool:
        def _check() -> bool:
            self._root.mkdir(parents=True, exist_ok=True)
            return os.access(self._root, os.R_OK | os.W_OK)

        try:
            return await asyncio.to_thread(_check)
        except OSError:
            logger.warning("Blob store root %s is not accessible", self._root)
            return False


# ---------------------------------------------------------------------
# In-Memory Backend
# ---------------------------------------------------------------------

class InMemoryBlobStore:
    """
    Keeps JSON values in a dict. Values are round-tripped through ``json`` so
    callers never share mutable state with the store.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._blobs: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._blobs[validate_key(key)] = json.dumps(value)

    async def read_json(self, key: str) -> Optional[Any]:
        raw = self._blobs.get(validate_key(key))
        return None if raw is None else json.loads(raw)

    async def save_json(self, key: str, value: Any) -> None:
        try:
            self._blobs[validate_key(key)] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise BlobStoreError(
                f"Failed to write blob '{key}': {type(exc).__name__}"
            ) from exc

    async def list_keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._blobs if k.startswith(prefix))

    async def ping(self) -> bool:
        return True
