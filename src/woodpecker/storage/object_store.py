"""Filesystem-backed object store for raw uploaded bytes.

Keys follow ``{owner_id}/{uuid}.{ext}``. The content type given at write
time is kept in a ``<key>.meta.json`` sidecar. Keys are resolved strictly
inside the store root; anything escaping it is rejected.
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path

from woodpecker.errors import NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

_META_SUFFIX = ".meta.json"


class ObjectStore:
    """Write-once object store rooted at *root* (created on first write)."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    @staticmethod
    def make_key(owner_id: str, ext: str) -> str:
        """Return a fresh ``{owner_id}/{uuid}.{ext}`` key."""
        ext = ext.lstrip(".").lower()
        owner = owner_id or "anonymous"
        return f"{owner}/{uuid.uuid4()}.{ext}" if ext else f"{owner}/{uuid.uuid4()}"

    def put(self, key: str, data: bytes, content_type: str) -> None:
        """Store *data* under *key*. Existing keys are never overwritten."""
        path = self._path(key)
        if path.exists():
            raise PersistenceError(f"Object already exists: {key}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            (path.parent / (path.name + _META_SUFFIX)).write_text(
                json.dumps({"content_type": content_type, "size": len(data)}),
                encoding="utf-8",
            )
        except OSError as exc:
            raise PersistenceError(f"Failed to store object '{key}': {exc}") from exc
        logger.debug("Stored %s (%d bytes, %s)", key, len(data), content_type)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFoundError(f"Object not found: {key}")
        return path.read_bytes()

    def content_type(self, key: str) -> str | None:
        """Content type recorded at write time; None if missing or unreadable."""
        meta = self._path(key + _META_SUFFIX)
        if not meta.is_file():
            return None
        try:
            data = json.loads(meta.read_text(encoding="utf-8"))
        except ValueError as exc:
            logger.warning("Ignoring unreadable metadata for %s: %s", key, exc)
            return None
        return data.get("content_type") if isinstance(data, dict) else None

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        path = self._path(key)
        path.unlink(missing_ok=True)
        (path.parent / (path.name + _META_SUFFIX)).unlink(missing_ok=True)

    def _path(self, key: str) -> Path:
        if not key or key.startswith(("/", "\\")):
            raise ValidationError(f"Invalid object key: {key!r}")
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise ValidationError(f"Object key escapes the store root: {key!r}")
        return path
