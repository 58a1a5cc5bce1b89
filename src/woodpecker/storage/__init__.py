"""Raw file storage."""

from woodpecker.storage.object_store import ObjectStore

__all__ = ["ObjectStore"]
