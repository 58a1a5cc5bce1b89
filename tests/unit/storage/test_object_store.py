"""Tests for the filesystem object store."""

from __future__ import annotations

import pytest

from woodpecker.errors import NotFoundError, PersistenceError, ValidationError
from woodpecker.storage.object_store import ObjectStore


def test_make_key_layout():
    key = ObjectStore.make_key("user-1", ".PDF")
    owner, name = key.split("/")
    assert owner == "user-1"
    assert name.endswith(".pdf")


def test_make_key_anonymous_owner():
    assert ObjectStore.make_key("", "txt").startswith("anonymous/")


def test_put_get_and_content_type(store):
    store.put("u/a.txt", b"hello", "text/plain")
    assert store.get("u/a.txt") == b"hello"
    assert store.content_type("u/a.txt") == "text/plain"
    assert store.exists("u/a.txt")


def test_put_never_overwrites(store):
    store.put("u/a.txt", b"one", "text/plain")
    with pytest.raises(PersistenceError):
        store.put("u/a.txt", b"two", "text/plain")
    assert store.get("u/a.txt") == b"one"


def test_get_missing(store):
    with pytest.raises(NotFoundError):
        store.get("u/missing.txt")
    assert store.content_type("u/missing.txt") is None


def test_unreadable_metadata_is_ignored(store):
    store.put("u/a.txt", b"hello", "text/plain")
    (store.root / "u" / "a.txt.meta.json").write_bytes(b"{not json")
    assert store.content_type("u/a.txt") is None
    assert store.get("u/a.txt") == b"hello"


def test_delete(store):
    store.put("u/a.txt", b"x", "text/plain")
    store.delete("u/a.txt")
    assert not store.exists("u/a.txt")
    store.delete("u/a.txt")  # idempotent


@pytest.mark.parametrize("key", ["", "/etc/passwd", "../outside.txt", "u/../../x"])
def test_rejects_keys_outside_root(store, key):
    with pytest.raises(ValidationError):
        store.put(key, b"x", "text/plain")
