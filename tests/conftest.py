"""Shared pytest fixtures."""

from __future__ import annotations

import io
import zipfile

import pytest

from woodpecker.db.connection import Database
from woodpecker.db.migrations import initialize
from woodpecker.db.models import KnowledgeSource, SourceType, Workspace
from woodpecker.db.repository import Repository
from woodpecker.storage.object_store import ObjectStore


@pytest.fixture
def corrupt_docx() -> bytes:
    """A DOCX whose deflated document.xml payload has every byte flipped."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("word/document.xml", "<w:t>" + "Ribosomes build proteins. " * 50 + "</w:t>")
        info = zf.getinfo("word/document.xml")
    data = bytearray(buf.getvalue())
    start = info.header_offset + 30 + len(info.filename.encode())
    for i in range(start, start + info.compress_size):
        data[i] ^= 0xFF
    return bytes(data)


@pytest.fixture
def database(tmp_path):
    """File-based Database in tmp_path with schema initialized."""
    db = Database(tmp_path / ".woodpecker.db")
    with db as conn:
        initialize(conn)
    return db


@pytest.fixture
def tmp_db(database):
    """Open connection to the initialized DB, closed after test."""
    conn = database.connect()
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def store(tmp_path):
    return ObjectStore(tmp_path / "objects")


@pytest.fixture
def make_source(repo):
    """Factory: insert a pending source and return its id."""

    def _make(source_id="src-1", name="doc.txt", source_type=SourceType.TXT, **kwargs):
        repo.add_source(
            KnowledgeSource(id=source_id, name=name, source_type=source_type, **kwargs)
        )
        return source_id

    return _make


@pytest.fixture
def workspace(repo):
    ws = Workspace(id="ws-1", name="Biology")
    repo.add_workspace(ws)
    return ws
