"""Tests for UploadCoordinator: validation, concurrent upload, ingestion trigger."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from woodpecker.config import UploadCfg
from woodpecker.db.models import SourceStatus, SourceType
from woodpecker.errors import PersistenceError
from woodpecker.storage.object_store import ObjectStore
from woodpecker.upload.coordinator import (
    FileCandidate,
    UploadCoordinator,
    UploadStatus,
)


@pytest.fixture
def ingest():
    return MagicMock()


@pytest.fixture
def coordinator(store, database, ingest):
    coord = UploadCoordinator(store, database, ingest, owner_id="user-1")
    yield coord
    coord.shutdown()


def test_file_candidate_extension():
    assert FileCandidate("Report.PDF", b"").extension == "pdf"
    assert FileCandidate("README", b"").extension == ""
    assert FileCandidate("a.tar.gz", b"x").size == 1


def test_unsupported_extension_never_touches_storage(database, ingest):
    store = MagicMock(spec=ObjectStore)
    coordinator = UploadCoordinator(store, database, ingest)
    result = coordinator.process_files([FileCandidate("malware.exe", b"MZ")])
    coordinator.shutdown()

    assert [(r.name, r.reason) for r in result.rejected] == [
        ("malware.exe", "File type .exe not supported")
    ]
    assert result.files == []
    store.put.assert_not_called()
    ingest.assert_not_called()


def test_successful_batch_creates_pending_sources(coordinator, repo, store, ingest):
    completed: list[list[str]] = []
    coordinator.on_complete = completed.append
    result = coordinator.process_files(
        [FileCandidate("notes.txt", b"cell notes"), FileCandidate("paper.pdf", b"%PDF")]
    )
    coordinator.wait_for_ingestion()

    assert all(f.status is UploadStatus.COMPLETE for f in result.files)
    assert len(result.source_ids) == 2
    assert completed == [result.source_ids]
    assert sorted(c.args[0] for c in ingest.call_args_list) == sorted(result.source_ids)

    by_name = {s.name: s for s in repo.list_sources()}
    notes = by_name["notes.txt"]
    assert notes.status is SourceStatus.PENDING
    assert notes.source_type is SourceType.TXT
    assert notes.owner_id == "user-1"
    assert notes.mime_type == "text/plain"
    assert notes.file_path.startswith("user-1/")
    assert store.get(notes.file_path) == b"cell notes"
    assert by_name["paper.pdf"].source_type is SourceType.PDF


def test_declared_media_type_wins(coordinator, repo):
    coordinator.process_files([FileCandidate("data.csv", b"a,b", media_type="text/plain")])
    assert repo.list_sources()[0].mime_type == "text/plain"


def test_max_files_rejects_the_rest(store, database, ingest):
    coordinator = UploadCoordinator(store, database, ingest, config=UploadCfg(max_files=2))
    result = coordinator.process_files(
        [FileCandidate(f"f{i}.txt", b"x") for i in range(4)]
    )
    coordinator.shutdown()
    assert len(result.files) == 2
    assert [r.name for r in result.rejected] == ["f2.txt", "f3.txt"]
    assert all(r.reason == "Maximum 2 files allowed" for r in result.rejected)


def test_max_files_counts_previous_batches(store, database, ingest):
    coordinator = UploadCoordinator(store, database, ingest, config=UploadCfg(max_files=2))
    coordinator.process_files([FileCandidate("a.txt", b"x")])
    result = coordinator.process_files([FileCandidate("b.txt", b"x"), FileCandidate("c.txt", b"x")])
    assert [f.name for f in result.files] == ["b.txt"]
    assert [r.name for r in result.rejected] == ["c.txt"]

    coordinator.clear_files()
    result = coordinator.process_files([FileCandidate("d.txt", b"x")])
    coordinator.shutdown()
    assert [f.name for f in result.files] == ["d.txt"]


def test_oversize_file_tracked_as_error(store, database, ingest):
    coordinator = UploadCoordinator(
        store, database, ingest, config=UploadCfg(max_file_size_mb=1)
    )
    big = FileCandidate("huge.txt", b"x" * (1024 * 1024 + 1))
    result = coordinator.process_files([big, FileCandidate("ok.txt", b"fine")])
    coordinator.shutdown()

    entries = {f.name: f for f in result.files}
    assert entries["huge.txt"].status is UploadStatus.ERROR
    assert entries["huge.txt"].error == "File exceeds 1MB limit"
    assert entries["ok.txt"].status is UploadStatus.COMPLETE
    assert len(result.source_ids) == 1


def test_storage_failure_marks_entry_error(database, ingest):
    store = MagicMock(spec=ObjectStore)
    store.put.side_effect = PersistenceError("disk full")
    completed = MagicMock()
    coordinator = UploadCoordinator(store, database, ingest, on_complete=completed)
    result = coordinator.process_files([FileCandidate("a.txt", b"x")])
    coordinator.shutdown()

    assert result.files[0].status is UploadStatus.ERROR
    assert result.files[0].error == "disk full"
    assert result.source_ids == []
    completed.assert_not_called()
    ingest.assert_not_called()


def test_ingestion_failure_does_not_fail_upload(store, database):
    ingest = MagicMock(side_effect=RuntimeError("extractor exploded"))
    coordinator = UploadCoordinator(store, database, ingest)
    result = coordinator.process_files([FileCandidate("a.txt", b"x")])
    coordinator.wait_for_ingestion()
    coordinator.shutdown()
    assert result.files[0].status is UploadStatus.COMPLETE


def test_remove_file(coordinator):
    result = coordinator.process_files([FileCandidate("a.txt", b"x")])
    coordinator.remove_file(result.files[0].id)
    assert coordinator.files == []


def test_finished_ingestions_are_released(store, database, ingest):
    coordinator = UploadCoordinator(store, database, ingest)
    coordinator.process_files([FileCandidate("a.txt", b"x"), FileCandidate("b.txt", b"y")])
    coordinator.process_files([FileCandidate("c.txt", b"z")])
    coordinator.shutdown(wait_for_ingestion=True)
    assert ingest.call_count == 3
    assert coordinator._ingestions == set()
