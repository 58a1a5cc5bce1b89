"""Upload coordinator — validate a batch of files, store them, register sources.

Per batch:
  1. Validation (no I/O): unsupported extensions are rejected; once the
     batch (plus files already tracked) reaches ``max_files`` the rest is
     rejected; oversize files are tracked with status ``error``.
  2. Every remaining file is uploaded concurrently:
       uploading → processing   bytes written to the object store
       processing → complete    ``pending`` source created, ingestion triggered
       any step fails → error
     Ingestion is fire-and-forget on a separate executor.
  3. ``on_complete(source_ids)`` fires once all uploads resolved, if at
     least one succeeded.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePath
from typing import Callable

from woodpecker.config import UploadCfg
from woodpecker.db.connection import Database
from woodpecker.db.models import KnowledgeSource, SourceStatus, SourceType
from woodpecker.db.repository import Repository
from woodpecker.errors import WoodpeckerError
from woodpecker.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

_OCTET_STREAM = "application/octet-stream"

EXT_TO_MIME: dict[str, str] = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "doc": "application/msword",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xls": "application/vnd.ms-excel",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "ppt": "application/vnd.ms-powerpoint",
    "txt": "text/plain",
    "csv": "text/csv",
    "md": "text/markdown",
    "epub": "application/epub+zip",
}

MIME_TO_SOURCE_TYPE: dict[str, SourceType] = {
    "application/pdf": SourceType.PDF,
    EXT_TO_MIME["docx"]: SourceType.DOCX,
    EXT_TO_MIME["xlsx"]: SourceType.XLSX,
    EXT_TO_MIME["pptx"]: SourceType.PPTX,
    "text/plain": SourceType.TXT,
    "text/csv": SourceType.CSV,
    "text/markdown": SourceType.TXT,
    "application/epub+zip": SourceType.EPUB,
}


class UploadStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class FileCandidate:
    """A file offered for upload. ``media_type`` may be missing or wrong."""

    name: str
    data: bytes
    media_type: str | None = None

    @classmethod
    def from_path(cls, path: Path, media_type: str | None = None) -> FileCandidate:
        return cls(name=path.name, data=path.read_bytes(), media_type=media_type)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        """Lower-case extension without the dot ("" if none)."""
        return PurePath(self.name).suffix.lstrip(".").lower()


@dataclass
class UploadedFile:
    id: str
    name: str
    size: int
    status: UploadStatus
    error: str | None = None
    source_id: str | None = None


@dataclass
class Rejection:
    name: str
    reason: str


@dataclass
class BatchResult:
    files: list[UploadedFile] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)
    source_ids: list[str] = field(default_factory=list)


class UploadCoordinator:
    """Validate and upload file batches, then hand sources to ingestion.

    Args:
        store: Object store receiving the raw bytes.
        database: Database; each upload worker opens its own connection.
        ingest: Called with each new source id on a background executor.
        config: Size/count/extension limits.
        owner_id: Owner recorded on sources and used in storage keys.
        on_complete: Called with the successful source ids of a batch.
    """

    def __init__(
        self,
        store: ObjectStore,
        database: Database,
        ingest: Callable[[str], object],
        config: UploadCfg | None = None,
        owner_id: str = "",
        on_complete: Callable[[list[str]], None] | None = None,
    ) -> None:
        self.store = store
        self.database = database
        self.ingest = ingest
        self.config = config or UploadCfg()
        self.owner_id = owner_id
        self.on_complete = on_complete
        self.files: list[UploadedFile] = []
        self._ingest_pool = ThreadPoolExecutor(thread_name_prefix="woodpecker-ingest")
        self._ingestions: set[Future] = set()
        self._ingestions_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def process_files(self, candidates: list[FileCandidate]) -> BatchResult:
        """Validate *candidates* and upload the accepted ones concurrently."""
        result = BatchResult()
        accepted = self._validate(candidates, result)
        if not result.files:
            return result

        self.files.extend(result.files)
        uploads = [(entry, cand) for entry, cand in accepted
                   if entry.status is UploadStatus.UPLOADING]
        if uploads:
            with ThreadPoolExecutor(max_workers=len(uploads),
                                    thread_name_prefix="woodpecker-upload") as pool:
                futures = [pool.submit(self._upload, entry, cand) for entry, cand in uploads]
                result.source_ids = [sid for sid in (f.result() for f in futures) if sid]

        logger.info("Upload batch done: %d uploaded, %d failed, %d rejected",
                    len(result.source_ids),
                    sum(1 for f in result.files if f.status is UploadStatus.ERROR),
                    len(result.rejected))
        if result.source_ids and self.on_complete:
            self.on_complete(list(result.source_ids))
        return result

    def _validate(
        self, candidates: list[FileCandidate], result: BatchResult
    ) -> list[tuple[UploadedFile, FileCandidate]]:
        accepted_exts = {e.lower() for e in self.config.accepted_extensions}
        max_bytes = self.config.max_file_size_mb * 1024 * 1024
        accepted: list[tuple[UploadedFile, FileCandidate]] = []

        for index, candidate in enumerate(candidates):
            if len(self.files) + len(accepted) >= self.config.max_files:
                for skipped in candidates[index:]:
                    result.rejected.append(
                        Rejection(skipped.name, f"Maximum {self.config.max_files} files allowed")
                    )
                break

            ext = f".{candidate.extension}"
            if ext not in accepted_exts:
                result.rejected.append(Rejection(candidate.name, f"File type {ext} not supported"))
                continue

            entry = UploadedFile(
                id=str(uuid.uuid4()),
                name=candidate.name,
                size=candidate.size,
                status=UploadStatus.UPLOADING,
            )
            if candidate.size > max_bytes:
                entry.status = UploadStatus.ERROR
                entry.error = f"File exceeds {self.config.max_file_size_mb}MB limit"
            accepted.append((entry, candidate))
            result.files.append(entry)

        for rejection in result.rejected:
            logger.warning("Rejected %s: %s", rejection.name, rejection.reason)
        return accepted

    # ------------------------------------------------------------------
    # Per file
    # ------------------------------------------------------------------

    def _upload(self, entry: UploadedFile, candidate: FileCandidate) -> str | None:
        ext = candidate.extension
        key = ObjectStore.make_key(self.owner_id, ext)
        media_type = candidate.media_type or EXT_TO_MIME.get(ext) or _OCTET_STREAM
        try:
            self.store.put(key, candidate.data, media_type)
            entry.status = UploadStatus.PROCESSING

            source = KnowledgeSource(
                id=str(uuid.uuid4()),
                name=candidate.name,
                source_type=MIME_TO_SOURCE_TYPE.get(media_type, SourceType.TXT),
                status=SourceStatus.PENDING,
                owner_id=self.owner_id,
                file_path=key,
                mime_type=media_type,
                file_size=candidate.size,
            )
            conn = self.database.connect()
            try:
                Repository(conn).add_source(source)
            finally:
                conn.close()
        except WoodpeckerError as exc:
            entry.status = UploadStatus.ERROR
            entry.error = str(exc) or "Upload failed"
            logger.error("Upload of %s failed: %s", candidate.name, entry.error)
            return None

        self._trigger_ingestion(source.id)
        entry.status = UploadStatus.COMPLETE
        entry.source_id = source.id
        logger.info("Uploaded %s as source %s (%s)", candidate.name, source.id, media_type)
        return source.id

    def _trigger_ingestion(self, source_id: str) -> None:
        future = self._ingest_pool.submit(self.ingest, source_id)
        with self._ingestions_lock:
            self._ingestions.add(future)
        future.add_done_callback(lambda f: self._ingestion_done(source_id, f))

    def _ingestion_done(self, source_id: str, future: Future) -> None:
        with self._ingestions_lock:
            self._ingestions.discard(future)
        _log_ingestion(source_id, future)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def remove_file(self, file_id: str) -> None:
        self.files = [f for f in self.files if f.id != file_id]

    def clear_files(self) -> None:
        self.files = []

    def wait_for_ingestion(self, timeout: float | None = None) -> None:
        """Block until every triggered ingestion has finished (CLI ``--wait``)."""
        with self._ingestions_lock:
            pending = list(self._ingestions)
        wait(pending, timeout=timeout)

    def shutdown(self, wait_for_ingestion: bool = True) -> None:
        self._ingest_pool.shutdown(wait=wait_for_ingestion)


def _log_ingestion(source_id: str, future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Background ingestion of %s failed: %s", source_id, exc)
