"""Ingestion orchestrator — source record → text → chunks → ready.

Pipeline per source:
  pending → processing   (compare-and-set; a second concurrent run fails here)
  load bytes from the object store, extract, sanitize, chunk
  replace the chunk set atomically (new generation swapped in)
  processing → ready     (chunk_count, last_processed_at)

Any failure after the source entered ``processing`` moves it to ``error``
with the failure message. The previous chunk generation is left untouched
because the replacement only happens once the new set is complete.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass

from woodpecker.config import WoodpeckerConfig
from woodpecker.db.connection import Database
from woodpecker.db.models import KnowledgeSource, SourceStatus, SourceType
from woodpecker.db.repository import Repository
from woodpecker.errors import ExtractionError, ValidationError, WoodpeckerError
from woodpecker.ingest.chunker import TextChunker
from woodpecker.ingest.crawl import CrawlAdapter, hostname_of, normalize_url
from woodpecker.ingest.extractor import TextExtractor
from woodpecker.ingest.sanitize import sanitize_content
from woodpecker.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

_MIN_WEB_CONTENT = 10


@dataclass
class IngestionResult:
    """Outcome of ``process`` (mirrors the process-document response)."""

    source_id: str
    success: bool
    chunk_count: int = 0
    text_length: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        if not self.success:
            return {"error": self.error}
        return {
            "success": True,
            "chunkCount": self.chunk_count,
            "textLength": self.text_length,
        }


@dataclass
class WebsiteIngestionResult:
    """Outcome of ``ingest_website`` (mirrors the ingest-website response)."""

    source_id: str
    success: bool
    chunk_count: int = 0
    page_count: int = 0
    text_length: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        if not self.success:
            return {"success": False, "error": self.error, "sourceId": self.source_id}
        return {
            "success": True,
            "sourceId": self.source_id,
            "chunkCount": self.chunk_count,
            "pageCount": self.page_count,
            "textLength": self.text_length,
        }


class IngestionOrchestrator:
    """Drive a knowledge source through extraction and chunking.

    The repository's connection is used from the calling thread only; run
    one orchestrator per thread (see ``process_in_new_connection``).
    """

    def __init__(
        self,
        repo: Repository,
        store: ObjectStore,
        extractor: TextExtractor | None = None,
        chunker: TextChunker | None = None,
        crawler: CrawlAdapter | None = None,
    ) -> None:
        self.repo = repo
        self.store = store
        self.extractor = extractor or TextExtractor()
        self.chunker = chunker or TextChunker()
        self.crawler = crawler or CrawlAdapter()

    @classmethod
    def from_config(
        cls, repo: Repository, store: ObjectStore, config: WoodpeckerConfig
    ) -> IngestionOrchestrator:
        return cls(
            repo,
            store,
            extractor=TextExtractor(config.extraction),
            chunker=TextChunker(config.chunking.chunk_size, config.chunking.overlap),
            crawler=CrawlAdapter(config.crawl),
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def process(self, source_id: str) -> IngestionResult:
        """Ingest a ``pending`` source.

        Raises:
            NotFoundError: The source does not exist.
            InvalidTransitionError: The source is not ``pending`` (already
                processing, or settled without a re-ingestion request).
        """
        source = self.repo.require_source(source_id)
        self.repo.transition_status(source_id, SourceStatus.PROCESSING)
        logger.info("Processing source %s (%s)", source_id, source.name)

        try:
            text = self._load_text(source)
            chunks = self.chunker.chunk(source_id, text)
            if not chunks:
                raise ExtractionError("Document produced no chunks")
            self.repo.replace_chunks(source_id, chunks)
            self.repo.transition_status(source_id, SourceStatus.READY)
        except Exception as exc:
            return IngestionResult(
                source_id=source_id, success=False, error=self._fail(source_id, exc)
            )

        logger.info("Source %s ready: %d chunks from %d characters", source_id,
                    len(chunks), len(text))
        return IngestionResult(
            source_id=source_id, success=True, chunk_count=len(chunks), text_length=len(text)
        )

    def reprocess(
        self,
        source_id: str,
        crawl_subpages: bool = False,
        follow_sitemap: bool = False,
    ) -> IngestionResult | WebsiteIngestionResult:
        """Explicit re-ingestion: reset a settled source to ``pending``, then ingest it.

        File sources are extracted again from the object store; ``web``
        sources are crawled again from their ``original_url`` (the crawl
        flags only apply to those). The previous chunk set stays searchable
        until the new one replaces it.

        Raises:
            NotFoundError: The source does not exist.
            ValidationError: A ``web`` source has no ``original_url``.
            InvalidTransitionError: The source is currently ``processing``.
        """
        source = self.repo.require_source(source_id)
        if source.source_type is not SourceType.WEB:
            self.repo.reset_for_reingestion(source_id)
            return self.process(source_id)

        if not source.original_url:
            raise ValidationError(f"Web source {source_id} has no original URL")
        self.repo.reset_for_reingestion(source_id)
        self.repo.transition_status(source_id, SourceStatus.PROCESSING)
        logger.info("Re-crawling %s for source %s", source.original_url, source_id)
        return self._crawl_into(source, crawl_subpages, follow_sitemap)

    def _load_text(self, source: KnowledgeSource) -> str:
        if not source.file_path:
            raise ValidationError(f"Source {source.id} has no stored file")
        data = self.store.get(source.file_path)
        mime_type = source.mime_type or self.store.content_type(source.file_path)
        raw = self.extractor.extract(data, source.file_path, mime_type)
        if not raw:
            raise ExtractionError("No text content extracted from document")
        text = sanitize_content(raw)
        if not text:
            raise ExtractionError("Document content is empty after sanitization")
        logger.debug("Extracted %d characters (%d after sanitization)", len(raw), len(text))
        return text

    # ------------------------------------------------------------------
    # Websites
    # ------------------------------------------------------------------

    def ingest_website(
        self,
        url: str,
        crawl_subpages: bool = False,
        follow_sitemap: bool = False,
        owner_id: str = "",
    ) -> WebsiteIngestionResult:
        """Create a ``web`` source for *url*, crawl it and chunk the result.

        Raises:
            ValidationError: *url* is empty.
        """
        if not url or not url.strip():
            raise ValidationError("URL is required")
        url = normalize_url(url)
        source = KnowledgeSource(
            id=str(uuid.uuid4()),
            name=hostname_of(url),
            source_type=SourceType.WEB,
            owner_id=owner_id,
            original_url=url,
            mime_type="text/html",
        )
        self.repo.add_source(source)
        self.repo.transition_status(source.id, SourceStatus.PROCESSING)
        logger.info("Ingesting website %s as source %s (crawl=%s)", url, source.id,
                    crawl_subpages)
        return self._crawl_into(source, crawl_subpages, follow_sitemap)

    def _crawl_into(
        self, source: KnowledgeSource, crawl_subpages: bool, follow_sitemap: bool
    ) -> WebsiteIngestionResult:
        """Crawl a ``processing`` web source and swap in its new chunk set."""
        try:
            result = self.crawler.fetch(source.original_url, crawl_subpages, follow_sitemap)
            text = result.text
            if len(text) < _MIN_WEB_CONTENT:
                raise ExtractionError("No content extracted from website")
            chunks = self.chunker.chunk(
                source.id, text, extra_metadata={"page_count": result.page_count}
            )
            if not chunks:
                raise ExtractionError("No content extracted from website")
            self.repo.replace_chunks(source.id, chunks)
            self.repo.update_source_size(source.id, len(text))
            self.repo.transition_status(source.id, SourceStatus.READY)
        except Exception as exc:
            return WebsiteIngestionResult(
                source_id=source.id, success=False, error=self._fail(source.id, exc)
            )

        logger.info("Website ingestion complete: %d chunks from %d page(s)", len(chunks),
                    result.page_count)
        return WebsiteIngestionResult(
            source_id=source.id,
            success=True,
            chunk_count=len(chunks),
            page_count=result.page_count,
            text_length=len(text),
        )

    # ------------------------------------------------------------------

    def _fail(self, source_id: str, exc: Exception) -> str:
        message = str(exc) or "Unknown processing error"
        if isinstance(exc, (WoodpeckerError, sqlite3.Error)):
            logger.error("Ingestion of source %s failed: %s", source_id, message)
        else:
            logger.exception("Unexpected error while ingesting source %s", source_id)
        try:
            self.repo.transition_status(source_id, SourceStatus.ERROR, error_message=message)
        except WoodpeckerError as mark_exc:
            logger.error("Could not record failure on source %s: %s", source_id, mark_exc)
        return message


def process_in_new_connection(
    database: Database,
    store: ObjectStore,
    config: WoodpeckerConfig,
    source_id: str,
) -> IngestionResult:
    """Run ``process`` on a connection owned by the calling thread.

    Used for fire-and-forget ingestion from worker threads.
    """
    conn = database.connect()
    try:
        orchestrator = IngestionOrchestrator.from_config(Repository(conn), store, config)
        return orchestrator.process(source_id)
    finally:
        conn.close()
