"""Woodpecker ingest pipeline — extraction, sanitization, chunking, crawling."""

from woodpecker.ingest.chunker import TextChunker
from woodpecker.ingest.crawl import CrawlAdapter, CrawlResult
from woodpecker.ingest.extractor import TextExtractor
from woodpecker.ingest.orchestrator import (
    IngestionOrchestrator,
    IngestionResult,
    WebsiteIngestionResult,
)
from woodpecker.ingest.sanitize import sanitize_content

__all__ = [
    "CrawlAdapter",
    "CrawlResult",
    "IngestionOrchestrator",
    "IngestionResult",
    "TextChunker",
    "TextExtractor",
    "WebsiteIngestionResult",
    "sanitize_content",
]
