"""Crawl adapter — website content via the Firecrawl HTTP API.

Two modes:
  single page  POST {api}/scrape, markdown of the main content.
  crawl        POST {api}/crawl submits a job (page limit / depth bounded),
               then GET {api}/crawl/{id} is polled every ``poll_interval``
               seconds for at most ``max_attempts`` attempts.

The returned text is already clean markdown and goes straight to the
chunker. No request is retried; any failure raises CrawlError.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlparse

import requests

from woodpecker.config import CrawlCfg
from woodpecker.errors import CrawlError

logger = logging.getLogger(__name__)

_API_KEY_ENV = "FIRECRAWL_API_KEY"
_PAGE_SEPARATOR = "\n\n--- Page: {url} ---\n\n"


@dataclass
class CrawlResult:
    text: str
    page_count: int


def normalize_url(url: str) -> str:
    """Strip *url* and prefix ``https://`` when it has no scheme."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


def hostname_of(url: str) -> str:
    """Hostname of *url*, or the URL itself when it cannot be parsed."""
    return urlparse(url).hostname or url


class CrawlAdapter:
    """Fetch website content through the crawl service.

    Args:
        config: Crawl settings (API URL, limits, polling).
        session: requests session; a new one is created when omitted.
        sleep: Called between status polls (injectable for tests).
    """

    def __init__(
        self,
        config: CrawlCfg | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or CrawlCfg()
        self.session = session or requests.Session()
        self._sleep = sleep

    def fetch(
        self,
        url: str,
        crawl_subpages: bool = False,
        follow_sitemap: bool = False,
    ) -> CrawlResult:
        """Return the markdown text of *url* (and its subpages when crawling).

        ``follow_sitemap`` is accepted for API compatibility; only the
        crawl-vs-single-page distinction changes behaviour.

        Raises:
            CrawlError: Missing API key, HTTP failure, failed or timed out job.
        """
        url = normalize_url(url)
        headers = self._headers()
        if crawl_subpages:
            logger.info("Crawling %s (limit %d, depth %d)", url, self.config.page_limit,
                        self.config.max_depth)
            return self._crawl(url, headers)
        logger.info("Scraping single page %s", url)
        return self._scrape(url, headers)

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    def _scrape(self, url: str, headers: dict[str, str]) -> CrawlResult:
        data = self._request(
            "POST",
            f"{self.config.api_url}/scrape",
            headers,
            json={"url": url, "formats": ["markdown"], "onlyMainContent": True},
        )
        body = data.get("data") or {}
        text = body.get("markdown") or data.get("markdown") or ""
        return CrawlResult(text=text, page_count=1)

    def _crawl(self, url: str, headers: dict[str, str]) -> CrawlResult:
        data = self._request(
            "POST",
            f"{self.config.api_url}/crawl",
            headers,
            json={
                "url": url,
                "limit": self.config.page_limit,
                "maxDepth": self.config.max_depth,
                "scrapeOptions": {"formats": ["markdown"], "onlyMainContent": True},
            },
        )
        job_id = data.get("id")
        if not job_id:
            raise CrawlError("Crawl service did not return a job id")
        logger.debug("Crawl job %s submitted", job_id)

        for attempt in range(1, self.config.max_attempts + 1):
            self._sleep(self.config.poll_interval)
            status = self._request("GET", f"{self.config.api_url}/crawl/{job_id}", headers)
            state = status.get("status")
            logger.debug("Crawl job %s poll %d: %s", job_id, attempt, state)
            if state == "completed":
                return _join_pages(status.get("data") or [])
            if state == "failed":
                raise CrawlError("Crawl job failed")

        raise CrawlError("Crawl timed out")

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        api_key = os.getenv(_API_KEY_ENV)
        if not api_key:
            raise CrawlError(
                f"Crawl service API key not found. Set the {_API_KEY_ENV} environment variable."
            )
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    def _request(self, method: str, url: str, headers: dict[str, str], **kwargs) -> dict:
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.config.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise CrawlError(f"Crawl service request failed: {exc}") from exc
        if not response.ok:
            logger.warning("Crawl service returned %d for %s %s", response.status_code,
                           method, url)
            raise CrawlError(
                f"Crawl service error ({response.status_code}): {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise CrawlError("Crawl service returned invalid JSON") from exc


def _join_pages(pages: list[dict]) -> CrawlResult:
    parts: list[str] = []
    count = 0
    for page in pages:
        markdown = page.get("markdown")
        if not markdown:
            continue
        source_url = (page.get("metadata") or {}).get("sourceURL") or "Unknown"
        parts.append(_PAGE_SEPARATOR.format(url=source_url) + markdown)
        count += 1
    return CrawlResult(text="".join(parts), page_count=count)
