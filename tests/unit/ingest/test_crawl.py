"""Tests for CrawlAdapter (scrape, crawl polling, failures)."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from woodpecker.config import CrawlCfg
from woodpecker.errors import CrawlError
from woodpecker.ingest.crawl import CrawlAdapter, hostname_of, normalize_url


def _response(payload=None, status=200):
    resp = MagicMock()
    resp.ok = status < 400
    resp.status_code = status
    resp.text = str(payload)
    resp.json.return_value = payload
    return resp


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setenv("FIRECRAWL_API_KEY", "fc-test")


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def sleep():
    return MagicMock()


def _adapter(session, sleep, **cfg):
    return CrawlAdapter(CrawlCfg(**cfg), session=session, sleep=sleep)


def test_normalize_url_adds_scheme():
    assert normalize_url("  example.com/docs ") == "https://example.com/docs"
    assert normalize_url("http://example.com") == "http://example.com"


def test_hostname_of():
    assert hostname_of("https://docs.example.com/a/b") == "docs.example.com"


def test_scrape_single_page(session, sleep):
    session.request.return_value = _response({"data": {"markdown": "# Docs\nContent"}})
    result = _adapter(session, sleep).fetch("example.com")
    assert result.text == "# Docs\nContent"
    assert result.page_count == 1
    method, url = session.request.call_args.args
    assert method == "POST"
    assert url.endswith("/scrape")
    kwargs = session.request.call_args.kwargs
    assert kwargs["json"]["url"] == "https://example.com"
    assert kwargs["headers"]["Authorization"] == "Bearer fc-test"
    sleep.assert_not_called()


def test_missing_api_key(monkeypatch, session, sleep):
    monkeypatch.delenv("FIRECRAWL_API_KEY")
    with pytest.raises(CrawlError, match="FIRECRAWL_API_KEY"):
        _adapter(session, sleep).fetch("example.com")
    session.request.assert_not_called()


def test_crawl_completed_joins_pages(session, sleep):
    session.request.side_effect = [
        _response({"id": "job-1"}),
        _response({"status": "scraping"}),
        _response(
            {
                "status": "completed",
                "data": [
                    {"markdown": "Page A", "metadata": {"sourceURL": "https://a"}},
                    {"markdown": "", "metadata": {"sourceURL": "https://empty"}},
                    {"markdown": "Page B"},
                ],
            }
        ),
    ]
    result = _adapter(session, sleep, page_limit=5, max_depth=1).fetch(
        "example.com", crawl_subpages=True
    )
    assert result.page_count == 2
    assert result.text == (
        "\n\n--- Page: https://a ---\n\nPage A\n\n--- Page: Unknown ---\n\nPage B"
    )
    submit = session.request.call_args_list[0].kwargs["json"]
    assert submit["limit"] == 5
    assert submit["maxDepth"] == 1
    assert session.request.call_args_list[1].args == ("GET", "https://api.firecrawl.dev/v1/crawl/job-1")
    assert sleep.call_count == 2
    sleep.assert_called_with(2.0)


def test_crawl_failed(session, sleep):
    session.request.side_effect = [_response({"id": "job-1"}), _response({"status": "failed"})]
    with pytest.raises(CrawlError, match="Crawl job failed"):
        _adapter(session, sleep).fetch("example.com", crawl_subpages=True)


def test_crawl_times_out_after_max_attempts(session, sleep):
    session.request.side_effect = [_response({"id": "job-1"})] + [
        _response({"status": "scraping"}) for _ in range(3)
    ]
    with pytest.raises(CrawlError, match="timed out"):
        _adapter(session, sleep, max_attempts=3).fetch("example.com", crawl_subpages=True)
    assert sleep.call_count == 3
    assert session.request.call_count == 4


def test_crawl_without_job_id(session, sleep):
    session.request.return_value = _response({"success": True})
    with pytest.raises(CrawlError, match="job id"):
        _adapter(session, sleep).fetch("example.com", crawl_subpages=True)


def test_http_error_status(session, sleep):
    session.request.return_value = _response({"error": "Payment required"}, status=402)
    with pytest.raises(CrawlError, match="402"):
        _adapter(session, sleep).fetch("example.com")


def test_network_error(session, sleep):
    session.request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(CrawlError, match="request failed"):
        _adapter(session, sleep).fetch("example.com")


def test_invalid_json(session, sleep):
    resp = _response()
    resp.json.side_effect = ValueError("no json")
    session.request.return_value = resp
    with pytest.raises(CrawlError, match="invalid JSON"):
        _adapter(session, sleep).fetch("example.com")
