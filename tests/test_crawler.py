import asyncio

import aiohttp
import pytest

from pipelines.crawler import FetchResult, PageFetcher
from pipelines.policy import UrlPolicy


class TestFetchResult:
    def test_ok_and_html(self):
        result = FetchResult(url="u", status_code=200, content="<p>x</p>", content_type="text/html; charset=utf-8")
        assert result.ok
        assert result.is_html

    def test_error_status_is_not_ok(self):
        assert not FetchResult(url="u", status_code=404, error="HTTP 404").ok
        assert not FetchResult(url="u", status_code=0, error="timeout").ok

    def test_non_html_content_type(self):
        assert not FetchResult(url="u", status_code=200, content_type="application/pdf").is_html


class TestRetryPolicy:
    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_transient_statuses_are_retryable(self, status):
        assert PageFetcher._is_retryable_error(None, status)

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_are_final(self, status):
        assert not PageFetcher._is_retryable_error(None, status)

    def test_timeouts_and_connection_errors_are_retryable(self):
        assert PageFetcher._is_retryable_error(asyncio.TimeoutError())
        assert PageFetcher._is_retryable_error(aiohttp.ServerDisconnectedError())

    def test_backoff_grows_and_is_capped(self):
        fetcher = PageFetcher(retry_delay=1.0, max_retry_delay=5.0)
        first = fetcher._calculate_retry_delay(0)
        second = fetcher._calculate_retry_delay(1)

        assert 1.1 <= first <= 1.3
        assert 2.2 <= second <= 2.6
        assert fetcher._calculate_retry_delay(10) == 5.0


class TestUrlPolicy:
    @pytest.mark.parametrize("url", [
        "https://example.edu/wp-admin/options.php",
        "https://example.edu/news/feed",
        "https://example.edu/files/catalog.PDF",
        "https://example.edu/img/logo.jpeg",
        "https://twitter.com/exampleu",
    ])
    def test_denied_urls(self, url):
        assert UrlPolicy().is_denied(url)

    def test_regular_page_allowed(self):
        assert not UrlPolicy().is_denied("https://example.edu/admissions/apply")

    def test_prefix_scope_keeps_order(self):
        policy = UrlPolicy(site_prefix="https://example.edu/")
        urls = ["https://example.edu/b", "https://other.org/a", "https://example.edu/a"]
        assert policy.filter_scope(urls) == ["https://example.edu/b", "https://example.edu/a"]

    def test_no_prefix_keeps_everything(self):
        assert UrlPolicy().filter_scope(["https://x", "https://y"]) == ["https://x", "https://y"]
