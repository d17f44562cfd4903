"""HTTP fetching for the corpus indexer.

Fetches pages and sitemaps with aiohttp, retrying transient failures with
exponential backoff and jitter.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "siteqa-indexer/1.0"


@dataclass
class FetchResult:
    """Result of fetching a single URL."""
    url: str
    status_code: int
    content: Optional[str] = None
    content_type: str = ""
    error: Optional[str] = None
    response_time: Optional[float] = None
    retry_count: int = 0
    final_url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status_code < 400

    @property
    def is_html(self) -> bool:
        return self.content_type.lower().startswith("text/html")


class PageFetcher:
    """Asynchronous fetcher with retry on transient errors."""

    def __init__(self,
                 request_timeout: float = 20.0,
                 user_agent: Optional[str] = None,
                 max_retries: int = 2,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 30.0,
                 max_connections: int = 10):
        """Initialize fetcher.

        Args:
            request_timeout: Request timeout in seconds
            user_agent: User agent string
            max_retries: Maximum number of retry attempts
            retry_delay: Base delay between retries (seconds)
            max_retry_delay: Maximum delay between retries (seconds)
            max_connections: Connection pool size
        """
        self.request_timeout = request_timeout
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.max_connections = max_connections
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self):
        if self.session is None:
            connector = aiohttp.TCPConnector(limit=self.max_connections)
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={'User-Agent': self.user_agent},
            )

    async def close(self):
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter."""
        base_delay = self.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.max_retry_delay)

    @staticmethod
    def _is_retryable_error(exception: Optional[BaseException], status_code: Optional[int] = None) -> bool:
        """Determine if an error is retryable."""
        if status_code is not None and status_code in {408, 429, 500, 502, 503, 504}:
            return True

        if isinstance(exception, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
            return True

        # Connection-level failures only; 4xx responses are final
        return isinstance(exception, (aiohttp.ClientConnectionError,
                                      aiohttp.ServerDisconnectedError))

    async def fetch(self, url: str, accept: Optional[str] = None) -> FetchResult:
        """Fetch a URL, retrying transient failures.

        Never raises for network problems; failures are reported through
        ``FetchResult.error``.
        """
        await self._ensure_session()
        start_time = time.time()
        headers = {'Accept': accept} if accept else None
        last_error: Optional[str] = None
        status_code = 0

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(f"Fetching {url} (attempt {attempt + 1}/{self.max_retries + 1})")
                async with self.session.get(url, headers=headers, allow_redirects=True) as response:
                    status_code = response.status
                    content_type = response.headers.get('content-type', '')

                    if self._is_retryable_error(None, status_code) and attempt < self.max_retries:
                        delay = self._calculate_retry_delay(attempt)
                        logger.warning(f"Retryable status {status_code} for {url}, retrying in {delay:.2f}s")
                        await asyncio.sleep(delay)
                        continue

                    if status_code >= 400:
                        return FetchResult(
                            url=url,
                            status_code=status_code,
                            content_type=content_type,
                            error=f"HTTP {status_code}",
                            response_time=time.time() - start_time,
                            retry_count=attempt,
                            final_url=str(response.url),
                        )

                    content = await response.text(errors="replace")
                    return FetchResult(
                        url=url,
                        status_code=status_code,
                        content=content,
                        content_type=content_type,
                        response_time=time.time() - start_time,
                        retry_count=attempt,
                        final_url=str(response.url),
                    )

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_error = str(e) or e.__class__.__name__
                if attempt < self.max_retries and self._is_retryable_error(e):
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(f"Error fetching {url}: {last_error}, retrying in {delay:.2f}s "
                                   f"(attempt {attempt + 1}/{self.max_retries + 1})")
                    await asyncio.sleep(delay)
                    continue
                logger.warning(f"Failed to fetch {url} after {attempt + 1} attempts: {last_error}")
                break

        return FetchResult(
            url=url,
            status_code=status_code,
            error=last_error or f"HTTP {status_code}",
            response_time=time.time() - start_time,
            retry_count=self.max_retries,
        )
