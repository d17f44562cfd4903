"""Sitemap traversal: expands sitemap indexes into a capped, deduplicated url list."""

import logging
import re
from typing import Dict, List, Optional, Set
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup

from .crawler import PageFetcher

logger = logging.getLogger(__name__)

SITEMAP_ACCEPT = "application/xml,text/xml"


def normalize_url(url: str) -> str:
    """Drop the fragment and collapse repeated slashes in the path."""
    url = url.strip()
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    path = re.sub(r"/{2,}", "/", parts.path)
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def is_sitemap_url(loc: str) -> bool:
    return loc.endswith(".xml") or ".xml?" in loc


class SitemapCollector:
    """Walks a sitemap tree depth-first, in document order."""

    def __init__(self, fetcher: PageFetcher, limit: int = 5000):
        self.fetcher = fetcher
        self.limit = limit
        self.visited: Set[str] = set()
        self.failed: List[str] = []
        self._urls: Dict[str, None] = {}

    async def collect(self, root_url: str) -> List[str]:
        """Return at most ``limit`` page urls reachable from ``root_url``."""
        await self._walk(root_url)
        urls = list(self._urls)
        logger.info(f"Collected {len(urls)} urls from {len(self.visited)} sitemap(s)"
                    f"{f', {len(self.failed)} failed' if self.failed else ''}")
        return urls

    def _full(self) -> bool:
        return len(self._urls) >= self.limit

    def _add(self, loc: str):
        if not self._full():
            self._urls.setdefault(normalize_url(loc), None)

    async def _walk(self, sitemap_url: str):
        if sitemap_url in self.visited or self._full():
            return
        self.visited.add(sitemap_url)

        result = await self.fetcher.fetch(sitemap_url, accept=SITEMAP_ACCEPT)
        if not result.ok or not result.content:
            logger.warning(f"Skipping sitemap {sitemap_url}: {result.error or 'empty response'}")
            self.failed.append(sitemap_url)
            return

        soup = BeautifulSoup(result.content, "xml")

        index = soup.find("sitemapindex")
        if index is not None:
            for entry in index.find_all("sitemap"):
                if self._full():
                    break
                loc = self._loc(entry)
                if not loc:
                    continue
                if is_sitemap_url(loc):
                    await self._walk(loc)
                else:
                    self._add(loc)
            return

        urlset = soup.find("urlset")
        if urlset is None:
            logger.warning(f"Sitemap {sitemap_url} has neither <sitemapindex> nor <urlset>")
            self.failed.append(sitemap_url)
            return

        for entry in urlset.find_all("url"):
            if self._full():
                break
            loc = self._loc(entry)
            if loc:
                self._add(loc)

    @staticmethod
    def _loc(entry) -> Optional[str]:
        loc = entry.find("loc")
        if loc is None:
            return None
        return loc.get_text().strip() or None


async def collect_from_sitemap(root_url: str, limit: int = 5000,
                               fetcher: Optional[PageFetcher] = None) -> List[str]:
    """Collect page urls from a sitemap (index), capped at ``limit``."""
    if fetcher is not None:
        return await SitemapCollector(fetcher, limit).collect(root_url)
    async with PageFetcher() as own_fetcher:
        return await SitemapCollector(own_fetcher, limit).collect(root_url)
