"""Corpus indexing pipeline for siteqa.

Keeps the page/chunk store in step with a live site: collects urls from a
sitemap, fetches and extracts each page, and re-chunks and re-embeds only the
pages whose extracted text changed.
"""

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from config.database import DatabaseConfig, close_database, initialize_database
from config.retrieval import RetrievalConfig, load_retrieval_config
from config.settings import Settings
from indexer.embeddings import EmbeddingClient
from indexer.sqlite_adapter import SQLiteAdapter
from observability.logging import setup_logging
from observability.metrics import record_page_indexed, record_upstream_failure
from services.errors import IndexingError, UpstreamFailure

from .chunker import ChunkConfig, chunk_text
from .crawler import PageFetcher
from .extractor import content_hash, extract_content, is_too_short
from .policy import UrlPolicy
from .sitemap import collect_from_sitemap

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


class IndexStatus(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class IndexResult:
    """Outcome of indexing one url."""
    url: str
    status: IndexStatus
    reason: Optional[str] = None
    chunks: int = 0
    error: Optional[str] = None


@dataclass
class IndexRunSummary:
    """Aggregated counts for a batch run."""
    total: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def record(self, result: IndexResult):
        if result.status == IndexStatus.ADDED:
            self.added += 1
        elif result.status == IndexStatus.UPDATED:
            self.updated += 1
        elif result.status == IndexStatus.UNCHANGED:
            self.unchanged += 1
        elif result.status == IndexStatus.SKIPPED:
            self.skipped += 1
            reason = result.reason or "unknown"
            self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1
        else:
            self.errors += 1
            self.failures.append((result.url, result.error or "unknown error"))

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["failures"] = [{"url": url, "error": error} for url, error in self.failures]
        return data


class CorpusIndexer:
    """Indexes urls into the page/chunk store with content-hash change detection."""

    def __init__(self,
                 adapter: SQLiteAdapter,
                 embedder: EmbeddingClient,
                 fetcher: Optional[PageFetcher] = None,
                 policy: Optional[UrlPolicy] = None,
                 config: Optional[RetrievalConfig] = None,
                 concurrency: int = 3,
                 progress_every: int = 20):
        self.adapter = adapter
        self.embedder = embedder
        self.fetcher = fetcher or PageFetcher()
        self.policy = policy or UrlPolicy()
        self.config = config or RetrievalConfig()
        self.concurrency = max(1, concurrency)
        self.progress_every = progress_every
        self.chunk_config = ChunkConfig(
            size=self.config.chunk_size,
            overlap=self.config.chunk_overlap,
            max_chunks=self.config.max_chunks_per_page,
        )

    async def close(self):
        await self.fetcher.close()

    async def index_url(self, url: str) -> IndexResult:
        """Index a single url. Failures are reported in the result, never raised."""
        try:
            result = await self._index(url)
        except IndexingError as e:
            logger.warning(f"Indexing failed: {e}")
            result = IndexResult(url=url, status=IndexStatus.ERROR, error=str(e))

        record_page_indexed(result.status.value, result.chunks)
        return result

    async def _index(self, url: str) -> IndexResult:
        if self.policy.is_denied(url):
            return IndexResult(url=url, status=IndexStatus.SKIPPED, reason="denied")

        fetched = await self.fetcher.fetch(url)
        if not fetched.ok:
            raise IndexingError(url, fetched.error or f"HTTP {fetched.status_code}")
        if not fetched.is_html:
            return IndexResult(url=url, status=IndexStatus.SKIPPED, reason="not-html")

        text, title = extract_content(fetched.content or "")
        if is_too_short(text, self.config.min_text_length):
            return IndexResult(url=url, status=IndexStatus.SKIPPED, reason="too-short")

        digest = content_hash(text)
        try:
            prior = await self.adapter.get_page(url)
            if prior is not None and prior.content_hash == digest:
                await self.adapter.touch_page(url)
                return IndexResult(url=url, status=IndexStatus.UNCHANGED)

            chunks = chunk_text(text, self.chunk_config)
            # Embed everything before writing so a failure leaves the old chunks in place
            embeddings = []
            for chunk in chunks:
                try:
                    embeddings.append(await self.embedder.embed(chunk))
                except UpstreamFailure as e:
                    record_upstream_failure(e.service)
                    raise IndexingError(url, f"embedding failed: {e}") from e

            await self.adapter.replace_page(url, title, digest, list(zip(chunks, embeddings)))
        except sqlite3.Error as e:
            raise IndexingError(url, f"store error: {e}") from e

        status = IndexStatus.UPDATED if prior is not None else IndexStatus.ADDED
        logger.debug(f"{status.value} {url} ({len(chunks)} chunks)")
        return IndexResult(url=url, status=status, chunks=len(chunks))

    async def index_urls(self, urls: Iterable[str],
                         on_progress: Optional[ProgressCallback] = None) -> IndexRunSummary:
        """Index urls with bounded concurrency; one url's failure never stops the run."""
        urls = list(urls)
        summary = IndexRunSummary(total=len(urls))
        semaphore = asyncio.Semaphore(self.concurrency)
        done = 0

        async def run(url: str):
            nonlocal done
            async with semaphore:
                try:
                    result = await self.index_url(url)
                except Exception as e:
                    logger.exception(f"Unexpected error indexing {url}")
                    result = IndexResult(url=url, status=IndexStatus.ERROR, error=f"unexpected: {e}")
            summary.record(result)
            done += 1
            if self.progress_every and done % self.progress_every == 0:
                logger.info(f"Indexed {done}/{len(urls)}")
            if on_progress is not None:
                await on_progress(done, len(urls))

        await asyncio.gather(*(run(url) for url in urls))

        logger.info(
            f"Index run finished: total={summary.total} added={summary.added} updated={summary.updated} "
            f"unchanged={summary.unchanged} skipped={summary.skipped} errors={summary.errors}"
        )
        return summary

    async def index_sitemap(self, sitemap_url: str, max_urls: int = 2000,
                            site_prefix: Optional[str] = None,
                            on_progress: Optional[ProgressCallback] = None) -> IndexRunSummary:
        """Collect urls from a sitemap, keep those under the prefix, and index them."""
        logger.info(f"Collecting urls from sitemap {sitemap_url} (max {max_urls})")
        urls = await collect_from_sitemap(sitemap_url, max_urls, fetcher=self.fetcher)
        if site_prefix:
            urls = UrlPolicy(deny_patterns=[], site_prefix=site_prefix).filter_scope(urls)
        else:
            urls = self.policy.filter_scope(urls)
        logger.info(f"Candidates: {len(urls)}")
        return await self.index_urls(urls, on_progress=on_progress)

    async def reset(self) -> Tuple[int, int]:
        """Drop every page and chunk; sessions and overrides are kept."""
        return await self.adapter.clear_corpus()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Index a website's sitemap into the siteqa store")
    parser.add_argument("sitemap", nargs="?", help="Root sitemap url (default: SITEQA_SITEMAP_URL)")
    parser.add_argument("--max", type=int, default=8000, dest="max_urls", help="Maximum urls to collect")
    parser.add_argument("--prefix", default=None, help="Only index urls starting with this prefix")
    parser.add_argument("--concurrency", type=int, default=None, help="Concurrent fetch/index operations")
    parser.add_argument("--reset", action="store_true", help="Clear pages and chunks before indexing")
    return parser


async def _run(args: argparse.Namespace) -> Dict:
    settings = Settings.from_env()
    adapter = await initialize_database(DatabaseConfig(sqlite_path=settings.sqlite_path))
    embedder = EmbeddingClient(
        api_key=settings.require_openai_key(),
        model=settings.embedding_model,
        dimensions=settings.embedding_dim,
        timeout=settings.request_timeout,
    )
    indexer = CorpusIndexer(
        adapter,
        embedder,
        fetcher=PageFetcher(request_timeout=settings.request_timeout, user_agent=settings.user_agent),
        config=load_retrieval_config(settings.retrieval_config_path),
        concurrency=args.concurrency or settings.index_concurrency,
    )
    try:
        if args.reset:
            pages, chunks = await indexer.reset()
            logger.info(f"Reset index: removed {pages} pages and {chunks} chunks")
        summary = await indexer.index_sitemap(
            args.sitemap or settings.sitemap_url,
            max_urls=args.max_urls,
            site_prefix=args.prefix or settings.site_prefix or None,
        )
        return summary.to_dict()
    finally:
        await indexer.close()
        await close_database()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings.from_env()
    setup_logging(level=settings.log_level, use_json=settings.log_json)

    if not (args.sitemap or settings.sitemap_url):
        parser.error("a sitemap url is required (argument or SITEQA_SITEMAP_URL)")

    summary = asyncio.run(_run(args))
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
