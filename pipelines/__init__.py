"""Pipelines package for siteqa.

Provides fetching, sitemap collection, extraction, chunking and url policy.
The corpus indexer lives in ``pipelines.indexer`` and is also a CLI entry point.
"""

from .crawler import PageFetcher, FetchResult
from .sitemap import SitemapCollector, collect_from_sitemap, normalize_url
from .extractor import ExtractedContent, extract_content, content_hash, is_too_short, MIN_TEXT_LENGTH
from .chunker import ChunkConfig, iter_chunks, chunk_text
from .policy import UrlPolicy, DEFAULT_DENY_PATTERNS

__all__ = [
    # Fetching
    'PageFetcher',
    'FetchResult',

    # Sitemap
    'SitemapCollector',
    'collect_from_sitemap',
    'normalize_url',

    # Extraction
    'ExtractedContent',
    'extract_content',
    'content_hash',
    'is_too_short',
    'MIN_TEXT_LENGTH',

    # Chunking
    'ChunkConfig',
    'iter_chunks',
    'chunk_text',

    # Policy
    'UrlPolicy',
    'DEFAULT_DENY_PATTERNS'
]
