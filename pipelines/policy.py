"""URL policy for the corpus indexer: deny list and site-prefix scoping."""

import logging
import re
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

# Admin paths, feeds, binary/media files and social networks are never indexed
DEFAULT_DENY_PATTERNS: List[str] = [
    r"/wp-admin",
    r"/wp-json",
    r"/feed",
    r"\.pdf$",
    r"\.jpe?g$",
    r"\.png$",
    r"\.gif$",
    r"\.svg$",
    r"twitter\.com",
    r"facebook\.com",
    r"linkedin\.com",
]


class UrlPolicy:
    """Decides which urls the indexer may fetch."""

    def __init__(self, deny_patterns: Optional[Sequence[str]] = None,
                 site_prefix: Optional[str] = None):
        patterns = DEFAULT_DENY_PATTERNS if deny_patterns is None else deny_patterns
        self.deny_patterns = [re.compile(pattern, re.IGNORECASE) for pattern in patterns]
        self.site_prefix = site_prefix or None

    def is_denied(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self.deny_patterns)

    def in_scope(self, url: str) -> bool:
        return self.site_prefix is None or url.startswith(self.site_prefix)

    def filter_scope(self, urls: Iterable[str]) -> List[str]:
        """Keep urls under the site prefix, preserving order."""
        kept = [url for url in urls if self.in_scope(url)]
        if self.site_prefix:
            logger.info(f"{len(kept)} urls under prefix {self.site_prefix}")
        return kept
