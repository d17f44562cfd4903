"""Error taxonomy for siteqa.

Every failure the core surfaces to a caller is one of these types. Transport
and SDK exceptions are converted at the client boundary so callers never
have to know which HTTP library or vendor SDK sits underneath.
"""

from typing import Optional


class SiteQAError(Exception):
    """Base class for all siteqa errors."""


class ValidationError(SiteQAError):
    """Rejected input (e.g. an empty question). Raised before any side effect."""


class UpstreamFailure(SiteQAError):
    """An external dependency (embedding, generation, fetch) failed."""

    def __init__(self, service: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.cause = cause


class IndexingError(SiteQAError):
    """A single url could not be fetched, parsed or stored."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


class ConfigurationError(SiteQAError):
    """Required configuration is missing or invalid."""


class DimensionMismatchError(SiteQAError, ValueError):
    """Two vectors of different length were compared."""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimension mismatch: {left} != {right}")
        self.left = left
        self.right = right


class LexicalSearchError(SiteQAError):
    """The lexical prefilter backend rejected or failed a query."""
