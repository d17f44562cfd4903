"""Fixed-window text chunking with overlap.

Chunks are plain character windows over the extracted page text. Consecutive
windows share exactly ``overlap`` characters; the last one may be shorter.
"""

import logging
from dataclasses import dataclass
from itertools import islice
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ChunkConfig:
    """Configuration for chunking behavior."""
    size: int = 2000
    overlap: int = 250
    max_chunks: Optional[int] = 6

    def __post_init__(self):
        if self.size <= 0:
            raise ValueError(f"chunk size must be positive, got {self.size}")
        if not 0 <= self.overlap < self.size:
            raise ValueError(f"overlap must be in [0, {self.size}), got {self.overlap}")

    @property
    def stride(self) -> int:
        return self.size - self.overlap


def iter_chunks(text: str, size: int = 2000, overlap: int = 250) -> Iterator[str]:
    """Lazily yield windows of ``size`` characters advancing by ``size - overlap``.

    Stops after the first window that reaches the end of the text, so no chunk
    is entirely contained in its predecessor.
    """
    config = ChunkConfig(size=size, overlap=overlap, max_chunks=None)
    length = len(text)
    start = 0
    while start < length:
        yield text[start:start + config.size]
        if start + config.size >= length:
            break
        start += config.stride


def chunk_text(text: str, config: Optional[ChunkConfig] = None) -> List[str]:
    """Materialize the chunk sequence, truncated to ``config.max_chunks``."""
    config = config or ChunkConfig()
    chunks = iter_chunks(text, config.size, config.overlap)
    if config.max_chunks is not None:
        chunks = islice(chunks, config.max_chunks)
    result = list(chunks)
    logger.debug(f"Chunked {len(text)} chars into {len(result)} chunks")
    return result
