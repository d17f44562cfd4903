"""Vector similarity used at indexing and query time."""

import logging
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np

from services.errors import DimensionMismatchError
from services.models import ChunkRecord, ScoredChunk

logger = logging.getLogger(__name__)

Vector = Union[np.ndarray, Sequence[float]]


def as_vector(values: Vector) -> np.ndarray:
    """Coerce a list or array into a 1-d float32 array."""
    return np.asarray(values, dtype=np.float32).reshape(-1)


def cosine(a: Vector, b: Vector) -> float:
    """Cosine similarity between two vectors.

    Returns 0.0 when either vector has zero norm. Vectors of different length
    raise ``DimensionMismatchError``; they are never truncated.
    """
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(va.shape[0], vb.shape[0])

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def rank_chunks(query_vector: Optional[Vector], chunks: Iterable[ChunkRecord]) -> List[ScoredChunk]:
    """Score chunks against the query and sort descending.

    Without a query vector every chunk scores 0 and keeps its input order.
    Chunks with no embedding score 0. Chunks whose embedding dimension differs
    from the query's are dropped with a warning.
    """
    query = as_vector(query_vector) if query_vector is not None else None
    scored: List[ScoredChunk] = []
    dropped = 0

    for chunk in chunks:
        if query is None or chunk.embedding is None:
            scored.append(ScoredChunk(chunk=chunk, score=0.0))
            continue
        try:
            scored.append(ScoredChunk(chunk=chunk, score=cosine(query, chunk.embedding)))
        except DimensionMismatchError as e:
            dropped += 1
            logger.warning(f"Dropping chunk {chunk.id} ({chunk.url}) from ranking: {e}")

    if dropped:
        logger.warning(f"{dropped} candidate chunk(s) had a mismatched embedding dimension")

    # sorted() is stable, so equal scores keep the lexical order
    return sorted(scored, key=lambda s: s.score, reverse=True)
