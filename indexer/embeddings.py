# siteqa Embeddings Module
# Talks to the hosted embedding service for chunks, queries and override questions

import logging
import time
from typing import List, Optional

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from services.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Produces fixed-dimension vectors for text via the OpenAI embeddings API."""

    def __init__(self, api_key: str = "", model: str = "text-embedding-3-small",
                 dimensions: int = 1536, timeout: float = 20.0,
                 client: Optional[AsyncOpenAI] = None):
        """
        Initialize embedding client

        Args:
            api_key: OpenAI API key (ignored when ``client`` is given)
            model: Embedding model name
            dimensions: Dimension the rest of the system expects
            timeout: Request timeout in seconds
            client: Optional pre-built AsyncOpenAI client
        """
        self.model = model
        self.dimensions = dimensions
        self.client = client or AsyncOpenAI(api_key=api_key or None, timeout=timeout)

    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Raises:
            UpstreamFailure: if the service call fails or returns no vector.
        """
        text = (text or "").strip()
        if not text:
            raise UpstreamFailure("embedding", "cannot embed empty text")

        start = time.time()
        try:
            response = await self.client.embeddings.create(model=self.model, input=text)
        except OpenAIError as e:
            logger.warning(f"Embedding call failed ({self.model}): {e}")
            raise UpstreamFailure("embedding", str(e), cause=e) from e

        if not response.data:
            raise UpstreamFailure("embedding", "empty response")

        vector = list(response.data[0].embedding)
        logger.debug(f"Embedded {len(text)} chars in {(time.time() - start) * 1000:.0f}ms ({len(vector)}d)")
        return vector

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed each text in order, one request per text."""
        return [await self.embed(text) for text in texts]

    def check_dimension(self, vector: List[float]) -> Optional[str]:
        """Return a warning message when ``vector`` is not the configured size."""
        if len(vector) != self.dimensions:
            return f"query embedding has {len(vector)} dimensions, expected {self.dimensions}"
        return None


def serialize_embedding(embedding) -> bytes:
    """Serialize embedding for database storage"""
    return np.asarray(embedding, dtype=np.float32).tobytes()


def deserialize_embedding(data: Optional[bytes]) -> Optional[np.ndarray]:
    """Deserialize embedding from database"""
    if not data:
        return None
    return np.frombuffer(data, dtype=np.float32)
