from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import numpy as np
import pytest
from openai import OpenAIError

from indexer.embeddings import EmbeddingClient, deserialize_embedding, serialize_embedding
from services.errors import UpstreamFailure


def client_returning(vector=None, error=None):
    client = Mock()
    data = [SimpleNamespace(embedding=vector)] if vector is not None else []
    client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=data), side_effect=error)
    return client


async def test_embed_returns_vector():
    client = client_returning([0.1, 0.2, 0.3])
    embedder = EmbeddingClient(model="text-embedding-3-small", dimensions=3, client=client)

    vector = await embedder.embed("  semester start  ")

    assert vector == [0.1, 0.2, 0.3]
    client.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input="semester start")


async def test_service_error_becomes_upstream_failure():
    embedder = EmbeddingClient(client=client_returning(error=OpenAIError("rate limited")))

    with pytest.raises(UpstreamFailure) as exc:
        await embedder.embed("text")

    assert exc.value.service == "embedding"
    assert isinstance(exc.value.cause, OpenAIError)


async def test_empty_text_and_empty_response_fail():
    embedder = EmbeddingClient(client=client_returning())
    with pytest.raises(UpstreamFailure):
        await embedder.embed("   ")
    with pytest.raises(UpstreamFailure):
        await embedder.embed("text")


async def test_embed_many_preserves_order():
    client = Mock()
    client.embeddings.create = AsyncMock(side_effect=[
        SimpleNamespace(data=[SimpleNamespace(embedding=[1.0])]),
        SimpleNamespace(data=[SimpleNamespace(embedding=[2.0])]),
    ])
    embedder = EmbeddingClient(dimensions=1, client=client)

    assert await embedder.embed_many(["a", "b"]) == [[1.0], [2.0]]


def test_check_dimension():
    embedder = EmbeddingClient(dimensions=4, client=Mock())
    assert embedder.check_dimension([0.0] * 4) is None
    assert "expected 4" in embedder.check_dimension([0.0] * 3)


def test_storage_format_is_float32():
    blob = serialize_embedding([0.5, -1.25, 3.0])
    assert len(blob) == 12
    np.testing.assert_array_equal(deserialize_embedding(blob), np.array([0.5, -1.25, 3.0], dtype=np.float32))
    assert deserialize_embedding(None) is None
