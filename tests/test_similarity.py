import numpy as np
import pytest

from indexer.similarity import cosine, rank_chunks
from services.errors import DimensionMismatchError
from services.models import ChunkRecord


def chunk(idx, embedding):
    return ChunkRecord(
        id=idx,
        url=f"https://example.edu/{idx}",
        index=0,
        text=f"text {idx}",
        embedding=None if embedding is None else np.asarray(embedding, dtype=np.float32),
    )


@pytest.mark.parametrize("vector", [[1.0, 2.0, 3.0], [-0.5, 0.25, 8.0, 1e-3], [42.0]])
def test_cosine_of_vector_with_itself_is_one(vector):
    assert cosine(vector, vector) == pytest.approx(1.0, abs=1e-6)


def test_cosine_with_zero_vector_is_zero():
    assert cosine([1.0, 2.0, 3.0], [0.0, 0.0, 0.0]) == 0.0
    assert cosine([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_cosine_of_opposite_vectors():
    assert cosine([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_rejects_mismatched_lengths():
    with pytest.raises(DimensionMismatchError) as exc:
        cosine([1.0, 2.0, 3.0], [1.0, 2.0])
    assert exc.value.left == 3
    assert exc.value.right == 2


def test_rank_chunks_sorts_descending():
    ranked = rank_chunks([1.0, 0.0], [chunk(1, [0.0, 1.0]), chunk(2, [1.0, 0.0]), chunk(3, [1.0, 1.0])])
    assert [s.chunk.id for s in ranked] == [2, 3, 1]
    assert ranked[0].score == pytest.approx(1.0)


def test_rank_chunks_drops_mismatched_dimensions():
    ranked = rank_chunks([1.0, 0.0], [chunk(1, [1.0, 0.0, 0.0]), chunk(2, [1.0, 0.0])])
    assert [s.chunk.id for s in ranked] == [2]


def test_rank_chunks_without_query_vector_keeps_order():
    ranked = rank_chunks(None, [chunk(1, [1.0]), chunk(2, None), chunk(3, [0.5])])
    assert [s.chunk.id for s in ranked] == [1, 2, 3]
    assert all(s.score == 0.0 for s in ranked)


def test_chunk_without_embedding_scores_zero():
    ranked = rank_chunks([1.0, 0.0], [chunk(1, None), chunk(2, [0.5, 0.5])])
    assert [(s.chunk.id, s.score) for s in ranked][1] == (1, 0.0)
