import string

import pytest

from pipelines.chunker import ChunkConfig, chunk_text, iter_chunks


def sample_text(length: int) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(alphabet[i % len(alphabet)] for i in range(length))


def test_consecutive_chunks_overlap_exactly():
    text = sample_text(5600)
    chunks = list(iter_chunks(text, size=2000, overlap=250))

    assert len(chunks) == 4
    for current, following in zip(chunks, chunks[1:]):
        assert current[-250:] == following[:250]
    assert all(len(c) == 2000 for c in chunks[:-1])
    assert len(chunks[-1]) <= 2000


def test_chunks_cover_the_whole_text():
    text = sample_text(4321)
    chunks = list(iter_chunks(text, size=2000, overlap=250))
    rebuilt = chunks[0] + "".join(c[250:] for c in chunks[1:])
    assert rebuilt == text


def test_last_window_reaching_the_end_stops_iteration():
    # 2000 + 1750 covers 3750 chars exactly: no trailing chunk contained in its predecessor
    chunks = list(iter_chunks(sample_text(3750), size=2000, overlap=250))
    assert len(chunks) == 2


def test_short_text_is_a_single_chunk():
    assert list(iter_chunks("Short text", size=2000, overlap=250)) == ["Short text"]


def test_empty_text_has_no_chunks():
    assert list(iter_chunks("", size=2000, overlap=250)) == []


def test_chunking_is_deterministic():
    text = sample_text(9000)
    assert list(iter_chunks(text)) == list(iter_chunks(text))


def test_chunk_text_caps_pages_at_six_chunks():
    chunks = chunk_text(sample_text(50_000))
    assert len(chunks) == 6


def test_chunk_text_without_cap():
    chunks = chunk_text(sample_text(50_000), ChunkConfig(max_chunks=None))
    assert len(chunks) > 6


@pytest.mark.parametrize("size,overlap", [(0, 0), (100, 100), (100, -1)])
def test_invalid_config_rejected(size, overlap):
    with pytest.raises(ValueError):
        ChunkConfig(size=size, overlap=overlap)
