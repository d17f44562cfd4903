"""Shared fixtures: a temporary SQLite store and offline stand-ins for the OpenAI clients."""

import os
import sys
import zlib
from typing import Dict, List, Optional, Sequence
from unittest.mock import Mock

import pytest

# Add the parent directory to the path so tests run from a plain checkout
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from config.retrieval import RetrievalConfig
from indexer.embeddings import EmbeddingClient
from indexer.sqlite_adapter import SQLiteAdapter
from pipelines.crawler import FetchResult
from services.errors import UpstreamFailure
from services.generation import AnswerGenerator, GenerationResult
from services.journal import SessionJournal
from services.overrides import OverrideStore
from services.resolver import QueryResolver
from services.retrieval import Retriever, tokenize

DIM = 8


def unit(index: int, dim: int = DIM) -> List[float]:
    """Basis vector with a 1 at ``index``."""
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


def bag_of_words(text: str, dim: int = DIM) -> List[float]:
    vector = [0.0] * dim
    for token in tokenize(text):
        vector[zlib.crc32(token.encode("utf-8")) % dim] += 1.0
    return vector


class FakeEmbedder(EmbeddingClient):
    """Deterministic embedder: explicit vectors per text, else a hashed bag of words."""

    def __init__(self, dimensions: int = DIM, vectors: Optional[Dict[str, Sequence[float]]] = None):
        super().__init__(dimensions=dimensions, client=Mock())
        self.vectors = dict(vectors or {})
        self.fail = False
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise UpstreamFailure("embedding", "service unavailable")
        if text in self.vectors:
            return list(self.vectors[text])
        return bag_of_words(text, self.dimensions)


class FakeGenerator(AnswerGenerator):
    """Records every call; answers with a fixed text or fails on demand."""

    def __init__(self, answer: str = "Generated answer (https://example.edu/)"):
        super().__init__(client=Mock())
        self.answer = answer
        self.fail = False
        self.normalized: Dict[str, str] = {}
        self.generate_calls: List[Dict] = []
        self.normalize_calls: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.generate_calls) + len(self.normalize_calls)

    async def generate(self, system_instruction, turns, final_user_message) -> GenerationResult:
        self.generate_calls.append({
            "system": system_instruction,
            "turns": list(turns),
            "final": final_user_message,
        })
        if self.fail:
            return GenerationResult.failure("service unavailable")
        return GenerationResult.success(self.answer)

    async def normalize_question(self, question: str) -> str:
        self.normalize_calls.append(question)
        return self.normalized.get(question, question)


class FakeFetcher:
    """Serves canned responses keyed by url; unknown urls fail like a dead host."""

    def __init__(self, pages: Optional[Dict[str, tuple]] = None):
        self.pages = dict(pages or {})
        self.requested: List[str] = []

    def set_html(self, url: str, html: str):
        self.pages[url] = (200, "text/html; charset=utf-8", html)

    def set_xml(self, url: str, xml: str):
        self.pages[url] = (200, "application/xml", xml)

    async def fetch(self, url: str, accept: Optional[str] = None) -> FetchResult:
        self.requested.append(url)
        if url not in self.pages:
            return FetchResult(url=url, status_code=0, error="connection refused")
        status, content_type, content = self.pages[url]
        error = f"HTTP {status}" if status >= 400 else None
        return FetchResult(url=url, status_code=status, content=content,
                           content_type=content_type, error=error)

    async def close(self):
        pass


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def retrieval_config():
    return RetrievalConfig()


@pytest.fixture
async def adapter(tmp_path):
    db = SQLiteAdapter(str(tmp_path / "siteqa.db"))
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def scan_adapter(tmp_path):
    db = SQLiteAdapter(str(tmp_path / "siteqa-scan.db"), enable_fulltext=False)
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def journal(adapter):
    return SessionJournal(adapter)


@pytest.fixture
def overrides(adapter, embedder, retrieval_config):
    return OverrideStore(adapter, embedder, threshold=retrieval_config.override_similarity)


@pytest.fixture
def resolver(adapter, journal, overrides, embedder, generator, retrieval_config):
    return QueryResolver(
        journal=journal,
        overrides=overrides,
        retriever=Retriever(adapter, retrieval_config),
        embedder=embedder,
        generator=generator,
        config=retrieval_config,
        site_name="Example University",
        site_prefix="https://example.edu/",
    )
