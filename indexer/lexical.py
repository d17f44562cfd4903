"""Lexical prefilter strategies over the chunk store.

Two interchangeable strategies: an index-backed one using SQLite FTS5, and a
linear scan using a word-boundary regex per token. Which one is used is
decided once from the store's capabilities.
"""

import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from typing import List, Sequence

from indexer.sqlite_adapter import SQLiteAdapter
from services.errors import LexicalSearchError
from services.models import ChunkRecord

logger = logging.getLogger(__name__)


class LexicalRetriever(ABC):
    """Finds chunks that mention any of a set of tokens."""

    name = "base"

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    @abstractmethod
    async def search(self, tokens: Sequence[str], limit: int) -> List[ChunkRecord]:
        """Return up to ``limit`` chunks matching any token.

        Raises:
            LexicalSearchError: if the backend fails the query.
        """


class FullTextLexicalRetriever(LexicalRetriever):
    """FTS5 ``MATCH`` with an OR of quoted tokens, best rank first."""

    name = "fulltext"

    @staticmethod
    def build_match_query(tokens: Sequence[str]) -> str:
        quoted = ['"' + token.replace('"', '""') + '"' for token in tokens if token]
        return " OR ".join(quoted)

    async def search(self, tokens: Sequence[str], limit: int) -> List[ChunkRecord]:
        match_query = self.build_match_query(tokens)
        if not match_query:
            return []
        try:
            return await self.adapter.search_fulltext(match_query, limit)
        except sqlite3.Error as e:
            raise LexicalSearchError(f"fulltext search failed for {match_query!r}: {e}") from e


class ScanLexicalRetriever(LexicalRetriever):
    """Word-boundary regex per token, OR-ed, over every chunk."""

    name = "scan"

    async def search(self, tokens: Sequence[str], limit: int) -> List[ChunkRecord]:
        patterns = [rf"\b{re.escape(token)}\b" for token in tokens if token]
        if not patterns:
            return []
        try:
            return await self.adapter.search_regex(patterns, limit)
        except sqlite3.Error as e:
            raise LexicalSearchError(f"scan search failed: {e}") from e


def select_lexical_retriever(adapter: SQLiteAdapter) -> LexicalRetriever:
    """Pick the index-backed strategy when the store supports it."""
    if getattr(adapter, "supports_fulltext", False):
        retriever: LexicalRetriever = FullTextLexicalRetriever(adapter)
    else:
        retriever = ScanLexicalRetriever(adapter)
    logger.info(f"Lexical retriever: {retriever.name}")
    return retriever
