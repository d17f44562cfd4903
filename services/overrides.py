"""Reviewed-answer overrides: exact and semantic lookup, plus the authoring path."""

import logging
import sqlite3
from typing import Any, Dict, List, Optional, Sequence, Tuple

from indexer.embeddings import EmbeddingClient
from indexer.similarity import cosine
from indexer.sqlite_adapter import SQLiteAdapter
from services.errors import DimensionMismatchError, UpstreamFailure, ValidationError
from services.models import Override, OverrideMatch

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.82


def norm_question(question: str) -> str:
    """Lookup key for an override: trimmed and case-folded."""
    return (question or "").strip().lower()


class OverrideStore:
    """Accessor over the ``faq_overrides`` table."""

    def __init__(self, adapter: SQLiteAdapter, embedder: Optional[EmbeddingClient] = None,
                 threshold: float = DEFAULT_THRESHOLD):
        self.adapter = adapter
        self.embedder = embedder
        self.threshold = threshold

    async def find_exact(self, query: str) -> Optional[OverrideMatch]:
        """Whole-string, case-insensitive match on the normalized question."""
        key = norm_question(query)
        if not key:
            return None
        override = await self.adapter.find_override_by_question(key)
        if override is None:
            return None
        return OverrideMatch(override=override, similarity=1.0, exact=True)

    async def find_forced_exact(self, query: str) -> Optional[OverrideMatch]:
        match = await self.find_exact(query)
        return match if match is not None and match.is_forced else None

    async def find_semantic(self, query_vector: Optional[Sequence[float]]) -> Optional[OverrideMatch]:
        """Best override by question-embedding cosine, if it clears the threshold."""
        if query_vector is None:
            return None

        best: Optional[OverrideMatch] = None
        for override in await self.adapter.list_overrides_with_embeddings():
            try:
                score = cosine(query_vector, override.question_embedding)
            except DimensionMismatchError as e:
                logger.warning(f"Skipping override {override.id} in semantic lookup: {e}")
                continue
            if best is None or score > best.similarity:
                best = OverrideMatch(override=override, similarity=score)

        if best is None or best.similarity < self.threshold:
            return None
        logger.debug(f"Semantic override candidate {best.override.id} at {best.similarity:.3f}")
        return best

    async def _embed_question(self, question: str) -> Optional[List[float]]:
        if self.embedder is None:
            return None
        try:
            return await self.embedder.embed(question)
        except UpstreamFailure as e:
            logger.warning(f"Override embedding failed, saving without it: {e}")
            return None

    async def upsert(self, question: str, answer: str, force: bool = False,
                     reviewer: str = "", sid: Optional[str] = None,
                     assistant_mid: Optional[str] = None,
                     question_embedding: Optional[List[float]] = None) -> Override:
        """Create or update the override for ``question``.

        The question embedding is computed here unless supplied. An embedding
        failure is logged and the override is stored without one; it still
        takes part in exact matching.
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("override question must not be empty")

        embedding = question_embedding or await self._embed_question(question)
        override = Override(
            question=question,
            norm_question=norm_question(question),
            answer=(answer or "").strip(),
            question_embedding=embedding,
            force=force,
            reviewer=reviewer or "",
            sid=sid,
            assistant_mid=assistant_mid,
        )
        saved = await self.adapter.upsert_override(override)
        logger.info(f"Saved override {saved.id} (force={saved.force}, embedded={saved.has_embedding})")
        return saved

    async def list(self, q: Optional[str] = None, force: Optional[bool] = None,
                   limit: int = 50, skip: int = 0) -> Tuple[int, List[Override]]:
        return await self.adapter.list_overrides(q=q, force=force, limit=limit, skip=skip)

    async def get(self, override_id: int) -> Optional[Override]:
        return await self.adapter.get_override(override_id)

    async def delete(self, override_id: int) -> bool:
        return await self.adapter.delete_override(override_id)

    async def backfill(self, page_size: int = 200) -> Dict[str, Any]:
        """Recompute lookup keys and fill in missing question embeddings."""
        stats = {"total": 0, "renormalized": 0, "embedded": 0, "failed": 0}
        overrides: List[Override] = []
        skip = 0
        while True:
            _, page = await self.list(limit=page_size, skip=skip)
            if not page:
                break
            overrides.extend(page)
            skip += len(page)

        for override in overrides:
            stats["total"] += 1
            key = norm_question(override.question)
            embedding = None
            if not override.has_embedding:
                embedding = await self._embed_question(override.question)
                if embedding is None:
                    stats["failed"] += 1
                else:
                    stats["embedded"] += 1

            if key != override.norm_question or embedding is not None:
                if key != override.norm_question:
                    stats["renormalized"] += 1
                try:
                    await self.adapter.update_override_key(override.id, key, embedding)
                except sqlite3.IntegrityError as e:
                    logger.warning(f"Override {override.id}: key {key!r} already taken: {e}")
                    stats["failed"] += 1

        logger.info(f"Override backfill: {stats}")
        return stats
