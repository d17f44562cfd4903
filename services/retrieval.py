"""Retrieval stage of question answering.

Gathers candidate chunks lexically, ranks them by embedding similarity,
rescans the store when confidence is low, and selects the context that is
handed to the generator.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from config.retrieval import RetrievalConfig
from indexer.lexical import LexicalRetriever, ScanLexicalRetriever, select_lexical_retriever
from indexer.similarity import Vector, rank_chunks
from indexer.sqlite_adapter import SQLiteAdapter
from observability.metrics import record_escalation
from services.errors import LexicalSearchError
from services.generation import build_context_block
from services.journal import last_assistant_turn
from services.models import ChunkRecord, ScoredChunk, Turn

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

ESCALATION_DEEP = "deep"
ESCALATION_NARROW = "narrow"


def tokenize(text: str, min_length: int = 3) -> List[str]:
    """Lowercase alphanumeric tokens of at least ``min_length`` chars, deduplicated in order."""
    seen: Dict[str, None] = {}
    for token in _TOKEN_RE.findall((text or "").lower()):
        if len(token) >= min_length:
            seen.setdefault(token, None)
    return list(seen)


def expand_synonyms(tokens: Sequence[str], groups: Sequence[Sequence[str]]) -> List[str]:
    """Add every member of a synonym group that any token belongs to."""
    lookup: Dict[str, List[str]] = {}
    for group in groups:
        members = [word.lower() for word in group]
        for word in members:
            bucket = lookup.setdefault(word, [])
            for member in members:
                if member not in bucket:
                    bucket.append(member)

    expanded: Dict[str, None] = dict.fromkeys(tokens)
    for token in tokens:
        for synonym in lookup.get(token, []):
            expanded.setdefault(synonym, None)
    return list(expanded)


def source_urls(selected: Iterable[ScoredChunk]) -> List[str]:
    """Urls of the selected chunks, de-duplicated in rank order."""
    return list(dict.fromkeys(item.url for item in selected))


def _union(base: List[ChunkRecord], extra: Iterable[ChunkRecord]) -> List[ChunkRecord]:
    merged = {chunk.id: chunk for chunk in base}
    for chunk in extra:
        merged.setdefault(chunk.id, chunk)
    return list(merged.values())


@dataclass
class RetrievalOutcome:
    """Everything the retrieval stage decided for one question."""
    tokens: List[str] = field(default_factory=list)
    expanded_tokens: List[str] = field(default_factory=list)
    candidate_count: int = 0
    ranked: List[ScoredChunk] = field(default_factory=list)
    selected: List[ScoredChunk] = field(default_factory=list)
    context: str = ""
    escalation: Optional[str] = None
    lexical_strategy: str = ""
    warnings: List[str] = field(default_factory=list)

    @property
    def top_score(self) -> Optional[float]:
        return self.ranked[0].score if self.ranked else None

    @property
    def sources(self) -> List[str]:
        return source_urls(self.selected)


class Retriever:
    """Candidate gathering, ranking, escalation and context selection."""

    def __init__(self, adapter: SQLiteAdapter, config: Optional[RetrievalConfig] = None,
                 lexical: Optional[LexicalRetriever] = None):
        self.adapter = adapter
        self.config = config or RetrievalConfig()
        self.lexical = lexical or select_lexical_retriever(adapter)
        self._dont_know = re.compile(self.config.dont_know_pattern, re.IGNORECASE)

    async def _lexical_search(self, tokens: Sequence[str], limit: int,
                              outcome: RetrievalOutcome) -> List[ChunkRecord]:
        """Run the lexical strategy, retrying once with a linear scan on failure."""
        if not tokens:
            return []
        try:
            return await self.lexical.search(tokens, limit)
        except LexicalSearchError as e:
            if isinstance(self.lexical, ScanLexicalRetriever):
                raise
            message = f"lexical search via {self.lexical.name} failed, falling back to scan: {e}"
            logger.warning(message)
            outcome.warnings.append(message)
            return await ScanLexicalRetriever(self.adapter).search(tokens, limit)

    async def gather_candidates(self, query: str, outcome: RetrievalOutcome) -> List[ChunkRecord]:
        cfg = self.config
        outcome.tokens = tokenize(query, cfg.min_token_length)
        outcome.expanded_tokens = expand_synonyms(outcome.tokens, cfg.synonym_groups)
        outcome.lexical_strategy = self.lexical.name

        candidates = await self._lexical_search(outcome.expanded_tokens, cfg.prefilter_limit, outcome)

        if len(candidates) < cfg.sparse_candidate_threshold:
            generic = await self._lexical_search(cfg.generic_keywords, cfg.generic_pool_limit, outcome)
            candidates = _union(candidates, generic)

        query_lower = query.lower()
        for rule in cfg.topic_rules:
            if any(trigger.lower() in query_lower for trigger in rule.triggers):
                steered = await self.adapter.find_chunks_by_url_pattern(rule.url_pattern, rule.limit)
                logger.debug(f"Topic rule {rule.url_pattern!r} added {len(steered)} chunks")
                candidates = _union(candidates, steered)

        if not candidates:
            candidates = await self.adapter.sample_chunks(cfg.sample_limit)

        return candidates

    async def escalate(self, query: str, query_vector: Optional[Vector],
                       history: Sequence[Turn], outcome: RetrievalOutcome):
        """Rescan the store for literal matches and merge the best back into the ranking."""
        cfg = self.config
        last = last_assistant_turn(history)
        if last is not None and self._dont_know.search(last.content):
            outcome.escalation = ESCALATION_DEEP
            hits = await self.adapter.search_chunks_containing(
                [query, *outcome.expanded_tokens], cfg.deep_scan_limit
            )
        else:
            outcome.escalation = ESCALATION_NARROW
            hits = await self.adapter.search_chunks_containing([query], cfg.narrow_scan_limit)
        record_escalation(outcome.escalation)

        rescored = rank_chunks(query_vector, hits)[:cfg.rescore_merge]
        merged = {item.chunk.id: item for item in outcome.ranked}
        for item in rescored:
            current = merged.get(item.chunk.id)
            if current is None or item.score > current.score:
                merged[item.chunk.id] = item
        outcome.ranked = sorted(merged.values(), key=lambda s: s.score, reverse=True)
        logger.info(f"Escalation {outcome.escalation}: {len(hits)} hits, merged {len(rescored)}")

    def select(self, ranked: Sequence[ScoredChunk]) -> List[ScoredChunk]:
        """Candidates at or above the floor, capped; the top ones regardless if none qualify."""
        cfg = self.config
        selected = [item for item in ranked if item.score >= cfg.min_similarity][:cfg.max_context_chunks]
        if not selected:
            selected = list(ranked[:cfg.max_context_chunks])
        return selected

    async def retrieve(self, query: str, query_vector: Optional[Vector],
                       history: Sequence[Turn] = ()) -> RetrievalOutcome:
        """Run the full retrieval stage for a normalized query."""
        outcome = RetrievalOutcome()
        candidates = await self.gather_candidates(query, outcome)
        outcome.candidate_count = len(candidates)
        outcome.ranked = rank_chunks(query_vector, candidates)

        top = outcome.top_score
        if top is None or top < self.config.site_confidence:
            await self.escalate(query, query_vector, history, outcome)

        outcome.selected = self.select(outcome.ranked)
        outcome.context = build_context_block(outcome.selected)

        for item in outcome.ranked[:5]:
            logger.debug(f"score={item.score:.3f} {item.url}")
        return outcome
