"""Question resolution pipeline.

One question moves through named stages:

    received -> expanded -> normalized -> embedded -> retrieved -> resolved -> persisted

A forced override short-circuits the pipeline as soon as it is found: exact
matches right after the question is recorded, semantic matches right after
the query is embedded. Otherwise the answer is generated from retrieved
context, whatever the retrieval confidence.
"""

import logging
import re
import time
from typing import Any, Dict, List, Optional

from config.retrieval import RetrievalConfig
from indexer.embeddings import EmbeddingClient
from observability.logging import get_structured_logger
from observability.metrics import record_question, record_upstream_failure
from services.errors import UpstreamFailure, ValidationError
from services.generation import (
    AnswerGenerator,
    build_final_message,
    build_system_instruction,
    history_messages,
)
from services.journal import SessionJournal, last_assistant_turn, last_distinct_user_turn, new_id
from services.models import REVIEWED_ANSWER_SOURCE, AskResult, OverrideMatch, QueryTrace, Role, Turn
from services.overrides import OverrideStore
from services.retrieval import Retriever

logger = logging.getLogger(__name__)
decision_log = get_structured_logger("siteqa.decisions")

DECISION_OVERRIDE_EXACT = "override_exact"
DECISION_OVERRIDE_SEMANTIC = "override_semantic"
DECISION_GENERATED = "generated"
DECISION_FALLBACK = "fallback"


class QueryResolver:
    """Answers questions for a session, recording both sides in the journal."""

    def __init__(self,
                 journal: SessionJournal,
                 overrides: OverrideStore,
                 retriever: Retriever,
                 embedder: EmbeddingClient,
                 generator: AnswerGenerator,
                 config: Optional[RetrievalConfig] = None,
                 site_name: str = "the website",
                 site_prefix: str = ""):
        self.journal = journal
        self.overrides = overrides
        self.retriever = retriever
        self.embedder = embedder
        self.generator = generator
        self.config = config or RetrievalConfig()
        self.system_instruction = build_system_instruction(site_name, site_prefix)
        self._continuation = re.compile(self.config.continuation_pattern, re.IGNORECASE)

    def expand(self, question: str, history: List[Turn]) -> str:
        """Splice the previous exchange into a "tell me more" style follow-up."""
        if not self._continuation.search(question):
            return question

        previous_answer = last_assistant_turn(history)
        if previous_answer is None:
            return question
        previous_question = last_distinct_user_turn(history, question)

        parts = [question, "", "Elaborate on the previous exchange."]
        if previous_question is not None:
            parts.append(f"Previous question: {previous_question.content}")
        parts.append(f"Previous answer: {previous_answer.content}")
        return "\n".join(parts)

    async def ask(self, question: str, sid: Optional[str] = None,
                  meta: Optional[Dict[str, Any]] = None) -> AskResult:
        """Answer ``question`` within session ``sid`` (minted when absent).

        Raises:
            ValidationError: if the question is empty. Nothing is recorded.
        """
        start = time.time()
        question = (question or "").strip()
        if not question:
            raise ValidationError("Empty question")

        trace = QueryTrace()
        sid = sid or new_id()
        history = await self.journal.history(sid, limit=self.config.history_turns)
        await self.journal.append(sid, Role.USER, question, meta=meta)
        trace.stages.append("received")

        forced = await self.overrides.find_forced_exact(question)
        if forced is not None:
            return await self._answer_with_override(sid, forced, DECISION_OVERRIDE_EXACT, trace, start)

        expanded = self.expand(question, history)
        trace.expanded_query = expanded
        trace.stages.append("expanded")

        normalized = await self.generator.normalize_question(expanded)
        trace.normalized_query = normalized
        trace.stages.append("normalized")
        logger.info(f"Normalized query: {normalized!r}")

        query_vector: Optional[List[float]] = None
        try:
            query_vector = await self.embedder.embed(normalized)
            warning = self.embedder.check_dimension(query_vector)
            if warning:
                trace.warnings.append(warning)
                logger.warning(warning)
        except UpstreamFailure as e:
            record_upstream_failure(e.service)
            trace.warnings.append(f"query embedding unavailable: {e}")
            logger.warning(f"Query embedding failed, ranking without vectors: {e}")
        trace.stages.append("embedded")

        semantic = await self.overrides.find_semantic(query_vector) if query_vector is not None else None
        if semantic is not None and semantic.is_forced:
            return await self._answer_with_override(sid, semantic, DECISION_OVERRIDE_SEMANTIC, trace, start)
        if semantic is not None:
            trace.override_candidate_id = semantic.override.id

        outcome = await self.retriever.retrieve(normalized, query_vector, history)
        trace.warnings.extend(outcome.warnings)
        trace.top_score = outcome.top_score
        trace.escalation = outcome.escalation
        trace.candidate_count = outcome.candidate_count
        trace.stages.append("retrieved")

        result = await self.generator.generate(
            self.system_instruction,
            history_messages(history[-self.config.history_turns:]),
            build_final_message(expanded, outcome.context),
        )
        trace.stages.append("resolved")

        if not result.ok:
            # The user turn stays recorded; no assistant turn is paired with it
            trace.decision = DECISION_FALLBACK
            trace.warnings.append(f"generation failed: {result.error}")
            self._finish(sid, trace, start)
            return AskResult(sid=sid, answer=self.config.fallback_answer, sources=[], mid=None, trace=trace)

        answer = result.text or self.config.fallback_answer
        trace.decision = DECISION_GENERATED if result.text else DECISION_FALLBACK
        sources = outcome.sources
        turn_meta: Dict[str, Any] = {
            "override": False,
            "forced": False,
            "topScore": outcome.top_score,
            "escalation": outcome.escalation,
        }
        if trace.override_candidate_id is not None:
            turn_meta["overrideCandidateId"] = trace.override_candidate_id

        turn = await self.journal.append(sid, Role.ASSISTANT, answer, sources=sources, meta=turn_meta)
        trace.stages.append("persisted")
        self._finish(sid, trace, start)
        return AskResult(sid=sid, answer=answer, sources=sources, mid=turn.mid, trace=trace)

    async def _answer_with_override(self, sid: str, match: OverrideMatch, decision: str,
                                    trace: QueryTrace, start: float) -> AskResult:
        override = match.override
        trace.decision = decision
        trace.stages.append("resolved")
        turn = await self.journal.append(
            sid,
            Role.ASSISTANT,
            override.answer,
            sources=[REVIEWED_ANSWER_SOURCE],
            meta={
                "override": True,
                "forced": True,
                "overrideId": override.id,
                "similarity": round(match.similarity, 4),
            },
        )
        trace.stages.append("persisted")
        self._finish(sid, trace, start)
        return AskResult(sid=sid, answer=override.answer, sources=[REVIEWED_ANSWER_SOURCE],
                         mid=turn.mid, trace=trace)

    def _finish(self, sid: str, trace: QueryTrace, start: float):
        duration = time.time() - start
        record_question(trace.decision or DECISION_FALLBACK, duration)
        decision_log.info(
            "Question resolved",
            sid=sid,
            decision=trace.decision,
            top_score=trace.top_score,
            escalation=trace.escalation,
            warnings=len(trace.warnings),
            duration_ms=round(duration * 1000),
        )
