"""Tests for the question resolution pipeline."""

import pytest

from services.errors import ValidationError
from services.models import REVIEWED_ANSWER_SOURCE
from services.resolver import (
    DECISION_FALLBACK,
    DECISION_GENERATED,
    DECISION_OVERRIDE_EXACT,
    DECISION_OVERRIDE_SEMANTIC,
)

from conftest import unit

CALENDAR_URL = "https://example.edu/academic-calendar"
ATHLETICS_URL = "https://example.edu/athletics"
SEMESTER_QUESTION = "When does the semester start?"
QUERY_VECTOR = [0.9, 0.1, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]


@pytest.fixture
async def site(adapter, embedder):
    """A two-page corpus where the calendar page answers the semester question."""
    await adapter.replace_page(
        CALENDAR_URL, "Academic Calendar", "hash-calendar",
        [("Academic Calendar - The fall semester begins on August 26 with the first day of classes.",
          unit(0))],
    )
    await adapter.replace_page(
        ATHLETICS_URL, "Athletics", "hash-athletics",
        [("Athletics - The home season opens with the football game against State.", unit(1))],
    )
    embedder.vectors[SEMESTER_QUESTION] = QUERY_VECTOR
    return adapter


class TestValidation:
    async def test_empty_question_rejected_without_side_effects(self, resolver, adapter, generator):
        with pytest.raises(ValidationError):
            await resolver.ask("   ", sid="s-empty")

        assert await adapter.load_session("s-empty") is None
        assert generator.call_count == 0


class TestEndToEnd:
    async def test_semester_question_mints_session_and_cites_calendar(self, resolver, site, adapter):
        result = await resolver.ask(SEMESTER_QUESTION)

        assert result.sid
        assert result.answer == "Generated answer (https://example.edu/)"
        assert result.sources == [CALENDAR_URL]
        assert result.trace.top_score >= 0.45
        assert result.trace.escalation is None
        assert result.trace.decision == DECISION_GENERATED

        history = await adapter.load_history(result.sid)
        assert [turn.role for turn in history] == ["user", "assistant"]
        assert history[0].content == SEMESTER_QUESTION
        assert history[1].mid == result.mid
        assert len({turn.mid for turn in history}) == 2
        assert history[1].sources == [CALENDAR_URL]

    async def test_context_and_instruction_reach_generator(self, resolver, site, generator):
        await resolver.ask(SEMESTER_QUESTION)

        call = generator.generate_calls[0]
        assert "Example University" in call["system"]
        assert "answer isn't present" in call["system"]
        assert call["final"].startswith(f"Question: {SEMESTER_QUESTION}")
        assert f"(URL: {CALENDAR_URL})" in call["final"]
        assert "Source 1:" in call["final"]

    async def test_existing_session_is_reused(self, resolver, site, adapter):
        first = await resolver.ask(SEMESTER_QUESTION)
        second = await resolver.ask("Where is the stadium?", sid=first.sid)

        assert second.sid == first.sid
        assert len(await adapter.load_history(first.sid)) == 4

    async def test_prior_turns_are_sent_for_grounding(self, resolver, site, generator):
        first = await resolver.ask(SEMESTER_QUESTION)
        await resolver.ask("Where is the stadium?", sid=first.sid)

        turns = generator.generate_calls[1]["turns"]
        assert [t["role"] for t in turns] == ["user", "assistant"]
        assert turns[0]["content"] == SEMESTER_QUESTION


class TestOverrides:
    async def test_forced_exact_override_short_circuits(self, resolver, overrides, generator, embedder, adapter):
        await overrides.upsert("What are the library hours?", "The library is open 8am to 10pm.", force=True)
        embed_calls = len(embedder.calls)

        result = await resolver.ask("  what are the LIBRARY hours?  ")

        assert result.answer == "The library is open 8am to 10pm."
        assert result.sources == [REVIEWED_ANSWER_SOURCE]
        assert result.trace.decision == DECISION_OVERRIDE_EXACT
        assert generator.call_count == 0
        assert len(embedder.calls) == embed_calls

        history = await adapter.load_history(result.sid)
        assert history[-1].meta["override"] is True
        assert history[-1].meta["forced"] is True
        assert history[-1].mid == result.mid

    async def test_forced_override_without_answer_is_ignored(self, resolver, overrides, generator):
        await overrides.upsert("What are the library hours?", "   ", force=True)

        result = await resolver.ask("What are the library hours?")

        assert result.sources != [REVIEWED_ANSWER_SOURCE]
        assert len(generator.generate_calls) == 1

    async def test_non_forced_override_never_replaces_confident_answer(self, resolver, site, overrides, adapter):
        saved = await overrides.upsert(
            SEMESTER_QUESTION, "Reviewed: August 26.", force=False, question_embedding=QUERY_VECTOR
        )

        result = await resolver.ask(SEMESTER_QUESTION)

        assert result.trace.top_score >= 0.45
        assert result.answer == "Generated answer (https://example.edu/)"
        assert result.trace.override_candidate_id == saved.id
        history = await adapter.load_history(result.sid)
        assert history[-1].meta["overrideCandidateId"] == saved.id
        assert history[-1].meta["override"] is False

    async def test_forced_semantic_override_answers_without_generation(self, resolver, site, overrides, generator):
        await overrides.upsert(
            "semester start date", "Classes begin August 26.", force=True, question_embedding=QUERY_VECTOR
        )

        result = await resolver.ask(SEMESTER_QUESTION)

        assert result.answer == "Classes begin August 26."
        assert result.sources == [REVIEWED_ANSWER_SOURCE]
        assert result.trace.decision == DECISION_OVERRIDE_SEMANTIC
        assert generator.generate_calls == []

    async def test_semantic_override_below_threshold_is_not_a_candidate(self, resolver, site, overrides):
        await overrides.upsert("parking permits", "Buy them online.", force=True, question_embedding=unit(5))

        result = await resolver.ask(SEMESTER_QUESTION)

        assert result.trace.decision == DECISION_GENERATED
        assert result.trace.override_candidate_id is None


class TestDegradedPaths:
    async def test_generation_failure_returns_fallback_without_assistant_turn(self, resolver, site, generator,
                                                                              adapter, retrieval_config):
        generator.fail = True

        result = await resolver.ask(SEMESTER_QUESTION)

        assert result.answer == retrieval_config.fallback_answer
        assert result.sources == []
        assert result.mid is None
        assert result.trace.decision == DECISION_FALLBACK
        history = await adapter.load_history(result.sid)
        assert [turn.role for turn in history] == ["user"]

    async def test_empty_generation_persists_fallback(self, resolver, site, generator, adapter, retrieval_config):
        generator.answer = ""

        result = await resolver.ask(SEMESTER_QUESTION)

        assert result.answer == retrieval_config.fallback_answer
        assert result.mid is not None
        history = await adapter.load_history(result.sid)
        assert history[-1].content == retrieval_config.fallback_answer

    async def test_query_embedding_failure_degrades(self, resolver, site, embedder, generator):
        embedder.fail = True

        result = await resolver.ask(SEMESTER_QUESTION)

        assert result.answer == "Generated answer (https://example.edu/)"
        assert any("embedding unavailable" in w for w in result.trace.warnings)
        assert len(generator.generate_calls) == 1

    async def test_dimension_mismatch_is_a_warning(self, resolver, site, embedder):
        embedder.vectors[SEMESTER_QUESTION] = [1.0, 0.0, 0.0, 0.0]

        result = await resolver.ask(SEMESTER_QUESTION)

        assert result.mid is not None
        assert any("expected 8" in w for w in result.trace.warnings)

    async def test_normalized_query_drives_embedding(self, resolver, site, generator, embedder):
        generator.normalized["when semester start"] = SEMESTER_QUESTION

        result = await resolver.ask("when semester start")

        assert result.trace.normalized_query == SEMESTER_QUESTION
        assert SEMESTER_QUESTION in embedder.calls
        assert result.sources == [CALENDAR_URL]


class TestContinuation:
    async def test_tell_me_more_splices_previous_exchange(self, resolver, site, generator):
        first = await resolver.ask(SEMESTER_QUESTION)

        await resolver.ask("Can you tell me more?", sid=first.sid)

        expanded = generator.normalize_calls[-1]
        assert expanded.startswith("Can you tell me more?")
        assert "Elaborate on the previous exchange." in expanded
        assert f"Previous question: {SEMESTER_QUESTION}" in expanded
        assert "Previous answer: Generated answer" in expanded

    async def test_plain_question_is_not_expanded(self, resolver, site, generator):
        await resolver.ask(SEMESTER_QUESTION)

        assert generator.normalize_calls == [SEMESTER_QUESTION]

    async def test_continuation_without_history_is_unchanged(self, resolver):
        assert resolver.expand("explain more", []) == "explain more"
