"""Tests for the reviewed-answer override store."""

import pytest

from services.errors import ValidationError
from services.models import Override
from services.overrides import norm_question

from conftest import unit


def test_norm_question():
    assert norm_question("  When Does The SEMESTER Start?  ") == "when does the semester start?"


class TestExactLookup:
    async def test_exact_match_is_case_insensitive(self, overrides):
        saved = await overrides.upsert("What are the library hours?", "8am to 10pm", force=True)

        match = await overrides.find_exact("WHAT ARE THE LIBRARY HOURS?")

        assert match.override.id == saved.id
        assert match.exact
        assert match.similarity == 1.0
        assert match.is_forced

    async def test_forced_lookup_ignores_unforced_overrides(self, overrides):
        await overrides.upsert("What are the library hours?", "8am to 10pm", force=False)

        assert await overrides.find_exact("what are the library hours?") is not None
        assert await overrides.find_forced_exact("what are the library hours?") is None

    async def test_partial_question_does_not_match(self, overrides):
        await overrides.upsert("What are the library hours?", "8am to 10pm", force=True)
        assert await overrides.find_exact("library hours") is None

    async def test_falls_back_to_question_column(self, overrides, adapter):
        # Rows written before the lookup key was maintained carry a stale key
        await adapter.upsert_override(Override(question="Parking Permits?", norm_question="legacy-key-1",
                                               answer="Online", force=True))

        match = await overrides.find_forced_exact("parking permits?")

        assert match is not None
        assert match.override.answer == "Online"


class TestSemanticLookup:
    async def test_best_match_above_threshold(self, overrides):
        await overrides.upsert("semester start", "Aug 26", question_embedding=[1.0, 0.1, 0, 0, 0, 0, 0, 0])
        best = await overrides.upsert("first day of class", "Aug 26", question_embedding=unit(0))

        match = await overrides.find_semantic(unit(0))

        assert match.override.id == best.id
        assert match.similarity == pytest.approx(1.0)
        assert not match.exact

    async def test_below_threshold_is_no_match(self, overrides):
        await overrides.upsert("tuition", "See the bursar", question_embedding=[0.5, 0.5, 0.5, 0, 0, 0, 0, 0])
        # cosine = 0.577
        assert await overrides.find_semantic(unit(0)) is None

    async def test_mismatched_dimensions_are_skipped(self, overrides):
        await overrides.upsert("old model question", "answer", question_embedding=[1.0, 0.0, 0.0])
        good = await overrides.upsert("new model question", "answer", question_embedding=unit(2))

        match = await overrides.find_semantic(unit(2))

        assert match.override.id == good.id

    async def test_no_query_vector_no_match(self, overrides):
        await overrides.upsert("q", "a", question_embedding=unit(0))
        assert await overrides.find_semantic(None) is None


class TestWritePath:
    async def test_upsert_is_keyed_by_normalized_question(self, overrides):
        first = await overrides.upsert("Library hours?", "8-10", reviewer="ann")
        second = await overrides.upsert("  LIBRARY HOURS?", "9-9", force=True, reviewer="bo")

        total, rows = await overrides.list()

        assert total == 1
        assert second.id == first.id
        assert rows[0].answer == "9-9"
        assert rows[0].force is True
        assert rows[0].reviewer == "bo"

    async def test_embedding_computed_at_write_time(self, overrides, embedder):
        saved = await overrides.upsert("Library hours?", "8-10")

        assert saved.has_embedding
        assert embedder.calls == ["Library hours?"]

    async def test_embedding_failure_still_saves_and_matches_exactly(self, overrides, embedder):
        embedder.fail = True

        saved = await overrides.upsert("Library hours?", "8-10", force=True)

        assert not saved.has_embedding
        assert (await overrides.find_forced_exact("library hours?")).override.id == saved.id

    async def test_update_without_embedding_keeps_stored_one(self, overrides, embedder):
        await overrides.upsert("Library hours?", "8-10")
        embedder.fail = True

        updated = await overrides.upsert("Library hours?", "9-9")

        assert updated.has_embedding

    async def test_empty_question_rejected(self, overrides):
        with pytest.raises(ValidationError):
            await overrides.upsert("   ", "answer")

    async def test_question_embedding_is_not_serialized(self, overrides):
        saved = await overrides.upsert("Library hours?", "8-10")
        assert "questionEmbedding" not in saved.model_dump(by_alias=True)

    async def test_list_filters_and_delete(self, overrides):
        keep = await overrides.upsert("Library hours?", "8-10", force=True)
        await overrides.upsert("Parking?", "Lot B", force=False)

        total, rows = await overrides.list(force=True)
        assert (total, [r.id for r in rows]) == (1, [keep.id])
        total, rows = await overrides.list(q="lot b")
        assert [r.question for r in rows] == ["Parking?"]

        assert await overrides.delete(keep.id)
        assert not await overrides.delete(keep.id)
        assert await overrides.get(keep.id) is None


class TestBackfill:
    async def test_backfill_embeds_and_renormalizes(self, overrides, adapter, embedder):
        embedder.fail = True
        await overrides.upsert("Library hours?", "8-10")
        await adapter.upsert_override(Override(question="Parking Permits?", norm_question="Parking Permits?",
                                               answer="Online", question_embedding=unit(1)))
        embedder.fail = False

        stats = await overrides.backfill(page_size=1)

        assert stats == {"total": 2, "renormalized": 1, "embedded": 1, "failed": 0}
        assert (await overrides.find_exact("parking permits?")).override.norm_question == "parking permits?"
        _, rows = await overrides.list()
        assert all(r.has_embedding for r in rows)

    async def test_backfill_counts_embedding_failures(self, overrides, embedder):
        embedder.fail = True
        await overrides.upsert("Library hours?", "8-10")

        stats = await overrides.backfill()

        assert stats["failed"] == 1
        assert stats["embedded"] == 0
