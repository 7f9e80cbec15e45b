import math

import pytest
from sqlalchemy import select

from lectio.models import Lesson, PlanItem, PlanItemLesson
from lectio.services import ownership
from lectio.services.pipeline import LessonPipeline, PlanItemNotFound, PlanNotFound

from tests.fakes import FakeSynthesizer, count


async def mapped_lesson_ids(db, plan_id):
    rows = await db.execute(
        select(PlanItemLesson.lesson_id)
        .join(PlanItem, PlanItem.id == PlanItemLesson.plan_item_id)
        .where(PlanItem.plan_id == plan_id)
        .order_by(PlanItem.sequence_index)
    )
    return list(rows.scalars().all())


class TestGenerateOne:
    """Single item: passage -> cache -> generate -> narrate -> persist -> map."""

    async def test_creates_and_maps(self, db, pipeline, make_plan, generator):
        plan_id = await make_plan(["John 3:16-17"])
        item_id = (await ownership.pending_items(db, plan_id))[0].id

        result = await pipeline.generate_one(db, item_id)
        outcome = result.results[0]
        assert outcome.status == "created"
        assert outcome.reference == "John 3:16–17"
        assert len(outcome.share_slug) == 32
        assert (result.completed, result.total, result.remaining) == (1, 1, 0)
        assert result.all_complete

        lesson = await db.get(Lesson, outcome.lesson_id)
        assert lesson.audio_manifest_json is not None
        assert lesson.story_manifest_json["pages"][-1]["content"]["cta"]["href"] == f"/quiz/{lesson.share_slug}"
        assert len(generator.calls) == 1

    async def test_idempotent(self, db, pipeline, make_plan, generator):
        plan_id = await make_plan(["John 3:16-17"])
        item_id = (await ownership.pending_items(db, plan_id))[0].id

        first = await pipeline.generate_one(db, item_id)
        second = await pipeline.generate_one(db, item_id)
        assert second.results[0].status == "reused"
        assert second.results[0].lesson_id == first.results[0].lesson_id
        assert await count(db, Lesson) == 1
        assert await count(db, PlanItemLesson) == 1
        assert len(generator.calls) == 1

    async def test_narration_failure_does_not_block(self, db, passages, generator, store, make_plan):
        pipeline = LessonPipeline(passages, generator, FakeSynthesizer(fail=True), store)
        plan_id = await make_plan(["Psalm 23"])
        item_id = (await ownership.pending_items(db, plan_id))[0].id

        result = await pipeline.generate_one(db, item_id)
        assert result.results[0].status == "created"
        lesson = await db.get(Lesson, result.results[0].lesson_id)
        assert lesson.audio_manifest_json is None
        item = await db.get(PlanItem, item_id)
        await db.refresh(item)
        assert item.status.value == "published"

    async def test_passage_error_leaves_item_pending(self, db, pipeline, passages, make_plan):
        plan_id = await make_plan(["Hezekiah 4:1"])
        passages.failing.add("Hezekiah 4:1")
        item_id = (await ownership.pending_items(db, plan_id))[0].id

        result = await pipeline.generate_one(db, item_id)
        assert result.results[0].status == "error"
        assert "Hezekiah" in result.results[0].error
        assert result.remaining == 1
        assert await count(db, Lesson) == 0

    async def test_invalid_generation_is_item_error(self, db, pipeline, generator, make_plan):
        generator.fail = True
        plan_id = await make_plan(["John 1:1"])
        item_id = (await ownership.pending_items(db, plan_id))[0].id
        result = await pipeline.generate_one(db, item_id)
        assert result.results[0].status == "error"
        assert await count(db, PlanItemLesson) == 0

    async def test_unknown_translation_is_item_error(self, db, pipeline, make_plan):
        plan_id = await make_plan(["John 1:1"], translation="NIV")
        item_id = (await ownership.pending_items(db, plan_id))[0].id
        result = await pipeline.generate_one(db, item_id)
        assert result.results[0].status == "error"

    async def test_missing_item(self, db, pipeline):
        with pytest.raises(PlanItemNotFound):
            await pipeline.generate_one(db, 999)

    async def test_multi_reference_item(self, db, pipeline, passages, make_plan):
        plan_id = await make_plan([["Psalm 1", "Psalm 2"]])
        item_id = (await ownership.pending_items(db, plan_id))[0].id
        result = await pipeline.generate_one(db, item_id)
        assert passages.calls == ["Psalm 1; Psalm 2"]
        assert result.results[0].reference == "Psalm 1; Psalm 2"


class TestDedup:
    """Same passage, same lesson, across plans."""

    async def test_items_sharing_a_passage_share_a_lesson(self, db, pipeline, passages, generator, make_plan):
        passages.canonical = {"Jn 3:16-17": "John 3:16–17", "John 3 : 16 - 17": "John 3:16-17"}
        a = await make_plan(["Jn 3:16-17"], title="Plan A")
        b = await make_plan(["John 3 : 16 - 17"], title="Plan B")

        await pipeline.generate_batch(db, a, 5)
        result = await pipeline.generate_batch(db, b, 5)
        assert result.results[0].status == "reused"

        ids = await mapped_lesson_ids(db, a) + await mapped_lesson_ids(db, b)
        assert len(set(ids)) == 1
        assert len(generator.calls) == 1
        assert await count(db, Lesson) == 1

    async def test_translation_is_part_of_the_key(self, db, passages, generator, synthesizer, store, make_plan):
        passages.translations = ("ESV", "KJV")
        pipeline = LessonPipeline(passages, generator, synthesizer, store)
        esv = await make_plan(["John 1:1"])
        kjv = await make_plan(["John 1:1"], translation="KJV")
        await pipeline.generate_batch(db, esv)
        await pipeline.generate_batch(db, kjv)
        assert await count(db, Lesson) == 2


class TestBatch:
    """Resumable batches derived from the mapping table."""

    async def test_scenario_ten_items_three_cached(self, db, pipeline, generator, make_plan):
        refs = [f"Mark {n}:1-8" for n in range(1, 11)]
        seed = await make_plan(refs[:3], title="Seed")
        await pipeline.generate_batch(db, seed, 3)
        assert len(generator.calls) == 3

        plan_id = await make_plan(refs, title="Mark")
        first = await pipeline.generate_batch(db, plan_id, 5)
        assert (first.completed, first.total, first.remaining) == (5, 10, 5)
        assert not first.all_complete
        assert [o.status for o in first.results] == ["reused"] * 3 + ["created"] * 2
        assert [o.index for o in first.results] == [1, 2, 3, 4, 5]

        second = await pipeline.generate_batch(db, plan_id, 5)
        assert (second.completed, second.total, second.remaining) == (10, 10, 0)
        assert second.all_complete
        assert [o.index for o in second.results] == [6, 7, 8, 9, 10]
        assert len(generator.calls) == 3 + 7

    @pytest.mark.parametrize("k,b", [(7, 3), (6, 2), (4, 5)])
    async def test_resumes_in_ceil_k_over_b_calls(self, db, pipeline, make_plan, k, b):
        plan_id = await make_plan([f"Luke {n}:1" for n in range(1, k + 1)])
        seen = []
        calls = 0
        while True:
            result = await pipeline.generate_batch(db, plan_id, b)
            calls += 1
            assert len(result.results) == min(b, k - len(seen))
            seen.extend(o.index for o in result.results)
            if result.remaining == 0:
                break
        assert calls == math.ceil(k / b)
        assert seen == list(range(1, k + 1))

    async def test_error_does_not_abort_batch(self, db, pipeline, passages, make_plan):
        plan_id = await make_plan(["John 1:1", "Broken 1:1", "John 1:3"])
        passages.failing.add("Broken 1:1")

        result = await pipeline.generate_batch(db, plan_id, 5)
        assert [o.status for o in result.results] == ["created", "error", "created"]
        assert result.remaining == 1

        passages.failing.clear()
        retry = await pipeline.generate_batch(db, plan_id, 5)
        assert [o.index for o in retry.results] == [2]
        assert retry.all_complete

    async def test_next_pending_is_batch_of_one(self, db, pipeline, make_plan):
        plan_id = await make_plan(["John 1:1", "John 1:2"])
        result = await pipeline.generate_next_pending(db, plan_id)
        assert [o.index for o in result.results] == [1]
        assert result.remaining == 1

    async def test_completed_plan_is_a_no_op(self, db, pipeline, generator, make_plan):
        plan_id = await make_plan(["John 1:1"])
        await pipeline.generate_batch(db, plan_id)
        again = await pipeline.generate_batch(db, plan_id)
        assert again.results == []
        assert again.all_complete
        assert len(generator.calls) == 1

    async def test_missing_plan(self, db, pipeline):
        with pytest.raises(PlanNotFound):
            await pipeline.generate_batch(db, 999)

    async def test_large_batch_is_not_cut_short(self, db, pipeline, make_plan):
        plan_id = await make_plan([f"Genesis {n}:1" for n in range(1, 61)])
        result = await pipeline.generate_batch(db, plan_id, 60)
        assert len(result.results) == 60
        assert result.all_complete

    async def test_default_batch_size(self, db, pipeline, make_plan):
        plan_id = await make_plan([f"Exodus {n}:1" for n in range(1, 8)])
        result = await pipeline.generate_batch(db, plan_id, None)
        assert len(result.results) == 5
        assert result.remaining == 2


class TestDrain:
    async def test_drain_until_complete(self, pipeline, make_plan, session_factory):
        plan_id = await make_plan([f"Acts {n}:1" for n in range(1, 6)])
        result = await pipeline.drain_plan(plan_id, batch_size=2, session_factory=session_factory)
        assert result.all_complete

    async def test_drain_stops_when_stalled(self, pipeline, passages, make_plan, session_factory):
        plan_id = await make_plan(["Broken 1:1"])
        passages.failing.add("Broken 1:1")
        result = await pipeline.drain_plan(plan_id, batch_size=2, session_factory=session_factory)
        assert result.remaining == 1
        assert passages.calls == ["Broken 1:1"]
