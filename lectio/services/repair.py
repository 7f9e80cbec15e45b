# lectio/services/repair.py
"""
Maintenance passes over existing data. Neither one calls the content
generator: map_cached_items only links items to lessons that already
exist, and backfill_audio only fills in missing narration.
"""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from lectio.models import Plan
from lectio.references import join_references, normalize_reference
from lectio.schemas import BackfillAudioResult, MapCachedResult, StoryManifest
from lectio.services import lesson_cache, ownership
from lectio.services.narration import narrate_best_effort
from lectio.services.pipeline import LessonPipeline, PlanNotFound

logger = logging.getLogger(__name__)


async def map_cached_items(db: AsyncSession, plan_id: int) -> MapCachedResult:
    """Map every pending item whose normalized reference is already cached."""
    if await db.get(Plan, plan_id) is None:
        raise PlanNotFound(f"Plan {plan_id} not found")

    before = await ownership.progress(db, plan_id)
    pending = [
        (i.id, list(i.references_text or []), i.translation)
        for i in await ownership.pending_items(db, plan_id)
    ]

    mapped = not_found = 0
    for item_id, references, translation in pending:
        try:
            canonical = normalize_reference(join_references(references))
        except ValueError:
            not_found += 1
            continue
        lesson = await lesson_cache.resolve(db, canonical, translation)
        if lesson is None:
            not_found += 1
            continue
        _, created = await ownership.map_item(db, item_id, lesson.id)
        if created:
            mapped += 1

    logger.info("Plan %s: mapped %d cached items, %d not in cache", plan_id, mapped, not_found)
    return MapCachedResult(mapped=mapped, already_mapped=before.completed, not_found=not_found)


async def backfill_audio(db: AsyncSession, pipeline: LessonPipeline, limit: int = 10) -> BackfillAudioResult:
    if pipeline.synthesizer is None or pipeline.store is None:
        logger.warning("Audio backfill requested but narration is not configured")
        return BackfillAudioResult(attempted=0, attached=0)

    lessons = [
        (l.id, l.share_slug, l.story_manifest_json)
        for l in await lesson_cache.lessons_missing_audio(db, limit)
    ]
    attached = 0
    for lesson_id, share_slug, manifest_json in lessons:
        manifest = StoryManifest.model_validate(manifest_json)
        audio = await narrate_best_effort(
            manifest,
            lesson_key=share_slug,
            synthesizer=pipeline.synthesizer,
            store=pipeline.store,
            strategy=pipeline.strategy,
        )
        if audio is not None and await lesson_cache.attach_audio(db, lesson_id, audio):
            attached += 1
            logger.info("Attached narration to lesson %s", lesson_id)

    return BackfillAudioResult(attempted=len(lessons), attached=attached)


__all__ = ["map_cached_items", "backfill_audio"]
