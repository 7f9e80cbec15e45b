# lectio/services/lesson_cache.py
"""
Canonical Lesson Cache.

Keyed by (normalized canonical reference, translation). The key is only
known after the passage provider has answered, so lookups always follow
canonicalization. Uniqueness is enforced by the database
(uq_lesson_canonical_translation); losing an insert race means someone
else already built the lesson, and we hand back theirs.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lectio.models import Lesson
from lectio.references import normalize_reference
from lectio.schemas import AudioManifest, LessonContent, StoryManifest

logger = logging.getLogger(__name__)


def cache_key(canonical_reference: str, translation: str) -> tuple[str, str]:
    return normalize_reference(canonical_reference), (translation or "").strip().upper()


async def resolve(db: AsyncSession, canonical_reference: str, translation: str) -> Optional[Lesson]:
    """The cached lesson for this passage, or None on a miss."""
    reference, code = cache_key(canonical_reference, translation)
    return (
        await db.execute(
            select(Lesson).where(Lesson.passage_canonical == reference, Lesson.translation == code)
        )
    ).scalars().first()


async def get_by_share_slug(db: AsyncSession, share_slug: str) -> Optional[Lesson]:
    return (await db.execute(select(Lesson).where(Lesson.share_slug == share_slug))).scalars().first()


async def create_or_get(
    db: AsyncSession,
    *,
    canonical_reference: str,
    translation: str,
    passage_text: str,
    content: LessonContent,
    manifest: StoryManifest,
    audio: Optional[AudioManifest],
    share_slug: str,
) -> tuple[Lesson, bool]:
    """
    Persist a freshly built lesson. Returns (lesson, created).
    created is False when a concurrent writer got there first.
    """
    reference, code = cache_key(canonical_reference, translation)
    lesson = Lesson(
        passage_canonical=reference,
        translation=code,
        passage_text=passage_text,
        content_json=content.model_dump(mode="json"),
        story_manifest_json=manifest.model_dump(mode="json"),
        quiz_json=[q.model_dump(mode="json") for q in content.quiz],
        audio_manifest_json=audio.model_dump(mode="json") if audio else None,
        share_slug=share_slug,
        published_at=datetime.now(timezone.utc),
    )
    db.add(lesson)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await resolve(db, reference, code)
        if existing is None:
            # not the canonical-key constraint (e.g. share slug collision)
            raise
        logger.info("Lesson for %s (%s) was created concurrently; reusing id=%s", reference, code, existing.id)
        return existing, False
    return lesson, True


async def attach_audio(db: AsyncSession, lesson_id: int, audio: AudioManifest) -> bool:
    """
    Attach narration to a lesson that has none. The only mutation a
    canonical lesson ever sees; never overwrites existing audio.
    """
    res = await db.execute(
        update(Lesson)
        .where(Lesson.id == lesson_id, Lesson.audio_manifest_json.is_(None))
        .values(audio_manifest_json=audio.model_dump(mode="json"))
    )
    await db.commit()
    return (res.rowcount or 0) == 1


async def lessons_missing_audio(db: AsyncSession, limit: int = 10) -> list[Lesson]:
    return list(
        (
            await db.execute(
                select(Lesson)
                .where(Lesson.audio_manifest_json.is_(None))
                .order_by(Lesson.id.asc())
                .limit(limit)
            )
        ).scalars().all()
    )


__all__ = [
    "cache_key",
    "resolve",
    "get_by_share_slug",
    "create_or_get",
    "attach_audio",
    "lessons_missing_audio",
]
