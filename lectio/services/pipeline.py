# lectio/services/pipeline.py
"""
Lesson generation pipeline.

One plan item goes through: passage lookup -> cache check -> (on miss)
content generation -> story compile -> best-effort narration -> persist
-> ownership mapping. "What is left to do" is always re-derived from the
mapping table, so every entry point here can be called again after a
crash or timeout and simply picks up where the data says it stopped.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lectio.database import async_session_maker
from lectio.llm_client import GenerationError, LessonContentGenerator
from lectio.media_pipeline import LessonAudioStrategy, LocalAssetStore
from lectio.models import Lesson, Plan, PlanItem
from lectio.passages import PassageError, PassageProvider, build_passage_provider
from lectio.references import join_references, normalize_reference
from lectio.schemas import GenerationResult, ItemOutcome, PassagePayload
from lectio.services import lesson_cache, ownership
from lectio.services.narration import Synthesizer, narrate_best_effort
from lectio.settings.config import settings
from lectio.story_compiler import StoryValidationError, compile_story
from lectio.tts_client import ElevenLabsSynthesizer

logger = logging.getLogger(__name__)

# failures that leave the item pending and are worth retrying later
ITEM_ERRORS = (PassageError, GenerationError, StoryValidationError)


class PlanNotFound(LookupError):
    pass


class PlanItemNotFound(LookupError):
    pass


class LessonPipeline:
    def __init__(
        self,
        passages: PassageProvider,
        generator: LessonContentGenerator,
        synthesizer: Optional[Synthesizer] = None,
        store: Optional[LocalAssetStore] = None,
        *,
        strategy: Optional[LessonAudioStrategy] = None,
        quiz_url_template: Optional[str] = None,
        passage_chunk_chars: Optional[int] = None,
        body_split_chars: Optional[int] = None,
        discussion_split_count: Optional[int] = None,
    ):
        self.passages = passages
        self.generator = generator
        self.synthesizer = synthesizer
        self.store = store
        self.strategy = strategy or LessonAudioStrategy()
        self.quiz_url_template = quiz_url_template or settings.QUIZ_URL_TEMPLATE
        self.passage_chunk_chars = passage_chunk_chars or settings.PASSAGE_CHUNK_CHARS
        self.body_split_chars = body_split_chars or settings.BODY_SPLIT_CHARS
        self.discussion_split_count = discussion_split_count or settings.DISCUSSION_SPLIT_COUNT
        # one batch per plan at a time inside this process
        self._plan_locks: Dict[int, asyncio.Lock] = {}

    # ---------------------------
    # public entry points
    # ---------------------------
    async def generate_one(self, db: AsyncSession, plan_item_id: int) -> GenerationResult:
        item = await db.get(PlanItem, plan_item_id)
        if item is None:
            raise PlanItemNotFound(f"Plan item {plan_item_id} not found")
        plan = await db.get(Plan, item.plan_id)
        plan_id, title, theme = plan.id, plan.title, plan.theme

        outcome = await self._process_safely(db, plan_item_id, title, theme)
        return await self._result(db, plan_id, [outcome])

    async def generate_batch(self, db: AsyncSession, plan_id: int,
                             batch_size: Optional[int] = None) -> GenerationResult:
        """
        Process up to batch_size unmapped items of a plan, lowest sequence
        index first. One item failing never stops the rest of the batch.
        """
        plan = await db.get(Plan, plan_id)
        if plan is None:
            raise PlanNotFound(f"Plan {plan_id} not found")
        # plain values; ORM state is expired by any per-item rollback
        title, theme = plan.title, plan.theme
        size = batch_size or settings.DEFAULT_BATCH_SIZE

        async with self._lock_for(plan_id):
            item_ids = [i.id for i in await ownership.pending_items(db, plan_id, limit=size)]
            outcomes: List[ItemOutcome] = []
            for item_id in item_ids:
                outcomes.append(await self._process_safely(db, item_id, title, theme))

        result = await self._result(db, plan_id, outcomes)
        logger.info(
            "Plan %s batch of %d done: %d/%d complete, %d remaining",
            plan_id, len(item_ids), result.completed, result.total, result.remaining,
        )
        return result

    async def generate_next_pending(self, db: AsyncSession, plan_id: int) -> GenerationResult:
        return await self.generate_batch(db, plan_id, 1)

    async def drain_plan(self, plan_id: int, *, batch_size: Optional[int] = None,
                         session_factory=async_session_maker,
                         max_rounds: Optional[int] = None) -> Optional[GenerationResult]:
        """
        Call generate_batch until the plan is complete or a round makes no
        progress (every remaining item erroring). Each round gets a fresh
        session. Returns None when another drain of this plan is running.
        """
        if self._lock_for(plan_id).locked():
            logger.info("Plan %s is already being generated; skipping drain", plan_id)
            return None

        result: Optional[GenerationResult] = None
        rounds = 0
        while max_rounds is None or rounds < max_rounds:
            rounds += 1
            async with session_factory() as db:
                result = await self.generate_batch(db, plan_id, batch_size)
            if result.all_complete:
                break
            if not any(o.status != "error" for o in result.results):
                logger.warning("Plan %s drain stalled with %d items remaining", plan_id, result.remaining)
                break
        return result

    # ---------------------------
    # per-item state machine
    # ---------------------------
    async def _process_safely(self, db: AsyncSession, item_id: int,
                              plan_title: str, theme: Optional[str]) -> ItemOutcome:
        item = await db.get(PlanItem, item_id)
        index = item.sequence_index if item else None
        try:
            return await self._process_item(db, item_id, plan_title, theme)
        except ITEM_ERRORS as e:
            await db.rollback()
            logger.warning("Plan item %s failed: %s", item_id, e, exc_info=True)
            return ItemOutcome(item_id=item_id, index=index, status="error", error=str(e))
        except Exception as e:
            await db.rollback()
            logger.exception("Unexpected error generating plan item %s", item_id)
            return ItemOutcome(item_id=item_id, index=index, status="error", error=f"{type(e).__name__}: {e}")

    async def _process_item(self, db: AsyncSession, item_id: int,
                            plan_title: str, theme: Optional[str]) -> ItemOutcome:
        item = await db.get(PlanItem, item_id)
        if item is None:
            raise PlanItemNotFound(f"Plan item {item_id} not found")
        index = item.sequence_index
        references = list(item.references_text or [])
        translation = item.translation

        existing = await ownership.get_mapping(db, item_id)
        if existing is not None:
            lesson = await db.get(Lesson, existing.lesson_id)
            return self._outcome(item_id, index, "reused", lesson)

        passage = await self.passages.get_passage_text(join_references(references), translation)
        canonical = normalize_reference(passage.canonical)

        status = "reused"
        lesson = await lesson_cache.resolve(db, canonical, passage.translation)
        if lesson is None:
            lesson, created = await self._build_lesson(db, passage, canonical, references, plan_title, theme)
            if created:
                status = "created"

        mapping, mapped = await ownership.map_item(db, item_id, lesson.id)
        if not mapped:
            # mapped by someone else meanwhile; theirs stands
            lesson = await db.get(Lesson, mapping.lesson_id)
            status = "reused"

        logger.info("Plan item %s %s lesson %s for %s (%s)",
                    item_id, status, lesson.id, canonical, passage.translation)
        return self._outcome(item_id, index, status, lesson)

    async def _build_lesson(self, db: AsyncSession, passage: PassagePayload, canonical: str,
                            references: List[str], plan_title: str,
                            theme: Optional[str]) -> tuple[Lesson, bool]:
        content = await self.generator.generate(passage.translation, references, passage.text, theme=theme)

        # picked up front so narration assets are keyed by the lesson they belong to
        share_slug = secrets.token_hex(16)
        manifest = compile_story(
            content,
            title=plan_title,
            reference=canonical,
            translation=passage.translation,
            quiz_url=self.quiz_url_template.format(share_slug=share_slug),
            passage_text=passage.text,
            passage_chunk_chars=self.passage_chunk_chars,
            body_split_chars=self.body_split_chars,
            discussion_split_count=self.discussion_split_count,
        )
        audio = await narrate_best_effort(
            manifest,
            lesson_key=share_slug,
            synthesizer=self.synthesizer,
            store=self.store,
            strategy=self.strategy,
        )
        return await lesson_cache.create_or_get(
            db,
            canonical_reference=canonical,
            translation=passage.translation,
            passage_text=passage.text,
            content=content,
            manifest=manifest,
            audio=audio,
            share_slug=share_slug,
        )

    # ---------------------------
    # helpers
    # ---------------------------
    def _lock_for(self, plan_id: int) -> asyncio.Lock:
        lock = self._plan_locks.get(plan_id)
        if lock is None:
            lock = self._plan_locks[plan_id] = asyncio.Lock()
        return lock

    @staticmethod
    def _outcome(item_id: int, index: Optional[int], status: str, lesson: Optional[Lesson]) -> ItemOutcome:
        return ItemOutcome(
            item_id=item_id,
            index=index,
            status=status,
            lesson_id=lesson.id if lesson else None,
            share_slug=lesson.share_slug if lesson else None,
            reference=lesson.passage_canonical if lesson else None,
        )

    @staticmethod
    async def _result(db: AsyncSession, plan_id: int, outcomes: List[ItemOutcome]) -> GenerationResult:
        prog = await ownership.progress(db, plan_id)
        return GenerationResult(
            completed=prog.completed,
            total=prog.total,
            remaining=prog.remaining,
            all_complete=prog.remaining == 0,
            results=outcomes,
        )


_pipeline: Optional[LessonPipeline] = None


def build_pipeline() -> LessonPipeline:
    synthesizer = ElevenLabsSynthesizer() if settings.narration_configured else None
    if synthesizer is None:
        logger.info("Narration disabled; lessons will be stored without audio")
    return LessonPipeline(
        passages=build_passage_provider(),
        generator=LessonContentGenerator(),
        synthesizer=synthesizer,
        store=LocalAssetStore(),
    )


def get_pipeline() -> LessonPipeline:
    """FastAPI dependency; the pipeline is built once per process."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


__all__ = [
    "PlanNotFound",
    "PlanItemNotFound",
    "LessonPipeline",
    "build_pipeline",
    "get_pipeline",
]
