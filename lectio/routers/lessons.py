from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..background import spawn
from ..database import get_db, get_session_factory
from ..models import Plan
from ..schemas import (
    GenerateBatchRequest,
    GenerateNextRequest,
    GenerateOneRequest,
    GenerationResult,
    LessonRead,
)
from ..services import lesson_cache, ownership
from ..services.pipeline import LessonPipeline, PlanItemNotFound, PlanNotFound, get_pipeline

router = APIRouter(prefix="/api/lessons", tags=["lessons"])


@router.post("/generate-one", response_model=GenerationResult)
async def generate_one(
    payload: GenerateOneRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: LessonPipeline = Depends(get_pipeline),
):
    try:
        return await pipeline.generate_one(db, payload.plan_item_id)
    except PlanItemNotFound:
        raise HTTPException(status_code=404, detail="Plan item not found")


@router.post("/generate-batch", response_model=GenerationResult)
async def generate_batch(
    payload: GenerateBatchRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: LessonPipeline = Depends(get_pipeline),
    session_factory=Depends(get_session_factory),
):
    """
    Run one batch and return its outcomes. With background=true, the whole
    plan is drained in a supervised task and the current progress comes
    back immediately with 202; poll /api/plans/{id}/progress.
    """
    if not payload.background:
        try:
            return await pipeline.generate_batch(db, payload.plan_id, payload.batch_size)
        except PlanNotFound:
            raise HTTPException(status_code=404, detail="Plan not found")

    if await db.get(Plan, payload.plan_id) is None:
        raise HTTPException(status_code=404, detail="Plan not found")
    prog = await ownership.progress(db, payload.plan_id)
    if prog.remaining:
        spawn(
            pipeline.drain_plan(payload.plan_id, batch_size=payload.batch_size, session_factory=session_factory),
            key=f"plan-drain:{payload.plan_id}",
        )
    body = GenerationResult(**prog.model_dump(), all_complete=prog.remaining == 0, results=[])
    return JSONResponse(status_code=202, content=body.model_dump(mode="json"))


@router.post("/generate-next", response_model=GenerationResult)
async def generate_next(
    payload: GenerateNextRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: LessonPipeline = Depends(get_pipeline),
):
    try:
        return await pipeline.generate_next_pending(db, payload.plan_id)
    except PlanNotFound:
        raise HTTPException(status_code=404, detail="Plan not found")


@router.get("/{share_slug}", response_model=LessonRead)
async def get_lesson(share_slug: str, db: AsyncSession = Depends(get_db)):
    lesson = await lesson_cache.get_by_share_slug(db, share_slug)
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return lesson
