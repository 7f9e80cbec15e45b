from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas import BackfillAudioRequest, BackfillAudioResult, MapCachedResult
from ..services import repair
from ..services.pipeline import LessonPipeline, PlanNotFound, get_pipeline

router = APIRouter(prefix="/api/admin", tags=["admin", "lessons"])


@router.post("/plans/{plan_id}/map-cached", response_model=MapCachedResult)
async def admin_map_cached(plan_id: int, db: AsyncSession = Depends(get_db)):
    try:
        return await repair.map_cached_items(db, plan_id)
    except PlanNotFound:
        raise HTTPException(status_code=404, detail="Plan not found")


@router.post("/lessons/backfill-audio", response_model=BackfillAudioResult)
async def admin_backfill_audio(
    payload: Optional[BackfillAudioRequest] = None,
    db: AsyncSession = Depends(get_db),
    pipeline: LessonPipeline = Depends(get_pipeline),
):
    limit = payload.limit if payload else BackfillAudioRequest().limit
    return await repair.backfill_audio(db, pipeline, limit)
