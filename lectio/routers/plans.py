from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database import get_db
from ..models import Plan, PlanItem, PlanItemStatus
from ..schemas import PlanCreate, PlanRead, Progress
from ..services import ownership

router = APIRouter(prefix="/api/plans", tags=["plans"])


async def _load_plan(db: AsyncSession, plan_id: int) -> Plan:
    plan = (
        await db.execute(select(Plan).options(selectinload(Plan.items)).where(Plan.id == plan_id))
    ).scalars().first()
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return plan


@router.post("", response_model=PlanRead, status_code=201)
async def create_plan(payload: PlanCreate, db: AsyncSession = Depends(get_db)):
    """Import a plan; items are indexed 1..N in the order given, all pending."""
    plan = Plan(title=payload.title.strip(), theme=(payload.theme or "").strip() or None)
    db.add(plan)
    await db.flush()
    for i, it in enumerate(payload.items, start=1):
        refs = [r.strip() for r in it.references if r and r.strip()]
        if not refs:
            await db.rollback()
            raise HTTPException(status_code=422, detail=f"Item {i} has no references")
        db.add(PlanItem(
            plan_id=plan.id,
            sequence_index=i,
            references_text=refs,
            translation=(it.translation or "ESV").strip().upper(),
            status=PlanItemStatus.pending,
        ))
    await db.commit()
    return await _load_plan(db, plan.id)


@router.get("/{plan_id}", response_model=PlanRead)
async def get_plan(plan_id: int, db: AsyncSession = Depends(get_db)):
    return await _load_plan(db, plan_id)


@router.get("/{plan_id}/progress", response_model=Progress)
async def plan_progress(plan_id: int, db: AsyncSession = Depends(get_db)):
    if await db.get(Plan, plan_id) is None:
        raise HTTPException(status_code=404, detail="Plan not found")
    return await ownership.progress(db, plan_id)
