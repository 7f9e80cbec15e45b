# lectio/services/ownership.py
"""
Ownership Mapper: plan item -> canonical lesson.

A mapping row is the only record of "this item is done". There is no job
table; what remains to generate is whatever has no mapping.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lectio.models import PlanItem, PlanItemLesson, PlanItemStatus
from lectio.schemas import Progress

logger = logging.getLogger(__name__)


async def get_mapping(db: AsyncSession, plan_item_id: int) -> Optional[PlanItemLesson]:
    return (
        await db.execute(select(PlanItemLesson).where(PlanItemLesson.plan_item_id == plan_item_id))
    ).scalars().first()


async def map_item(db: AsyncSession, plan_item_id: int, lesson_id: int) -> tuple[PlanItemLesson, bool]:
    """
    Record the mapping and publish the item in one transaction.
    Returns (mapping, created); an existing mapping always wins.
    """
    mapping = PlanItemLesson(plan_item_id=plan_item_id, lesson_id=lesson_id)
    db.add(mapping)
    await db.execute(
        update(PlanItem)
        .where(PlanItem.id == plan_item_id)
        .values(status=PlanItemStatus.published)
        .execution_options(synchronize_session=False)
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_mapping(db, plan_item_id)
        if existing is None:
            raise
        logger.info("Plan item %s was mapped concurrently to lesson %s", plan_item_id, existing.lesson_id)
        return existing, False
    return mapping, True


def _pending_query(plan_id: int):
    return (
        select(PlanItem)
        .outerjoin(PlanItemLesson, PlanItemLesson.plan_item_id == PlanItem.id)
        .where(PlanItem.plan_id == plan_id, PlanItemLesson.id.is_(None))
        .order_by(PlanItem.sequence_index.asc())
    )


async def pending_items(db: AsyncSession, plan_id: int, limit: Optional[int] = None) -> list[PlanItem]:
    """Unmapped items in ascending sequence order, so published items form a prefix."""
    q = _pending_query(plan_id)
    if limit is not None:
        q = q.limit(limit)
    return list((await db.execute(q)).scalars().all())


async def progress(db: AsyncSession, plan_id: int) -> Progress:
    total = (
        await db.execute(select(func.count(PlanItem.id)).where(PlanItem.plan_id == plan_id))
    ).scalar() or 0
    completed = (
        await db.execute(
            select(func.count(PlanItemLesson.id))
            .join(PlanItem, PlanItem.id == PlanItemLesson.plan_item_id)
            .where(PlanItem.plan_id == plan_id)
        )
    ).scalar() or 0
    return Progress(completed=completed, total=total, remaining=total - completed)


async def plans_with_pending(db: AsyncSession, limit: int = 10,
                             after_plan_id: Optional[int] = None) -> list[int]:
    """
    Plan ids with unmapped items, ascending. With after_plan_id the list
    starts past that id and wraps around to the lowest ids.
    """
    def query(*conds):
        return (
            select(PlanItem.plan_id)
            .outerjoin(PlanItemLesson, PlanItemLesson.plan_item_id == PlanItem.id)
            .where(PlanItemLesson.id.is_(None), *conds)
            .group_by(PlanItem.plan_id)
            .order_by(PlanItem.plan_id.asc())
        )

    if after_plan_id is None:
        return list((await db.execute(query().limit(limit))).scalars().all())

    ids = list((await db.execute(query(PlanItem.plan_id > after_plan_id).limit(limit))).scalars().all())
    if len(ids) < limit:
        wrapped = await db.execute(query(PlanItem.plan_id <= after_plan_id).limit(limit - len(ids)))
        ids.extend(wrapped.scalars().all())
    return ids


__all__ = ["get_mapping", "map_item", "pending_items", "progress", "plans_with_pending"]
