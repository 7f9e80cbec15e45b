# lectio/services/scheduler.py
import logging
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from lectio.database import async_session_maker
from lectio.services import ownership
from lectio.services.pipeline import LessonPipeline, get_pipeline
from lectio.settings.config import settings

scheduler: Optional[AsyncIOScheduler] = None
logger = logging.getLogger(__name__)


def _pick_tz(name: Optional[str]):
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown APP_TZ %r; using UTC", name)
        return ZoneInfo("UTC")


def build_trigger(cron_expr: Optional[str], interval_minutes: int, tz=None):
    """Crontab when given (and valid), otherwise a fixed interval."""
    cron_expr = (cron_expr or "").strip()
    if cron_expr:
        try:
            return CronTrigger.from_crontab(cron_expr, timezone=tz)
        except ValueError:
            logger.warning("Invalid AUTO_GENERATE_CRON %r; falling back to every %d min", cron_expr, interval_minutes)
    return IntervalTrigger(minutes=max(1, interval_minutes), timezone=tz)


def start_scheduler() -> None:
    global scheduler
    if scheduler:
        return
    tz = _pick_tz(settings.APP_TZ)
    scheduler = AsyncIOScheduler(timezone=tz)
    trigger = build_trigger(settings.AUTO_GENERATE_CRON, settings.AUTO_GENERATE_INTERVAL_MINUTES, tz)
    # a slow run must not overlap with the next tick
    scheduler.add_job(job_drain_pending_plans, trigger, max_instances=1, coalesce=True)
    scheduler.start()
    logger.info("Lesson generation scheduler started (%s, tz=%s)", trigger, settings.APP_TZ)


def shutdown_scheduler() -> None:
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None


class PlanRotation:
    """Round-robin cursor over pending plans, so plans that keep failing
    cannot hold every slot of a run."""

    def __init__(self):
        self.last_plan_id: Optional[int] = None

    async def next_plans(self, db, limit: int) -> list[int]:
        plan_ids = await ownership.plans_with_pending(db, limit, after_plan_id=self.last_plan_id)
        if plan_ids:
            self.last_plan_id = plan_ids[-1]
        return plan_ids


_rotation = PlanRotation()


async def drain_pending_plans(pipeline: LessonPipeline, *, batch_size: Optional[int] = None,
                              plan_limit: int = 10, session_factory=async_session_maker,
                              rotation: Optional[PlanRotation] = None) -> dict[int, int]:
    """
    One batch for each plan that still has unmapped items, at most plan_limit
    plans per run. With a rotation, each run continues past the last plan the
    previous run touched. Returns {plan_id: remaining}. A failing plan is
    logged and skipped.
    """
    async with session_factory() as db:
        if rotation is None:
            plan_ids = await ownership.plans_with_pending(db, plan_limit)
        else:
            plan_ids = await rotation.next_plans(db, plan_limit)

    remaining: dict[int, int] = {}
    for plan_id in plan_ids:
        try:
            result = await pipeline.drain_plan(
                plan_id, batch_size=batch_size, session_factory=session_factory, max_rounds=1
            )
        except Exception:
            logger.exception("Scheduled generation failed for plan %s", plan_id)
            continue
        if result is not None:
            remaining[plan_id] = result.remaining
            logger.info("Scheduled generation for plan %s: %d remaining", plan_id, result.remaining)
    return remaining


async def job_drain_pending_plans():
    try:
        await drain_pending_plans(
            get_pipeline(),
            batch_size=settings.DEFAULT_BATCH_SIZE,
            plan_limit=settings.AUTO_GENERATE_PLAN_LIMIT,
            rotation=_rotation,
        )
    except Exception:
        logger.exception("Scheduled lesson generation run failed")
