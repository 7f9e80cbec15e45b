import logging
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from .background import cancel_all
from .database import init_db
from .routers.admin_lessons import router as admin_lessons_router
from .routers.lessons import router as lessons_router
from .routers.plans import router as plans_router
from .services.scheduler import shutdown_scheduler, start_scheduler
from .settings.config import settings

logging.basicConfig(
    level=getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Lectio Lessons")

# Local asset store (narration audio)
app.mount(
    "/" + settings.ASSET_BASE_URL.strip("/"),
    StaticFiles(directory=settings.ASSET_ROOT, check_dir=False),
    name="assets",
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(plans_router)
app.include_router(lessons_router)
app.include_router(admin_lessons_router)


@app.on_event("startup")
async def on_startup():
    from . import models  # noqa: F401  registers tables on Base
    await init_db()
    if settings.AUTO_GENERATE_ENABLED:
        start_scheduler()
    else:
        logger.info("AUTO_GENERATE_ENABLED is off; plans generate only on request")


@app.on_event("shutdown")
async def on_shutdown():
    shutdown_scheduler()
    await cancel_all()
