from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from lectio.settings.config import settings

raw_url = settings.DATABASE_URL
if raw_url.startswith("postgresql+psycopg"):
    # if someone provided a sync URL by mistake, upgrade it to async
    DATABASE_URL = raw_url.replace("postgresql+psycopg2", "postgresql+asyncpg").replace(
        "postgresql+psycopg", "postgresql+asyncpg"
    )
else:
    DATABASE_URL = raw_url


def sync_database_url(url: str) -> str:
    """Alembic migrates over psycopg2; the app itself talks asyncpg."""
    for driver in ("postgresql+asyncpg", "postgresql+psycopg", "postgresql"):
        if url.startswith(driver + "://"):
            return "postgresql+psycopg2://" + url[len(driver) + 3:]
    return url


engine = create_async_engine(DATABASE_URL, echo=False, future=True)
async_session_maker = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
Base = declarative_base()

async def get_db():
    async with async_session_maker() as session:
        yield session

async def init_db():
    # Only run create_all in dev, never in prod with Alembic
    if settings.RUN_DB_CREATE_ALL:
        from lectio import models  # noqa: F401  registers tables on Base
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


def get_session_factory():
    """For work that outlives the request (background drains)."""
    return async_session_maker
