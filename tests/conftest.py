import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from lectio import models  # noqa: F401  registers tables on Base
from lectio.database import Base
from lectio.media_pipeline import LessonAudioStrategy, LocalAssetStore
from lectio.models import Plan, PlanItem
from lectio.services.pipeline import LessonPipeline

from tests.fakes import FakeGenerator, FakePassages, FakeSynthesizer


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lectio.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def passages():
    return FakePassages()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def store(tmp_path):
    return LocalAssetStore(root=tmp_path / "assets", base_url="/static/assets")


@pytest.fixture
def pipeline(passages, generator, synthesizer, store):
    return LessonPipeline(
        passages,
        generator,
        synthesizer,
        store,
        strategy=LessonAudioStrategy("lesson-audio"),
        quiz_url_template="/quiz/{share_slug}",
    )


@pytest.fixture
def make_plan(db):
    async def _make(references, *, title="Gospel of John", translation="ESV"):
        plan = Plan(title=title)
        db.add(plan)
        await db.flush()
        for i, ref in enumerate(references, start=1):
            refs = ref if isinstance(ref, list) else [ref]
            db.add(PlanItem(plan_id=plan.id, sequence_index=i, references_text=refs, translation=translation))
        await db.commit()
        return plan.id
    return _make
