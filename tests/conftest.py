import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backoffice_api.app import create_app
from backoffice_api.db.base import Base
from backoffice_api.db.session import enable_sqlite_savepoints, get_session
from backoffice_api.observability.loyalty import get_loyalty_store
from backoffice_api.observability.scheduler import get_scheduler_store
import backoffice_api.models  # noqa: F401


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))
    tests_path = Path(__file__).resolve().parent
    if str(tests_path) not in sys.path:
        sys.path.insert(0, str(tests_path))


_configure_path()


@pytest.fixture(autouse=True)
def reset_observability_stores():
    get_loyalty_store().reset()
    get_scheduler_store().reset()
    yield
    get_loyalty_store().reset()
    get_scheduler_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
