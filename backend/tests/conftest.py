import asyncio
import os
from collections.abc import Generator
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext import asyncio as sa_asyncio

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""
os.environ.setdefault("SHOPIFY_API_KEY", "test-api-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-shopify-api-secret")

from app.api.v1 import analytics as analytics_api  # noqa: E402
from app.core import metrics  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import get_session  # noqa: E402
from app.main import app  # noqa: E402


_TRACKED_ENGINES: list[sa_asyncio.AsyncEngine] = []
_ORIGINAL_CREATE_ASYNC_ENGINE = sa_asyncio.create_async_engine


def _tracked_create_async_engine(*args, **kwargs):  # type: ignore[no-untyped-def]
    engine = _ORIGINAL_CREATE_ASYNC_ENGINE(*args, **kwargs)
    _TRACKED_ENGINES.append(engine)
    return engine


sa_asyncio.create_async_engine = _tracked_create_async_engine  # type: ignore[assignment]


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _dispose_tracked_async_engines() -> Generator[None, None, None]:
    start_index = len(_TRACKED_ENGINES)
    yield
    pending = _TRACKED_ENGINES[start_index:]
    if not pending:
        return

    async def _dispose_all() -> None:
        for engine in pending:
            await engine.dispose()

    asyncio.run(_dispose_all())
    del _TRACKED_ENGINES[start_index:]


@pytest.fixture(autouse=True)
def _reset_process_state() -> Generator[None, None, None]:
    # Rate-limit buckets and counters are process-global and can leak across tests.
    analytics_api.analytics_rate_limit.buckets.clear()
    metrics.reset()
    yield
    analytics_api.analytics_rate_limit.buckets.clear()
    metrics.reset()


@pytest.fixture
def test_app() -> Generator[Dict[str, object], None, None]:
    engine = sa_asyncio.create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = sa_asyncio.async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())

    async def override_get_session():
        async with SessionLocal() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    client = TestClient(app)
    yield {"client": client, "session_factory": SessionLocal}
    client.close()
    app.dependency_overrides.clear()
