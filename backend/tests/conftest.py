from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from pathlib import Path
import sys
from typing import Any, TypeVar

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


# Ensure `import friendfinder.*` works when pytest chooses an import mode that
# doesn't automatically add the project root to sys.path.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

_T = TypeVar("_T")

Sessionmaker = async_sessionmaker[AsyncSession]


async def _create_schema(db_url: str) -> None:
    # Import models so Base.metadata is fully populated.
    import friendfinder.models  # noqa: F401
    from friendfinder.db.base import Base

    engine = create_async_engine(db_url)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    # Isolated sqlite DB per test.
    url = f"sqlite+aiosqlite:///{(tmp_path / 'test.db').as_posix()}"
    asyncio.run(_create_schema(url))
    return url


@pytest.fixture()
def run_db(db_url: str) -> Callable[[Callable[[Sessionmaker], Awaitable[_T]]], _T]:
    """Run `scenario(sessionmaker)` on a fresh event loop against the test DB."""

    def _run(scenario: Callable[[Sessionmaker], Awaitable[_T]]) -> _T:
        async def _main() -> _T:
            engine = create_async_engine(db_url)
            sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
            try:
                return await scenario(sessionmaker)
            finally:
                await engine.dispose()

        return asyncio.run(_main())

    return _run


@pytest.fixture()
def app_env(
    db_url: str, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("FRIENDFINDER_DB_URL", db_url)

    # Deterministic JWT key config for tests.
    monkeypatch.setenv("FRIENDFINDER_JWT_SIGNING_KEYS_JSON", '{"test-kid":"test-secret"}')
    monkeypatch.setenv("FRIENDFINDER_JWT_KID_CURRENT", "test-kid")

    monkeypatch.setenv("FRIENDFINDER_MEDIA_DIR", str(tmp_path / "media"))
    monkeypatch.setenv("FRIENDFINDER_MAX_PICTURE_BYTES", "1024")
    monkeypatch.setenv("FRIENDFINDER_CELERY_EAGER", "true")

    # Clear settings cache and reset DB engine/sessionmaker.
    from friendfinder.core.settings import get_settings

    get_settings.cache_clear()

    from friendfinder.db import session as db_session

    db_session._engine = None  # noqa: SLF001
    db_session._sessionmaker = None  # noqa: SLF001


@pytest.fixture()
def make_client(app_env: None) -> Iterator[Callable[..., TestClient]]:
    """Build a TestClient for create_app(**kwargs); all of them share one DB."""

    from friendfinder.main import create_app

    clients: list[TestClient] = []

    def _make(**kwargs: Any) -> TestClient:
        c = TestClient(create_app(**kwargs))
        # Entering the client keeps one event loop for every request and socket.
        c.__enter__()
        clients.append(c)
        return c

    yield _make

    for c in clients:
        c.__exit__(None, None, None)


@pytest.fixture()
def client(make_client: Callable[..., TestClient]) -> TestClient:
    return make_client()
