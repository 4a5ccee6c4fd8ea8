from collections.abc import AsyncIterator
import os
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import get_settings
from .models import Base

_settings = get_settings()

# Prefer an isolated SQLite DB when running under pytest so a Postgres instance
# provided via container environment never sees test balances.
_database_url = _settings.database_url
is_pytest = "pytest" in sys.modules or bool(os.environ.get("PYTEST_CURRENT_TEST"))
if is_pytest:
    if not _database_url.startswith("sqlite"):
        _database_url = "sqlite+aiosqlite:////tmp/meraki_test.db"
    elif ":///" in _database_url and not _database_url.startswith("sqlite+aiosqlite:////"):
        _database_url = "sqlite+aiosqlite:////tmp/meraki_test.db"

_connect_args = {"timeout": 30} if _database_url.startswith("sqlite") else {}
_engine = create_async_engine(_database_url, echo=_settings.api_debug, future=True, connect_args=_connect_args)
_SessionFactory = async_sessionmaker(_engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with _SessionFactory() as session:
        yield session


def session_factory() -> async_sessionmaker[AsyncSession]:
    return _SessionFactory


async def init_database() -> None:
    async with _engine.begin() as conn:
        # Ensure a clean schema when running tests in a shared process
        if is_pytest:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def close_database() -> None:
    await _engine.dispose()
