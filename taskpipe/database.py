from __future__ import annotations

from collections.abc import AsyncGenerator
import os
import sys

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from taskpipe.config import settings


_engine_kwargs: dict = {"pool_pre_ping": True}

# NOTE: FastAPI's sync TestClient can run requests on different event loops,
# and pooled async connections must not be reused across loops. Disable
# pooling under pytest (PYTEST_CURRENT_TEST is unset during collection, so
# check sys.modules as well).
if os.getenv("PYTEST_CURRENT_TEST") or ("pytest" in sys.modules):
    _engine_kwargs["poolclass"] = NullPool

engine = create_async_engine(settings.database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

# The consumer process persists through a blocking session; it owns one
# connection per message and never shares it with the API's event loop.
sync_engine = create_engine(settings.sync_database_url, pool_pre_ping=True)
SyncSessionLocal = sessionmaker(sync_engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session
