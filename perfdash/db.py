from __future__ import annotations
from typing import Optional
from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from perfdash.config import AppConfig


def make_engine(config: AppConfig) -> Optional[AsyncEngine]:
    """Engine for the remote store, or None when no database is configured."""
    if not config.db_url:
        return None
    return create_async_engine(config.db_url, echo=False, future=True)


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    # production databases are provisioned by migration SQL; this is for sqlite/dev setups
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

