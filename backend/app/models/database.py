"""Database configuration and session management."""

import os

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./marketdata.db")

engine = create_async_engine(DATABASE_URL, echo=False)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


def configure_database(url: str) -> async_sessionmaker:
    """Point the module engine and session factory at `url`."""
    global engine, async_session_maker, DATABASE_URL
    if url == DATABASE_URL:
        return async_session_maker
    DATABASE_URL = url
    engine = create_async_engine(url, echo=False)
    async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return async_session_maker


async def init_db():
    """Initialize the database, creating all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
