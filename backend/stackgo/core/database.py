"""
Database connection and session management.
"""
from typing import Any, AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

from stackgo.core.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Pool and driver options for the configured backend."""
    options: Dict[str, Any] = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if database_url.startswith("postgresql"):
        options.update(
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,  # Wait max 30s for connection from pool
            pool_recycle=1800,  # Recycle connections after 30 minutes
            connect_args={
                "command_timeout": 60,
                "server_settings": {
                    "statement_timeout": "60000",  # 60 seconds in milliseconds
                },
            },
        )
    return options


engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    metadata = MetaData(schema=settings.DB_SCHEMA)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an async database session, committing on success.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
