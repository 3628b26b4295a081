from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from core.environment import get_database_url, get_sql_echo


DATABASE_URL = get_database_url()

engine = create_async_engine(
    DATABASE_URL,
    echo=get_sql_echo(),
    future=True,
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)
Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def init_models():
    # Alembic would own this in a real deployment
    import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory handed to services that own their transactions."""
    return AsyncSessionLocal
