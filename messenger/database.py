from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
import redis.asyncio as redis

from messenger.config import settings

async_engine = create_async_engine(settings.DATABASE_URL, echo=settings.DEBUG, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


async def get_redis():
    return redis.from_url(settings.REDIS_URL, decode_responses=True)


async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_tables(engine=async_engine):
    from messenger.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
