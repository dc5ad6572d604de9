from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import os

from .settings.config import settings

raw_url = os.getenv("DATABASE_URL", "") or settings.DATABASE_URL
if raw_url.startswith("postgresql+psycopg"):
    # if someone provided a sync URL by mistake, upgrade it to async
    DATABASE_URL = raw_url.replace("postgresql+psycopg2", "postgresql+asyncpg").replace(
        "postgresql+psycopg", "postgresql+asyncpg"
    )
else:
    DATABASE_URL = raw_url


engine = create_async_engine(DATABASE_URL, echo=False, future=True)
async_session_maker = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
Base = declarative_base()

async def get_db():
    async with async_session_maker() as session:
        yield session

async def init_db(bind=None):
    # Only run create_all in dev/tests, never in prod with Alembic
    if bind is not None or os.getenv("RUN_DB_CREATE_ALL") == "1":
        from . import models  # noqa: F401  registers tables on Base.metadata
        async with (bind or engine).begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
