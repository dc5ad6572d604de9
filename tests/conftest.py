"""Pytest configuration: a fresh file-backed SQLite database per test."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from alilm.database import init_db


def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'alilm.db'}"


def make_engine(tmp_path):
    # one connection per session so concurrent sessions really contend on the file
    return create_async_engine(sqlite_url(tmp_path), poolclass=NullPool, connect_args={"timeout": 30})


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(tmp_path)
    await init_db(bind=eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def span(text, kind="text", **data):
    out = {"text": text, "type": kind}
    if data:
        out["data"] = data
    return out


def unit(unit_id, *spans):
    spans = [s if isinstance(s, dict) else span(s) for s in spans]
    return {"id": unit_id, "content": "".join(s["text"] for s in spans), "spans": spans}


def block(block_id, *units, type="paragraph"):
    return {"id": block_id, "type": type, "units": list(units)}
