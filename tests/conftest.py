import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from messenger import database
from messenger.auth import create_access_token
from messenger.database import create_tables, get_db
from messenger.main import app
from messenger.models import Conversation, User

ALICE, BOB, CAROL = 1, 2, 3


def make_engine(path, **kwargs):
    return create_async_engine(f"sqlite+aiosqlite:///{path}", **kwargs)


async def load_conversation(session, conversation_id):
    result = await session.execute(
        select(Conversation)
        .where(Conversation.id == conversation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def seed_users(session_factory):
    async with session_factory() as session:
        session.add_all([
            User(id=ALICE, username="alice", email="alice@example.com", is_verified=True),
            User(id=BOB, username="bob", email="bob@example.com", avatar_url="https://cdn.example.com/bob.png"),
            User(id=CAROL, username="carol", email="carol@example.com"),
        ])
        await session.commit()


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File database so separate sessions hold separate connections and really contend
    engine = make_engine(tmp_path / "messenger.db")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def users(session_factory):
    await seed_users(session_factory)
    return {"alice": ALICE, "bob": BOB, "carol": CAROL}


@pytest_asyncio.fixture
async def db(session_factory, users):
    async with session_factory() as session:
        yield session


@pytest.fixture
def auth_headers():
    def _headers(user_id: int) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _headers


@pytest_asyncio.fixture
async def client(session_factory, users, monkeypatch):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(database, "AsyncSessionLocal", session_factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
