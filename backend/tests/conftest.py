# tests/conftest.py

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from listkeeper.config import Settings, get_settings
from listkeeper.db.session import build_engine, build_session_factory, init_db
from listkeeper.models.todo_list import ListAccess, TodoList
from listkeeper.models.user import User
from listkeeper.services.access_control import ensure_personal_list
from listkeeper.services.user_service import hash_password

MakeUser = Callable[..., Awaitable[User]]
MakeList = Callable[..., Awaitable[TodoList]]


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch: pytest.MonkeyPatch):
    """
    Keep bcrypt cheap and make every test start from default flags.

    Settings are cached process-wide, so the cache is cleared around each
    test; tests that flip a flag set the env var and clear it again.
    """
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.delenv("FEATURE_LIST_ORDERING", raising=False)
    monkeypatch.delenv("FEATURE_LIST_EXPANDED_STATE", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def set_flag(monkeypatch: pytest.MonkeyPatch) -> Callable[[str, bool], None]:
    def _set(name: str, value: bool) -> None:
        monkeypatch.setenv(name.upper(), "true" if value else "false")
        get_settings.cache_clear()

    return _set


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "listkeeper.sqlite3"


@pytest.fixture()
async def engine(db_path: Path) -> AsyncIterator[AsyncEngine]:
    """A fresh SQLite file database per test, schema created."""
    settings = Settings(database_url=f"sqlite+aiosqlite:///{db_path}", database_busy_timeout=0.2)
    engine = build_engine(settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    factory = build_session_factory(engine)
    async with factory() as session:
        yield session


@pytest.fixture()
def make_user(db: AsyncSession) -> MakeUser:
    """Insert a user with a personal list, committed."""

    async def _make(username: str, is_admin: bool = False, password: str = "secret") -> User:
        user = User(username=username, password_hash=hash_password(password), is_admin=is_admin)
        db.add(user)
        await db.flush()
        await ensure_personal_list(db, user.id)
        await db.commit()
        return user

    return _make


@pytest.fixture()
def make_list(db: AsyncSession) -> MakeList:
    """Insert a list owned by `owner`, optionally shared with others, committed."""

    async def _make(
        owner: User,
        name: str = "Groceries",
        shared_with: dict[User, bool] | None = None,
    ) -> TodoList:
        todo_list = TodoList(name=name, created_by_id=owner.id)
        db.add(todo_list)
        await db.flush()
        db.add(ListAccess(list_id=todo_list.id, user_id=owner.id, can_edit=True))
        for user, can_edit in (shared_with or {}).items():
            db.add(ListAccess(list_id=todo_list.id, user_id=user.id, can_edit=can_edit))
        await db.commit()
        return todo_list

    return _make


@pytest.fixture()
async def alice(make_user: MakeUser) -> User:
    return await make_user("alice")


@pytest.fixture()
async def bob(make_user: MakeUser) -> User:
    return await make_user("bob")


@pytest.fixture()
async def admin(make_user: MakeUser) -> User:
    return await make_user("root", is_admin=True)
