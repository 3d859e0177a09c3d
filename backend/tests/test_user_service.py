# tests/test_user_service.py

from __future__ import annotations

import pytest
from sqlalchemy import select

from listkeeper.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from listkeeper.models.task import Task
from listkeeper.models.todo_list import ListAccess, TodoList
from listkeeper.models.user import User
from listkeeper.services import access_control as ac
from listkeeper.services.task_lifecycle import TaskLifecycleService
from listkeeper.services.user_service import UserService, hash_password, verify_password


def test_password_hash_roundtrip() -> None:
    hashed = hash_password("correct horse")
    assert hashed.startswith("$2")
    assert verify_password("correct horse", hashed)
    assert not verify_password("wrong", hashed)


def test_long_passwords_are_not_truncated() -> None:
    base = "p" * 100
    hashed = hash_password(base + "a")
    assert verify_password(base + "a", hashed)
    assert not verify_password(base + "b", hashed)


def test_malformed_hash_never_matches() -> None:
    assert not verify_password("anything", "not-a-bcrypt-hash")


async def test_admin_creates_user_with_personal_list(db, admin) -> None:
    service = UserService(db)

    user = await service.create_user(admin.id, "  dave ", "pw", is_admin=False)

    assert user.username == "dave"
    assert user.is_admin is False
    assert verify_password("pw", user.password_hash)
    personal = await ac.get_personal_list_id(db, user.id)
    assert personal is not None
    assert await ac.has_access(db, user.id, personal, require_edit=True)


async def test_create_user_rules(db, admin, alice) -> None:
    service = UserService(db)

    with pytest.raises(ForbiddenError):
        await service.create_user(alice.id, "eve", "pw")
    with pytest.raises(InvalidInputError):
        await service.create_user(admin.id, "alice", "pw")
    with pytest.raises(InvalidInputError):
        await service.create_user(admin.id, "   ", "pw")
    with pytest.raises(InvalidInputError):
        await service.create_user(admin.id, "eve", "")


async def test_username_and_password_bounded_by_name_length(db, admin) -> None:
    service = UserService(db)

    user = await service.create_user(admin.id, "u" * 256, "p" * 256)
    assert len(user.username) == 256
    assert verify_password("p" * 256, user.password_hash)

    with pytest.raises(InvalidInputError):
        await service.create_user(admin.id, "v" * 257, "pw")
    with pytest.raises(InvalidInputError):
        await service.create_user(admin.id, "eve", "p" * 257)
    with pytest.raises(InvalidInputError):
        await service.set_password(admin.id, user.id, "p" * 600)


async def test_ensure_default_admin_only_on_empty_store(db) -> None:
    service = UserService(db)

    created = await service.ensure_default_admin("start-me")
    assert created is not None
    assert created.username == "admin"
    assert created.is_admin is True
    assert await ac.get_personal_list_id(db, created.id) is not None

    assert await service.ensure_default_admin("again") is None
    assert len(await service.list_users()) == 1


async def test_change_password(db, alice) -> None:
    service = UserService(db)

    with pytest.raises(InvalidInputError):
        await service.change_password(alice.id, "wrong", "new-pw", "new-pw")
    with pytest.raises(InvalidInputError):
        await service.change_password(alice.id, "secret", "new-pw", "other")

    await service.change_password(alice.id, "secret", "new-pw", "new-pw")
    stored = (await service.get_user(alice.id)).password_hash
    assert verify_password("new-pw", stored)
    assert not verify_password("secret", stored)


async def test_admin_password_reset(db, admin, alice, bob) -> None:
    service = UserService(db)

    await service.set_password(admin.id, alice.id, "reset")
    assert verify_password("reset", (await service.get_user(alice.id)).password_hash)

    with pytest.raises(ForbiddenError):
        await service.set_password(bob.id, alice.id, "hijack")


async def test_toggle_admin(db, admin, alice) -> None:
    service = UserService(db)

    promoted = await service.toggle_admin(admin.id, alice.id)
    assert promoted.is_admin is True
    demoted = await service.toggle_admin(admin.id, alice.id)
    assert demoted.is_admin is False

    with pytest.raises(ForbiddenError):
        await service.toggle_admin(admin.id, admin.id)
    with pytest.raises(NotFoundError):
        await service.toggle_admin(admin.id, 9999)


async def test_delete_user_keeps_their_content(db, admin, alice, bob, make_list) -> None:
    service = UserService(db)
    shared = await make_list(alice, name="Shared", shared_with={bob: True})
    task = await TaskLifecycleService(db).create_task(alice.id, shared.id, "Milk")

    with pytest.raises(ForbiddenError):
        await service.delete_user(admin.id, admin.id)

    await service.delete_user(admin.id, alice.id)

    assert await db.get(User, alice.id) is None
    todo_list = (await db.execute(select(TodoList).where(TodoList.id == shared.id))).scalar_one()
    assert todo_list.created_by_id is None
    remaining = (await db.execute(select(Task).where(Task.id == task.id))).scalar_one()
    assert remaining.created_by_id is None
    grants = await db.execute(select(ListAccess.user_id).where(ListAccess.list_id == shared.id))
    assert grants.scalars().all() == [bob.id]


async def test_list_users_sorted(db, alice, bob, admin) -> None:
    users = await UserService(db).list_users()
    assert [u.username for u in users] == ["alice", "bob", "root"]
