# tests/test_transactions.py

from __future__ import annotations

import sqlite3

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from listkeeper.db.session import build_session_factory, is_contention_error, run_transaction
from listkeeper.exceptions import ConflictError
from listkeeper.models.app_meta import AppMeta
from listkeeper.services import change_token
from listkeeper.services.change_token import CHANGE_TOKEN_KEY, get_change_token, touch_change
from listkeeper.services.task_lifecycle import TaskLifecycleService


def _locked() -> OperationalError:
    return OperationalError("BEGIN IMMEDIATE", {}, sqlite3.OperationalError("database is locked"))


def test_contention_classification() -> None:
    assert is_contention_error(_locked())
    assert not is_contention_error(
        IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))
    )
    assert not is_contention_error(ValueError("database is locked"))


async def test_contention_is_retried_once(db) -> None:
    calls = []

    async def work() -> str:
        calls.append(1)
        if len(calls) == 1:
            raise _locked()
        await touch_change(db)
        return "ok"

    assert await run_transaction(db, "bump_token", work) == "ok"
    assert len(calls) == 2
    assert await get_change_token(db) > 0


async def test_persistent_contention_surfaces_as_conflict(db) -> None:
    calls = []

    async def work() -> None:
        calls.append(1)
        raise _locked()

    with pytest.raises(ConflictError) as exc_info:
        await run_transaction(db, "bump_token", work)
    assert exc_info.value.operation == "bump_token"
    assert len(calls) == 2


async def test_other_failures_roll_back_without_retry(db) -> None:
    calls = []

    async def work() -> None:
        calls.append(1)
        await touch_change(db)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await run_transaction(db, "bump_token", work)
    assert len(calls) == 1
    assert await get_change_token(db) == 0


async def test_failed_toggle_leaves_no_partial_write(db, alice, make_list, monkeypatch) -> None:
    groceries = await make_list(alice)
    service = TaskLifecycleService(db)
    task = await service.create_task(alice.id, groceries.id, "Stretch", repeat="daily")
    token_before = await get_change_token(db)

    async def failing_touch(session) -> int:
        raise RuntimeError("store went away")

    monkeypatch.setattr("listkeeper.services.task_lifecycle.touch_change", failing_touch)

    with pytest.raises(RuntimeError):
        await service.toggle(alice.id, task.id)

    refreshed = await service.get_task(alice.id, task.id)
    assert refreshed.is_done is False
    assert await service.find_successor(task.id) is None
    assert await get_change_token(db) == token_before


async def test_concurrent_writer_blocks_then_conflicts(engine, db, alice, make_list) -> None:
    groceries = await make_list(alice)
    task = await TaskLifecycleService(db).create_task(alice.id, groceries.id, "Milk")

    factory = build_session_factory(engine)
    async with factory() as holder, factory() as contender:
        # BEGIN IMMEDIATE: the holder now owns the write lock
        await holder.execute(text("SELECT 1"))

        with pytest.raises(ConflictError):
            await TaskLifecycleService(contender).toggle(alice.id, task.id)

        await holder.rollback()

    outcome = await TaskLifecycleService(db).toggle(alice.id, task.id)
    assert outcome.is_done is True


async def test_change_token_is_strictly_increasing(db, monkeypatch) -> None:
    first = await touch_change(db)
    await db.commit()

    # Wall clock stepping backwards must not lower the token
    monkeypatch.setattr(change_token, "_now_ms", lambda: first - 10_000)
    second = await touch_change(db)
    await db.commit()

    assert second == first + 1
    assert await get_change_token(db) == second
    row = (await db.execute(select(AppMeta).where(AppMeta.meta_key == CHANGE_TOKEN_KEY))).scalar_one()
    assert row.value == str(second)
