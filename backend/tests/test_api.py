# tests/test_api.py

from __future__ import annotations

from collections.abc import AsyncIterator

import sqlite3

import httpx
import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from listkeeper.db.session import build_session_factory, get_db_session
from listkeeper.main import create_app
from listkeeper.services import access_control as ac
from listkeeper.services.task_lifecycle import TaskLifecycleService

PREFIX = "/api/v1"


@pytest.fixture()
async def client(engine) -> AsyncIterator[httpx.AsyncClient]:
    factory = build_session_factory(engine)

    async def override_session():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_db_session] = override_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def as_user(user) -> dict[str, str]:
    return {"X-User-ID": str(user.id)}


async def test_health(client) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert "X-Request-ID" in resp.headers

    ready = (await client.get(f"{PREFIX}/health/ready")).json()
    assert ready["status"] == "ready"
    assert ready["store"] == "sqlite"
    assert ready["change_token"] == 0
    assert ready["features"] == {"list_ordering": True, "list_expanded_state": True}


async def test_missing_or_unknown_user_is_unauthorized(client) -> None:
    assert (await client.get(f"{PREFIX}/lists")).status_code == 401
    assert (await client.get(f"{PREFIX}/lists", headers={"X-User-ID": "9999"})).status_code == 401


async def test_task_flow_over_http(client, alice) -> None:
    lists = (await client.get(f"{PREFIX}/lists", headers=as_user(alice))).json()
    assert len(lists) == 1
    personal = lists[0]
    assert personal["is_personal"] is True
    assert personal["can_manage"] is True

    token_before = (await client.get(f"{PREFIX}/sync", headers=as_user(alice))).json()["token"]

    created = await client.post(
        f"{PREFIX}/tasks",
        headers=as_user(alice),
        json={"list_id": personal["id"], "title": "Rent", "due_date": "2024-01-31", "repeat": "monthly"},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["ok"] is True
    assert body["action"] == "created"
    assert body["list_id"] == personal["id"]
    assert body["task"]["repeat_label"] == "Monthly (day 31)"
    task_id = body["task"]["id"]

    toggled = await client.post(
        f"{PREFIX}/tasks/{task_id}/toggle",
        headers=as_user(alice),
        json={"completed_on": "2024-01-30"},
    )
    assert toggled.status_code == 200
    outcome = toggled.json()
    assert outcome["is_done"] is True
    assert outcome["successor_created"] is True

    successor = await client.get(f"{PREFIX}/tasks/{outcome['successor_id']}", headers=as_user(alice))
    assert successor.json()["due_date"] == "2024-02-29"

    token_after = (await client.get(f"{PREFIX}/sync", headers=as_user(alice))).json()["token"]
    assert token_after > token_before

    undo = await client.post(f"{PREFIX}/tasks/{task_id}/toggle", headers=as_user(alice))
    assert undo.json()["successors_removed"] == 1

    moved = await client.patch(
        f"{PREFIX}/tasks/{task_id}/due-date",
        headers=as_user(alice),
        json={"due_date": None},
    )
    assert moved.json()["task"]["due_date"] is None

    deleted = await client.delete(f"{PREFIX}/tasks/{task_id}", headers=as_user(alice))
    assert deleted.json() == {"ok": True, "action": "deleted", "list_id": personal["id"], "task": None}


async def test_error_mapping(client, db, alice, bob) -> None:
    private = await ac.get_personal_list_id(db, alice.id)
    # Release the read transaction so request sessions can take the write lock
    await db.commit()
    created = await client.post(
        f"{PREFIX}/tasks", headers=as_user(alice), json={"list_id": private, "title": "Mine"}
    )
    task_id = created.json()["task"]["id"]

    # No grant: indistinguishable from a missing task
    hidden = await client.post(f"{PREFIX}/tasks/{task_id}/toggle", headers=as_user(bob))
    missing = await client.post(f"{PREFIX}/tasks/424242/toggle", headers=as_user(bob))
    assert hidden.status_code == missing.status_code == 404
    assert hidden.json() == missing.json() == {"ok": False, "code": "NOT_FOUND", "error": "Not found"}

    # Read-only grant
    await client.put(
        f"{PREFIX}/lists/{private}/access/{bob.id}", headers=as_user(alice), json={"can_edit": False}
    )
    read_only = await client.post(f"{PREFIX}/tasks/{task_id}/toggle", headers=as_user(bob))
    assert read_only.status_code == 403
    assert read_only.json()["code"] == "FORBIDDEN"

    blank = await client.post(
        f"{PREFIX}/tasks", headers=as_user(alice), json={"list_id": private, "title": "   "}
    )
    assert blank.status_code == 422
    assert blank.json()["code"] == "INVALID_INPUT"


async def test_list_management_over_http(client, alice, bob) -> None:
    created = await client.post(f"{PREFIX}/lists", headers=as_user(alice), json={"name": "Trip"})
    assert created.status_code == 201
    trip = created.json()
    assert trip["can_edit"] is True
    assert trip["is_personal"] is False

    shared = await client.put(
        f"{PREFIX}/lists/{trip['id']}/access/{bob.id}", headers=as_user(alice), json={"can_edit": True}
    )
    assert shared.json() == {"user_id": bob.id, "username": "bob", "can_edit": True, "is_owner": False}

    # Bob can edit tasks but cannot manage the list
    renamed = await client.patch(
        f"{PREFIX}/lists/{trip['id']}", headers=as_user(bob), json={"name": "Bob's trip"}
    )
    assert renamed.status_code == 403

    access = await client.get(f"{PREFIX}/lists/{trip['id']}/access", headers=as_user(alice))
    assert [entry["username"] for entry in access.json()] == ["alice", "bob"]

    owner_removal = await client.delete(
        f"{PREFIX}/lists/{trip['id']}/access/{alice.id}", headers=as_user(alice)
    )
    assert owner_removal.status_code == 422

    bob_lists = (await client.get(f"{PREFIX}/lists", headers=as_user(bob))).json()
    ordered = [entry["id"] for entry in reversed(bob_lists)]
    reorder = await client.put(f"{PREFIX}/lists/order", headers=as_user(bob), json={"list_ids": ordered})
    assert reorder.json()["applied"] is True
    bob_lists = (await client.get(f"{PREFIX}/lists", headers=as_user(bob))).json()
    assert [entry["id"] for entry in bob_lists] == ordered

    collapsed = await client.put(
        f"{PREFIX}/lists/{trip['id']}/expanded", headers=as_user(bob), json={"is_expanded": False}
    )
    assert collapsed.status_code == 200

    deleted = await client.delete(f"{PREFIX}/lists/{trip['id']}", headers=as_user(alice))
    assert deleted.json()["action"] == "deleted"
    gone = await client.get(f"{PREFIX}/lists/{trip['id']}", headers=as_user(bob))
    assert gone.status_code == 404


async def test_unsupported_feature_maps_to_501(client, alice, set_flag) -> None:
    set_flag("feature_list_expanded_state", False)
    lists = (await client.get(f"{PREFIX}/lists", headers=as_user(alice))).json()

    resp = await client.put(
        f"{PREFIX}/lists/{lists[0]['id']}/expanded", headers=as_user(alice), json={"is_expanded": False}
    )
    assert resp.status_code == 501
    assert resp.json()["code"] == "UNSUPPORTED"


async def test_admin_endpoints(client, admin, alice) -> None:
    denied = await client.get(f"{PREFIX}/admin/users", headers=as_user(alice))
    assert denied.status_code == 403

    created = await client.post(
        f"{PREFIX}/admin/users",
        headers=as_user(admin),
        json={"username": "carol", "password": "pw"},
    )
    assert created.status_code == 201
    carol_id = created.json()["id"]

    duplicate = await client.post(
        f"{PREFIX}/admin/users",
        headers=as_user(admin),
        json={"username": "carol", "password": "pw"},
    )
    assert duplicate.status_code == 422

    users = (await client.get(f"{PREFIX}/admin/users", headers=as_user(admin))).json()
    assert [u["username"] for u in users] == ["alice", "carol", "root"]

    promoted = await client.post(f"{PREFIX}/admin/users/{carol_id}/toggle-admin", headers=as_user(admin))
    assert promoted.json()["is_admin"] is True

    self_toggle = await client.post(f"{PREFIX}/admin/users/{admin.id}/toggle-admin", headers=as_user(admin))
    assert self_toggle.status_code == 403

    reset = await client.post(
        f"{PREFIX}/admin/users/{carol_id}/password", headers=as_user(admin), json={"password": "new"}
    )
    assert reset.json()["ok"] is True

    overview = (await client.get(f"{PREFIX}/admin/lists", headers=as_user(admin))).json()
    assert {entry["name"] for entry in overview} == {"Personal list"}
    assert all(entry["task_count"] == 0 for entry in overview)

    removed = await client.delete(f"{PREFIX}/admin/users/{carol_id}", headers=as_user(admin))
    assert removed.json()["ok"] is True
    users = (await client.get(f"{PREFIX}/admin/users", headers=as_user(admin))).json()
    assert "carol" not in [u["username"] for u in users]


async def test_me_and_password_change(client, alice) -> None:
    me = (await client.get(f"{PREFIX}/users/me", headers=as_user(alice))).json()
    assert me["username"] == "alice"
    assert me["personal_list_id"] in me["owned_list_ids"]

    wrong = await client.post(
        f"{PREFIX}/users/me/password",
        headers=as_user(alice),
        json={"current_password": "nope", "new_password": "a", "confirm_password": "a"},
    )
    assert wrong.status_code == 422

    ok = await client.post(
        f"{PREFIX}/users/me/password",
        headers=as_user(alice),
        json={"current_password": "secret", "new_password": "a", "confirm_password": "a"},
    )
    assert ok.json() == {"ok": True, "action": "password_changed"}


async def test_busy_store_is_a_conflict_over_http(client, engine, db, alice, make_list) -> None:
    groceries = await make_list(alice)
    task = await TaskLifecycleService(db).create_task(alice.id, groceries.id, "Milk")

    factory = build_session_factory(engine)
    async with factory() as holder:
        # BEGIN IMMEDIATE: the holder owns the write lock for the whole request
        await holder.execute(text("SELECT 1"))

        busy = await client.post(f"{PREFIX}/tasks/{task.id}/toggle", headers=as_user(alice))
        assert busy.status_code == 409
        assert busy.json()["code"] == "CONFLICT"

        await holder.rollback()

    toggled = await client.post(f"{PREFIX}/tasks/{task.id}/toggle", headers=as_user(alice))
    assert toggled.status_code == 200
    assert toggled.json()["is_done"] is True


async def test_store_contention_outside_a_transaction_maps_to_409(
    client, db, alice, make_list, monkeypatch
) -> None:
    groceries = await make_list(alice)
    task = await TaskLifecycleService(db).create_task(alice.id, groceries.id, "Milk")

    async def locked(self, acting_user_id, task_id):
        raise OperationalError("SELECT", {}, sqlite3.OperationalError("database is locked"))

    monkeypatch.setattr(TaskLifecycleService, "get_task", locked)

    resp = await client.get(f"{PREFIX}/tasks/{task.id}", headers=as_user(alice))
    assert resp.status_code == 409
    assert resp.json()["code"] == "CONFLICT"
