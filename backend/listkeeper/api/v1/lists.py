"""Lists API endpoints: list CRUD, sharing, ordering and expanded state."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.api.v1.auth import CurrentUser
from listkeeper.api.v1.tasks import TaskResponse, task_to_response
from listkeeper.db.session import get_db_session
from listkeeper.services.list_service import AccessibleList, ListService
from listkeeper.services.task_lifecycle import TaskLifecycleService

router = APIRouter()


# Request/Response Models
class ListCreate(BaseModel):
    """Create a new list."""

    name: str = Field(..., min_length=1)


class ListRename(BaseModel):
    """Rename a list."""

    name: str = Field(..., min_length=1)


class AccessUpdate(BaseModel):
    """Grant or change a user's access."""

    can_edit: bool = False


class ListOrderUpdate(BaseModel):
    """The user's lists, in display order."""

    list_ids: list[int]


class ExpandedUpdate(BaseModel):
    is_expanded: bool


class ListResponse(BaseModel):
    """A list as seen by the acting user."""

    id: int
    name: str
    created_by_id: int | None
    created_at: datetime
    can_edit: bool
    can_manage: bool
    sort_order: int
    is_expanded: bool
    is_personal: bool
    tasks: list[TaskResponse] = []


class AccessEntryResponse(BaseModel):
    """One user's grant on a list."""

    user_id: int
    username: str
    can_edit: bool
    is_owner: bool

    class Config:
        from_attributes = True


class ListMutationResponse(BaseModel):
    ok: bool = True
    action: str
    list_id: int
    tasks_removed: int | None = None
    applied: bool | None = None


def _to_response(
    entry: AccessibleList,
    can_manage: bool,
    tasks: list[TaskResponse] | None = None,
) -> ListResponse:
    return ListResponse(
        id=entry.id,
        name=entry.name,
        created_by_id=entry.created_by_id,
        created_at=entry.created_at,
        can_edit=entry.can_edit,
        can_manage=can_manage,
        sort_order=entry.sort_order,
        is_expanded=entry.is_expanded,
        is_personal=entry.is_personal,
        tasks=tasks or [],
    )


@router.get("", response_model=list[ListResponse])
async def list_lists(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Every list the user can see, with its tasks."""
    lists = await ListService(db).get_accessible_lists(current_user.id)
    grouped = await TaskLifecycleService(db).list_tasks_for_user(
        current_user.id, [entry.id for entry in lists]
    )
    return [
        _to_response(
            entry,
            current_user.is_admin or entry.created_by_id == current_user.id,
            [task_to_response(task) for task in grouped.get(entry.id, [])],
        )
        for entry in lists
    ]


@router.post("", response_model=ListResponse, status_code=status.HTTP_201_CREATED)
async def create_list(
    list_in: ListCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Create a list owned by the acting user."""
    service = ListService(db)
    todo_list = await service.create_list(current_user.id, list_in.name)
    entry = await service.get_accessible_list(current_user.id, todo_list.id)
    return _to_response(entry, can_manage=True)


@router.put("/order", response_model=ListMutationResponse)
async def set_list_order(
    order_in: ListOrderUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Store the user's list order. Ignored when ordering is disabled."""
    applied = await ListService(db).set_order(current_user.id, order_in.list_ids)
    return ListMutationResponse(action="reordered", list_id=0, applied=applied)


@router.get("/{list_id}", response_model=ListResponse)
async def get_list(
    list_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Get one list with its tasks."""
    entry = await ListService(db).get_accessible_list(current_user.id, list_id)
    grouped = await TaskLifecycleService(db).list_tasks_for_user(current_user.id, [list_id])
    return _to_response(
        entry,
        current_user.is_admin or entry.created_by_id == current_user.id,
        [task_to_response(task) for task in grouped.get(list_id, [])],
    )


@router.patch("/{list_id}", response_model=ListMutationResponse)
async def rename_list(
    list_id: int,
    rename_in: ListRename,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Rename a list (owner or admin)."""
    await ListService(db).rename_list(current_user.id, list_id, rename_in.name)
    return ListMutationResponse(action="renamed", list_id=list_id)


@router.delete("/{list_id}", response_model=ListMutationResponse)
async def delete_list(
    list_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Delete a list with all its tasks and grants (owner or admin)."""
    deletion = await ListService(db).delete_list(current_user.id, list_id)
    return ListMutationResponse(
        action="deleted",
        list_id=list_id,
        tasks_removed=deletion.tasks_removed,
    )


@router.post("/{list_id}/clear-completed", response_model=ListMutationResponse)
async def clear_completed(
    list_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Delete every completed task of a list (owner or admin)."""
    removed = await ListService(db).clear_completed(current_user.id, list_id)
    return ListMutationResponse(action="cleared", list_id=list_id, tasks_removed=removed)


@router.put("/{list_id}/expanded", response_model=ListMutationResponse)
async def set_list_expanded(
    list_id: int,
    expanded_in: ExpandedUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Remember whether the list is expanded for this user."""
    await ListService(db).set_expanded(current_user.id, list_id, expanded_in.is_expanded)
    return ListMutationResponse(action="expanded_updated", list_id=list_id)


# =========================================================================
# Sharing
# =========================================================================


@router.get("/{list_id}/access", response_model=list[AccessEntryResponse])
async def list_access(
    list_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Grants on a list (owner or admin)."""
    entries = await ListService(db).get_access_entries(current_user.id, list_id)
    return [AccessEntryResponse.model_validate(entry) for entry in entries]


@router.put("/{list_id}/access/{user_id}", response_model=AccessEntryResponse)
async def grant_access(
    list_id: int,
    user_id: int,
    access_in: AccessUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Share a list with a user, or change their edit permission."""
    service = ListService(db)
    await service.grant_access(current_user.id, list_id, user_id, access_in.can_edit)
    entries = await service.get_access_entries(current_user.id, list_id)
    entry = next(entry for entry in entries if entry.user_id == user_id)
    return AccessEntryResponse.model_validate(entry)


@router.delete("/{list_id}/access/{user_id}", response_model=ListMutationResponse)
async def revoke_access(
    list_id: int,
    user_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Stop sharing a list with a user. The owner cannot be removed."""
    removed = await ListService(db).revoke_access(current_user.id, list_id, user_id)
    return ListMutationResponse(action="access_revoked", list_id=list_id, applied=removed)
