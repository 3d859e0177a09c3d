"""Administration endpoints: user accounts and a list overview."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.api.v1.auth import CurrentUser
from listkeeper.db.session import get_db_session
from listkeeper.services.access_control import require_admin
from listkeeper.services.list_service import ListService
from listkeeper.services.user_service import UserService

router = APIRouter()


# Request/Response Models
class UserCreate(BaseModel):
    """Create a user account."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    is_admin: bool = False


class PasswordReset(BaseModel):
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    """User information response."""

    id: int
    username: str
    is_admin: bool
    created_at: datetime

    class Config:
        from_attributes = True


class AdminGrantResponse(BaseModel):
    user_id: int
    username: str
    can_edit: bool


class AdminListResponse(BaseModel):
    """A list with its task count and grants."""

    id: int
    name: str
    created_by_id: int | None
    task_count: int
    access: list[AdminGrantResponse]


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """All users, by username."""
    require_admin(current_user)
    return await UserService(db).list_users()


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_in: UserCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Create a user together with their personal list."""
    return await UserService(db).create_user(
        current_user.id,
        user_in.username,
        user_in.password,
        is_admin=user_in.is_admin,
    )


@router.post("/users/{user_id}/password")
async def reset_password(
    user_id: int,
    reset_in: PasswordReset,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    """Set another user's password."""
    await UserService(db).set_password(current_user.id, user_id, reset_in.password)
    return {"ok": True, "action": "password_reset", "user_id": user_id}


@router.post("/users/{user_id}/toggle-admin", response_model=UserResponse)
async def toggle_admin(
    user_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Grant or revoke administrator rights. Admins cannot change themselves."""
    return await UserService(db).toggle_admin(current_user.id, user_id)


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    """Delete a user. Their lists and tasks stay, without a creator."""
    await UserService(db).delete_user(current_user.id, user_id)
    return {"ok": True, "action": "deleted", "user_id": user_id}


@router.get("/lists", response_model=list[AdminListResponse])
async def list_all_lists(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Every list with task counts and who can see it."""
    require_admin(current_user)
    service = ListService(db)
    lists = await service.all_lists()
    ids = [todo_list.id for todo_list in lists]
    counts = await service.task_counts(ids)
    grants = await service.list_grants(ids)
    return [
        AdminListResponse(
            id=todo_list.id,
            name=todo_list.name,
            created_by_id=todo_list.created_by_id,
            task_count=counts.get(todo_list.id, 0),
            access=[
                AdminGrantResponse(
                    user_id=grant.user_id,
                    username=username,
                    can_edit=grant.can_edit,
                )
                for grant, username in grants.get(todo_list.id, [])
            ],
        )
        for todo_list in lists
    ]
