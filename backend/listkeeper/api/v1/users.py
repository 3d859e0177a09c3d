"""Current-user endpoints."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.api.v1.auth import CurrentUser
from listkeeper.db.session import get_db_session
from listkeeper.services.access_control import get_personal_list_id
from listkeeper.services.list_service import ListService
from listkeeper.services.user_service import UserService

router = APIRouter()


class PasswordChange(BaseModel):
    """Change the acting user's own password."""

    current_password: str
    new_password: str
    confirm_password: str


class CurrentUserResponse(BaseModel):
    """The acting user."""

    id: int
    username: str
    is_admin: bool
    personal_list_id: int | None
    owned_list_ids: list[int]


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Get the acting user with the lists they own."""
    owned = await ListService(db).owned_lists(current_user.id)
    return CurrentUserResponse(
        id=current_user.id,
        username=current_user.username,
        is_admin=current_user.is_admin,
        personal_list_id=await get_personal_list_id(db, current_user.id),
        owned_list_ids=[todo_list.id for todo_list in owned],
    )


@router.post("/me/password")
async def change_password(
    password_in: PasswordChange,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    """Change the acting user's password."""
    await UserService(db).change_password(
        current_user.id,
        password_in.current_password,
        password_in.new_password,
        password_in.confirm_password,
    )
    return {"ok": True, "action": "password_changed"}
