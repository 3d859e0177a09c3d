"""Change-token endpoint for client cache invalidation."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.api.v1.auth import CurrentUser
from listkeeper.db.session import get_db_session
from listkeeper.services.change_token import get_change_token

router = APIRouter()


class SyncResponse(BaseModel):
    """Clients re-fetch when `token` differs from the value they last saw."""

    token: int


@router.get("/sync", response_model=SyncResponse)
async def sync(
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> SyncResponse:
    return SyncResponse(token=await get_change_token(db))
