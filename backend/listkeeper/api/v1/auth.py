"""Acting-user resolution.

Authentication happens upstream; the fronting layer forwards the
authenticated user's id in the `X-User-ID` header.
"""

from typing import Annotated

import structlog
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.db.session import get_db_session, run_transaction
from listkeeper.models.user import User

logger = structlog.get_logger()

USER_ID_HEADER = "X-User-ID"


async def get_current_user(
    x_user_id: Annotated[int | None, Header(alias=USER_ID_HEADER)] = None,
    db: AsyncSession = Depends(get_db_session),
) -> User:
    """Load the acting user named by the forwarded header."""
    if x_user_id is None or x_user_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    async def load() -> User | None:
        return await db.get(User, x_user_id)

    # Committed here so the lookup never holds the store lock into the handler
    user = await run_transaction(db, "resolve_user", load)
    if user is None:
        logger.info("unknown_acting_user", user_id=x_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


# Type alias for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
