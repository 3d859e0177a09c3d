"""Readiness endpoint for the fronting layer."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.config import get_settings
from listkeeper.db.session import get_db_session
from listkeeper.services.change_token import get_change_token

logger = structlog.get_logger()
router = APIRouter()


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """
    Report whether the store answers and which optional capabilities are on.

    The current change token doubles as the store round-trip, so pollers can
    use this endpoint to prime their sync state.
    """
    settings = get_settings()
    store = "sqlite" if settings.is_sqlite else "postgresql"

    try:
        token = await get_change_token(db)
    except DBAPIError as e:
        logger.warning("readiness_store_unavailable", store=store, error=str(e.orig))
        return ORJSONResponse(
            status_code=503,
            content={"status": "unavailable", "store": store},
        )

    return {
        "status": "ready",
        "version": settings.app_version,
        "store": store,
        "change_token": token,
        "features": {
            "list_ordering": settings.feature_list_ordering,
            "list_expanded_state": settings.feature_list_expanded_state,
        },
    }
