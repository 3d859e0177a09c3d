"""Global change token for client cache invalidation.

The token is a millisecond timestamp stored in `app_meta`. It is bumped
inside the same transaction as every mutation, so readers can compare it
against a previously seen value to detect "changed since".
"""

import time

from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.models.app_meta import AppMeta

CHANGE_TOKEN_KEY = "last_change"


def _now_ms() -> int:
    return int(time.time() * 1000)


async def get_change_token(db: AsyncSession) -> int:
    """Return the current token, 0 when nothing has been recorded yet."""
    row = await db.get(AppMeta, CHANGE_TOKEN_KEY, populate_existing=True)
    if row is None or not row.value.isdigit():
        return 0
    return int(row.value)


async def touch_change(db: AsyncSession) -> int:
    """Bump the token within the caller's transaction and return the new value.

    The new value is never below the previous one, even if the wall clock
    stepped backwards.
    """
    row = await db.get(AppMeta, CHANGE_TOKEN_KEY, with_for_update=True, populate_existing=True)
    if row is None:
        token = _now_ms()
        db.add(AppMeta(meta_key=CHANGE_TOKEN_KEY, value=str(token)))
    else:
        previous = int(row.value) if row.value.isdigit() else 0
        token = max(_now_ms(), previous + 1)
        row.value = str(token)
    await db.flush()
    return token
