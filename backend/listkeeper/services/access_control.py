"""List access control service.

Every list and task operation is gated on the caller's `list_access` row:

- no row: the list is invisible to the user
- row with can_edit = false: read-only
- row with can_edit = true: may create, edit, toggle and delete tasks

Managing a list (rename, delete, share, clear completed) is a separate
capability held by administrators and by the list's creator, regardless of
their own edit bit.
"""

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.config import get_settings
from listkeeper.exceptions import ForbiddenError, NotFoundError
from listkeeper.models.task import Task
from listkeeper.models.todo_list import ListAccess, TodoList
from listkeeper.models.user import User

logger = structlog.get_logger()


async def get_list_access(
    db: AsyncSession,
    user_id: int,
    list_id: int,
) -> ListAccess | None:
    """Return the user's grant on a list, if any."""
    result = await db.execute(
        select(ListAccess).where(
            and_(
                ListAccess.list_id == list_id,
                ListAccess.user_id == user_id,
            )
        )
    )
    return result.scalar_one_or_none()


async def has_access(
    db: AsyncSession,
    user_id: int,
    list_id: int,
    require_edit: bool = False,
) -> bool:
    """True iff a grant exists for the pair (and carries can_edit when required)."""
    query = select(ListAccess.list_id).where(
        ListAccess.list_id == list_id,
        ListAccess.user_id == user_id,
    )
    if require_edit:
        query = query.where(ListAccess.can_edit == True)  # noqa: E712
    result = await db.execute(query.limit(1))
    return result.first() is not None


async def _denial_reason(
    db: AsyncSession,
    user_id: int,
    list_id: int,
    require_edit: bool,
) -> str | None:
    """None when allowed, else "no_grant" or "read_only"."""
    grant = await get_list_access(db, user_id, list_id)
    if grant is None:
        return "no_grant"
    if require_edit and not grant.can_edit:
        return "read_only"
    return None


async def require_list_access(
    db: AsyncSession,
    user_id: int,
    list_id: int,
    require_edit: bool = False,
) -> TodoList:
    """
    Load a list the user may see (or edit).

    Raises:
        NotFoundError if the list does not exist
        ForbiddenError if the user has no grant (reason "no_grant"), or only
            a read-only grant when `require_edit` is set (reason "read_only")
    """
    todo_list = await db.get(TodoList, list_id)
    if todo_list is None:
        logger.info("access_denied", reason="not_found", list_id=list_id, user_id=user_id)
        raise NotFoundError("list", list_id)

    denial = await _denial_reason(db, user_id, list_id, require_edit)
    if denial is not None:
        logger.info(
            "access_denied",
            reason="forbidden",
            grant=denial,
            list_id=list_id,
            user_id=user_id,
            require_edit=require_edit,
        )
        raise ForbiddenError("Access denied - no permission on this list", reason=denial)

    return todo_list


async def require_task_access(
    db: AsyncSession,
    user_id: int,
    task_id: int,
    require_edit: bool = True,
    for_update: bool = False,
) -> Task:
    """
    Load a task through its list's grant.

    With `for_update`, the task row is locked for the rest of the transaction
    (a no-op on SQLite, where BEGIN IMMEDIATE already holds the write lock).
    """
    query = select(Task).where(Task.id == task_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query.execution_options(populate_existing=True))
    task = result.scalar_one_or_none()
    if task is None:
        logger.info("access_denied", reason="not_found", task_id=task_id, user_id=user_id)
        raise NotFoundError("task", task_id)

    denial = await _denial_reason(db, user_id, task.list_id, require_edit)
    if denial is not None:
        logger.info(
            "access_denied",
            reason="forbidden",
            grant=denial,
            task_id=task_id,
            list_id=task.list_id,
            user_id=user_id,
            require_edit=require_edit,
        )
        raise ForbiddenError("Access denied - no permission on this task's list", reason=denial)

    return task


async def get_personal_list_id(db: AsyncSession, user_id: int) -> int | None:
    """Id of the earliest list created by the user, if they created any."""
    result = await db.execute(
        select(TodoList.id)
        .where(TodoList.created_by_id == user_id)
        .order_by(TodoList.created_at, TodoList.id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def is_personal_list(db: AsyncSession, list_id: int, user_id: int) -> bool:
    """True iff the list is the user's earliest-created list."""
    return await get_personal_list_id(db, user_id) == list_id


async def ensure_personal_list(
    db: AsyncSession,
    user_id: int,
    name: str | None = None,
) -> int:
    """
    Return the user's personal list id, creating it when they own no list.

    Idempotent: a user who already created any list gets the earliest one
    back and nothing is inserted. The owner's edit grant is restored if it
    was removed. Changes are flushed, the caller commits.
    """
    list_id = await get_personal_list_id(db, user_id)
    if list_id is None:
        todo_list = TodoList(
            name=name or get_settings().personal_list_name,
            created_by_id=user_id,
        )
        db.add(todo_list)
        await db.flush()
        list_id = todo_list.id
        logger.info("personal_list_created", list_id=list_id, user_id=user_id)

    if await get_list_access(db, user_id, list_id) is None:
        db.add(
            ListAccess(
                list_id=list_id,
                user_id=user_id,
                can_edit=True,
                sort_order=await next_sort_order(db, user_id),
            )
        )
        await db.flush()

    return list_id


async def next_sort_order(db: AsyncSession, user_id: int) -> int | None:
    """Rank that appends a new grant to the end of the user's list ordering."""
    if not get_settings().feature_list_ordering:
        return None
    result = await db.execute(
        select(func.coalesce(func.max(ListAccess.sort_order), 0)).where(
            ListAccess.user_id == user_id
        )
    )
    return int(result.scalar_one()) + 1


def can_manage_list(user: User, todo_list: TodoList) -> bool:
    """Admins and the list's creator may rename, delete and share it."""
    return user.is_admin or (
        todo_list.created_by_id is not None and todo_list.created_by_id == user.id
    )


async def require_manageable_list(
    db: AsyncSession,
    user: User,
    list_id: int,
) -> TodoList:
    """
    Load a list the user may manage.

    Raises:
        NotFoundError if the list does not exist
        ForbiddenError if the user is neither an admin nor the creator
    """
    todo_list = await db.get(TodoList, list_id)
    if todo_list is None:
        raise NotFoundError("list", list_id)

    if not can_manage_list(user, todo_list):
        logger.info("access_denied", reason="not_owner", list_id=list_id, user_id=user.id)
        raise ForbiddenError(
            "Access denied - only the list owner or an admin can manage it",
            reason="not_owner",
        )

    return todo_list


def require_admin(user: User) -> None:
    """Raise ForbiddenError unless `user` is an administrator."""
    if not user.is_admin:
        logger.info("access_denied", reason="not_admin", user_id=user.id)
        raise ForbiddenError("Access denied - administrator only", reason="not_admin")
