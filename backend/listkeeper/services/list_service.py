"""List management service: lists, sharing, ordering and per-user UI state."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

import structlog
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.config import get_settings
from listkeeper.db.session import run_transaction
from listkeeper.exceptions import InvalidInputError, NotFoundError, UnsupportedError
from listkeeper.models.task import Task
from listkeeper.models.todo_list import ListAccess, TodoList
from listkeeper.models.user import User
from listkeeper.services import access_control as ac
from listkeeper.services.change_token import touch_change

logger = structlog.get_logger()


@dataclass(frozen=True)
class AccessibleList:
    """A list as seen by one user."""

    id: int
    name: str
    created_by_id: int | None
    created_at: datetime
    can_edit: bool
    sort_order: int
    is_expanded: bool
    is_personal: bool


@dataclass(frozen=True)
class AccessEntry:
    """One user's grant on a list."""

    user_id: int
    username: str
    can_edit: bool
    is_owner: bool


@dataclass(frozen=True)
class ListDeletion:
    list_id: int
    tasks_removed: int
    grants_removed: int


class ListService:
    """Service for managing lists and their access grants."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_accessible_lists(self, user_id: int) -> list[AccessibleList]:
        """Lists the user holds a grant on, in their chosen order, then by name."""
        query = (
            select(TodoList, ListAccess)
            .join(ListAccess, ListAccess.list_id == TodoList.id)
            .where(ListAccess.user_id == user_id)
        )
        if self.settings.feature_list_ordering:
            query = query.order_by(
                ListAccess.sort_order.is_(None).asc(),
                ListAccess.sort_order.asc(),
                TodoList.name,
                TodoList.id,
            )
        else:
            query = query.order_by(TodoList.name, TodoList.id)

        result = await self.db.execute(query)
        personal_id = await ac.get_personal_list_id(self.db, user_id)
        return [self._to_accessible(todo_list, grant, personal_id) for todo_list, grant in result.all()]

    async def get_accessible_list(self, user_id: int, list_id: int) -> AccessibleList:
        """One list as seen by the user; NotFound/Forbidden otherwise."""
        todo_list = await ac.require_list_access(self.db, user_id, list_id)
        grant = await ac.get_list_access(self.db, user_id, list_id)
        personal_id = await ac.get_personal_list_id(self.db, user_id)
        return self._to_accessible(todo_list, grant, personal_id)

    async def owned_lists(self, user_id: int) -> Sequence[TodoList]:
        """Lists created by the user, oldest first."""
        result = await self.db.execute(
            select(TodoList)
            .where(TodoList.created_by_id == user_id)
            .order_by(TodoList.created_at, TodoList.id)
        )
        return result.scalars().all()

    async def all_lists(self) -> Sequence[TodoList]:
        """Every list, by name (admin view)."""
        result = await self.db.execute(select(TodoList).order_by(TodoList.name, TodoList.id))
        return result.scalars().all()

    async def list_grants(self, list_ids: Iterable[int]) -> dict[int, list[tuple[ListAccess, str]]]:
        """Grants per list with the grantee's username, ordered by username."""
        ids = sorted({i for i in list_ids if i > 0})
        if not ids:
            return {}
        result = await self.db.execute(
            select(ListAccess, User.username)
            .join(User, User.id == ListAccess.user_id)
            .where(ListAccess.list_id.in_(ids))
            .order_by(User.username)
        )
        grants: dict[int, list[tuple[ListAccess, str]]] = {}
        for grant, username in result.all():
            grants.setdefault(grant.list_id, []).append((grant, username))
        return grants

    async def get_access_entries(self, acting_user_id: int, list_id: int) -> list[AccessEntry]:
        """Grants on a managed list, ordered by grantee username."""
        user = await self._load_user(acting_user_id)
        todo_list = await ac.require_manageable_list(self.db, user, list_id)
        grants = await self.list_grants([list_id])
        return [
            AccessEntry(
                user_id=grant.user_id,
                username=username,
                can_edit=grant.can_edit,
                is_owner=grant.user_id == todo_list.created_by_id,
            )
            for grant, username in grants.get(list_id, [])
        ]

    async def task_counts(self, list_ids: Iterable[int] | None = None) -> dict[int, int]:
        """Number of tasks per list."""
        query = select(Task.list_id, func.count(Task.id)).group_by(Task.list_id)
        if list_ids is not None:
            ids = sorted({i for i in list_ids if i > 0})
            if not ids:
                return {}
            query = query.where(Task.list_id.in_(ids))
        result = await self.db.execute(query)
        return {list_id: count for list_id, count in result.all()}

    # =========================================================================
    # List CRUD Operations
    # =========================================================================

    async def create_list(self, acting_user_id: int, name: str) -> TodoList:
        """Create a list owned by the acting user, with an edit grant for them."""
        name = self._clean_name(name)

        async def work() -> TodoList:
            await self._load_user(acting_user_id)
            todo_list = TodoList(name=name, created_by_id=acting_user_id)
            self.db.add(todo_list)
            await self.db.flush()
            await self._upsert_grant(todo_list.id, acting_user_id, can_edit=True)
            await touch_change(self.db)
            return todo_list

        todo_list = await run_transaction(self.db, "create_list", work)

        logger.info("list_created", list_id=todo_list.id, user_id=acting_user_id)
        return todo_list

    async def rename_list(self, acting_user_id: int, list_id: int, name: str) -> TodoList:
        """Rename a list the acting user may manage."""
        name = self._clean_name(name)

        async def work() -> TodoList:
            user = await self._load_user(acting_user_id)
            todo_list = await ac.require_manageable_list(self.db, user, list_id)
            todo_list.name = name
            await touch_change(self.db)
            return todo_list

        todo_list = await run_transaction(self.db, "rename_list", work)

        logger.info("list_renamed", list_id=list_id, user_id=acting_user_id)
        return todo_list

    async def delete_list(self, acting_user_id: int, list_id: int) -> ListDeletion:
        """Delete a list together with all its tasks and grants."""

        async def work() -> ListDeletion:
            user = await self._load_user(acting_user_id)
            await ac.require_manageable_list(self.db, user, list_id)
            tasks = await self.db.execute(delete(Task).where(Task.list_id == list_id))
            grants = await self.db.execute(delete(ListAccess).where(ListAccess.list_id == list_id))
            await self.db.execute(delete(TodoList).where(TodoList.id == list_id))
            await touch_change(self.db)
            return ListDeletion(list_id, tasks.rowcount or 0, grants.rowcount or 0)

        deletion = await run_transaction(self.db, "delete_list", work)

        logger.info(
            "list_deleted",
            list_id=list_id,
            user_id=acting_user_id,
            tasks_removed=deletion.tasks_removed,
            grants_removed=deletion.grants_removed,
        )
        return deletion

    async def clear_completed(self, acting_user_id: int, list_id: int) -> int:
        """Delete every done task of a managed list; returns the number removed."""

        async def work() -> int:
            user = await self._load_user(acting_user_id)
            await ac.require_manageable_list(self.db, user, list_id)
            result = await self.db.execute(
                delete(Task).where(
                    and_(
                        Task.list_id == list_id,
                        Task.is_done == True,  # noqa: E712
                    )
                )
            )
            await touch_change(self.db)
            return result.rowcount or 0

        removed = await run_transaction(self.db, "clear_completed", work)

        logger.info("list_completed_cleared", list_id=list_id, tasks_removed=removed)
        return removed

    # =========================================================================
    # Sharing
    # =========================================================================

    async def grant_access(
        self,
        acting_user_id: int,
        list_id: int,
        target_user_id: int,
        can_edit: bool,
    ) -> ListAccess:
        """Create or update a user's grant. The list creator always keeps edit."""

        async def work() -> ListAccess:
            user = await self._load_user(acting_user_id)
            todo_list = await ac.require_manageable_list(self.db, user, list_id)
            await self._load_user(target_user_id)
            effective = can_edit or todo_list.created_by_id == target_user_id
            grant = await self._upsert_grant(list_id, target_user_id, can_edit=effective)
            await touch_change(self.db)
            return grant

        grant = await run_transaction(self.db, "grant_access", work)

        logger.info(
            "list_access_granted",
            list_id=list_id,
            target_user_id=target_user_id,
            can_edit=grant.can_edit,
            user_id=acting_user_id,
        )
        return grant

    async def revoke_access(self, acting_user_id: int, list_id: int, target_user_id: int) -> bool:
        """Remove a user's grant; the list creator's grant cannot be removed."""

        async def work() -> bool:
            user = await self._load_user(acting_user_id)
            todo_list = await ac.require_manageable_list(self.db, user, list_id)
            if todo_list.created_by_id is not None and todo_list.created_by_id == target_user_id:
                raise InvalidInputError("You cannot remove the list owner", field="user_id")
            result = await self.db.execute(
                delete(ListAccess).where(
                    and_(
                        ListAccess.list_id == list_id,
                        ListAccess.user_id == target_user_id,
                    )
                )
            )
            await touch_change(self.db)
            return bool(result.rowcount)

        removed = await run_transaction(self.db, "revoke_access", work)

        logger.info(
            "list_access_revoked",
            list_id=list_id,
            target_user_id=target_user_id,
            removed=removed,
            user_id=acting_user_id,
        )
        return removed

    # =========================================================================
    # Per-user Ordering and UI State
    # =========================================================================

    async def set_order(self, user_id: int, ordered_list_ids: Iterable[int]) -> bool:
        """
        Rank the given lists 1..N for this user, in one transaction.

        Only the user's own grants are touched; ids they hold no grant on are
        ignored. Returns False without touching anything when ordering is
        disabled for this deployment.
        """
        if not self.settings.feature_list_ordering:
            logger.debug("list_order_ignored", user_id=user_id, reason="feature_disabled")
            return False

        ordered = [int(i) for i in ordered_list_ids if int(i) > 0]
        if not ordered:
            return True

        async def work() -> None:
            for rank, list_id in enumerate(ordered, start=1):
                await self.db.execute(
                    update(ListAccess)
                    .where(
                        and_(
                            ListAccess.user_id == user_id,
                            ListAccess.list_id == list_id,
                        )
                    )
                    .values(sort_order=rank)
                )
            await touch_change(self.db)

        await run_transaction(self.db, "set_list_order", work)

        logger.info("list_order_updated", user_id=user_id, list_count=len(ordered))
        return True

    async def set_expanded(self, user_id: int, list_id: int, is_expanded: bool) -> None:
        """Persist the per-user expanded/collapsed flag of a visible list."""

        async def work() -> None:
            await ac.require_list_access(self.db, user_id, list_id)
            if not self.settings.feature_list_expanded_state:
                raise UnsupportedError("list_expanded_state")
            await self.db.execute(
                update(ListAccess)
                .where(
                    and_(
                        ListAccess.user_id == user_id,
                        ListAccess.list_id == list_id,
                    )
                )
                .values(is_expanded=is_expanded)
            )

        await run_transaction(self.db, "set_list_expanded", work)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _load_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    async def _upsert_grant(self, list_id: int, user_id: int, can_edit: bool) -> ListAccess:
        grant = await ac.get_list_access(self.db, user_id, list_id)
        if grant is None:
            grant = ListAccess(
                list_id=list_id,
                user_id=user_id,
                can_edit=can_edit,
                sort_order=await ac.next_sort_order(self.db, user_id),
                is_expanded=True,
            )
            self.db.add(grant)
        else:
            grant.can_edit = can_edit
        await self.db.flush()
        return grant

    def _clean_name(self, name: str | None) -> str:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("List name is required", field="name")
        if len(name) > self.settings.max_name_length:
            raise InvalidInputError(
                f"List name is too long (max {self.settings.max_name_length} characters)",
                field="name",
            )
        return name

    def _to_accessible(
        self,
        todo_list: TodoList,
        grant: ListAccess | None,
        personal_id: int | None,
    ) -> AccessibleList:
        ordering = self.settings.feature_list_ordering
        expanded = self.settings.feature_list_expanded_state
        return AccessibleList(
            id=todo_list.id,
            name=todo_list.name,
            created_by_id=todo_list.created_by_id,
            created_at=todo_list.created_at,
            can_edit=bool(grant and grant.can_edit),
            sort_order=(grant.sort_order or 0) if (grant and ordering) else 0,
            is_expanded=bool(grant and grant.is_expanded) if expanded else False,
            is_personal=todo_list.id == personal_id,
        )
