"""Task lifecycle service: create, edit, delete and toggle-with-recurrence."""

from dataclasses import dataclass
from datetime import date

import structlog
from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.config import get_settings
from listkeeper.db.session import run_transaction
from listkeeper.exceptions import InvalidInputError
from listkeeper.models.task import Task
from listkeeper.models.todo_list import ListAccess
from listkeeper.services import access_control as ac
from listkeeper.services.change_token import touch_change
from listkeeper.services.recurrence import PRESETS, parse_rule, rule_from_preset, serialize_rule
from listkeeper.services.scheduler import next_due_date

logger = structlog.get_logger()


@dataclass(frozen=True)
class ToggleResult:
    """Row changes implied by one toggle."""

    task_id: int
    list_id: int
    is_done: bool
    successor_id: int | None = None
    successor_created: bool = False
    successors_removed: int = 0


class TaskLifecycleService:
    """Service for task state transitions.

    Every public mutation runs as a single transaction through
    `run_transaction`, which rolls back on failure and retries once on
    store contention.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Task CRUD Operations
    # =========================================================================

    async def create_task(
        self,
        acting_user_id: int,
        list_id: int,
        title: str,
        due_date: date | None = None,
        repeat: str | None = None,
    ) -> Task:
        """Create a task, resolving `repeat` (a preset name) into a stored rule."""
        title = _clean_title(title)
        if list_id <= 0:
            raise InvalidInputError("Invalid list", field="list_id")
        preset = (repeat or "").strip().lower()
        if preset and preset not in PRESETS:
            raise InvalidInputError(f"Unknown repeat preset '{repeat}'", field="repeat")
        rule = rule_from_preset(preset, due_date)

        async def work() -> Task:
            await ac.require_list_access(self.db, acting_user_id, list_id, require_edit=True)
            task = Task(
                list_id=list_id,
                created_by_id=acting_user_id,
                title=title,
                due_date=due_date,
                is_done=False,
                repeat_rule=serialize_rule(rule),
            )
            self.db.add(task)
            await touch_change(self.db)
            return task

        task = await run_transaction(self.db, "create_task", work)

        logger.info(
            "task_created",
            task_id=task.id,
            list_id=list_id,
            user_id=acting_user_id,
            repeat=rule.freq.value if rule else None,
        )
        return task

    async def update_due_date(
        self,
        acting_user_id: int,
        task_id: int,
        due_date: date | None,
    ) -> Task:
        """Set or clear a task's due date. Recurrence state is untouched."""

        async def work() -> Task:
            task = await ac.require_task_access(self.db, acting_user_id, task_id, require_edit=True)
            task.due_date = due_date
            await touch_change(self.db)
            return task

        task = await run_transaction(self.db, "update_due_date", work)

        logger.info(
            "task_due_date_updated",
            task_id=task_id,
            list_id=task.list_id,
            due_date=str(due_date) if due_date else None,
        )
        return task

    async def delete_task(self, acting_user_id: int, task_id: int) -> int:
        """Delete a single task and return its list id.

        Successors pointing at it keep a dangling `repeat_source_id`, which
        later lookups treat as "no linkage".
        """

        async def work() -> int:
            task = await ac.require_task_access(self.db, acting_user_id, task_id, require_edit=True)
            list_id = task.list_id
            await self.db.execute(delete(Task).where(Task.id == task_id))
            await touch_change(self.db)
            return list_id

        list_id = await run_transaction(self.db, "delete_task", work)

        logger.info("task_deleted", task_id=task_id, list_id=list_id, user_id=acting_user_id)
        return list_id

    # =========================================================================
    # Completion Toggle
    # =========================================================================

    async def toggle(
        self,
        acting_user_id: int,
        task_id: int,
        completed_on: date | None = None,
    ) -> ToggleResult:
        """
        Flip a task between open and done, spawning or retracting its successor.

        Completing a recurring task inserts the next occurrence (once per
        completion: an existing successor suppresses a second one). Undoing
        the completion deletes that successor unless it has been completed
        itself. The flip, the successor change and the change-token bump
        commit together.
        """
        completed_on = completed_on or date.today()

        async def work() -> ToggleResult:
            # Re-read under the write lock so concurrent toggles serialize
            task = await ac.require_task_access(
                self.db, acting_user_id, task_id, require_edit=True, for_update=True
            )
            mark_done = not task.is_done
            task.is_done = mark_done
            await touch_change(self.db)

            rule = parse_rule(task.repeat_rule)
            if rule is None:
                return ToggleResult(task.id, task.list_id, mark_done)

            if mark_done:
                existing = await self.find_successor(task.id)
                if existing is not None:
                    return ToggleResult(task.id, task.list_id, True, successor_id=existing.id)

                next_due = next_due_date(rule, task.due_date, completed_on)
                if next_due is None:
                    return ToggleResult(task.id, task.list_id, True)

                successor = Task(
                    list_id=task.list_id,
                    created_by_id=task.created_by_id or acting_user_id,
                    title=task.title,
                    due_date=next_due,
                    is_done=False,
                    repeat_rule=serialize_rule(rule),
                    repeat_source_id=task.id,
                )
                self.db.add(successor)
                await self.db.flush()
                return ToggleResult(
                    task.id,
                    task.list_id,
                    True,
                    successor_id=successor.id,
                    successor_created=True,
                )

            # Undo: retract the open successor, never a completed one
            result = await self.db.execute(
                delete(Task).where(
                    and_(
                        Task.repeat_source_id == task.id,
                        Task.is_done == False,  # noqa: E712
                    )
                )
            )
            return ToggleResult(
                task.id,
                task.list_id,
                False,
                successors_removed=result.rowcount or 0,
            )

        outcome = await run_transaction(self.db, "toggle_task", work)

        logger.info(
            "task_toggled",
            task_id=task_id,
            list_id=outcome.list_id,
            is_done=outcome.is_done,
            successor_id=outcome.successor_id,
            successor_created=outcome.successor_created,
            successors_removed=outcome.successors_removed,
        )
        return outcome

    async def find_successor(self, task_id: int) -> Task | None:
        """The task spawned by completing `task_id`, if one still exists."""
        result = await self.db.execute(
            select(Task).where(Task.repeat_source_id == task_id).order_by(Task.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def get_repeat_source(self, task: Task) -> Task | None:
        """The task that spawned `task`; None when unlinked or since deleted."""
        if task.repeat_source_id is None:
            return None
        return await self.db.get(Task, task.repeat_source_id)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_task(self, acting_user_id: int, task_id: int) -> Task:
        """Load a task the user can read."""
        return await ac.require_task_access(self.db, acting_user_id, task_id, require_edit=False)

    async def list_tasks_for_user(
        self,
        user_id: int,
        list_ids: list[int] | None = None,
    ) -> dict[int, list[Task]]:
        """
        Tasks of every list the user can see, grouped by list id.

        Within a list: open before done, then due date ascending with undated
        tasks last, then newest first.
        """
        query = (
            select(Task)
            .join(ListAccess, ListAccess.list_id == Task.list_id)
            .where(ListAccess.user_id == user_id)
        )
        if list_ids is not None:
            if not list_ids:
                return {}
            query = query.where(Task.list_id.in_(list_ids))

        query = query.order_by(
            Task.list_id,
            Task.is_done.asc(),
            Task.due_date.is_(None).asc(),
            Task.due_date.asc(),
            Task.created_at.desc(),
            Task.id.desc(),
        )

        result = await self.db.execute(query)
        grouped: dict[int, list[Task]] = {list_id: [] for list_id in list_ids or []}
        for task in result.scalars().all():
            grouped.setdefault(task.list_id, []).append(task)
        return grouped


def _clean_title(title: str | None) -> str:
    title = (title or "").strip()
    if not title:
        raise InvalidInputError("Title is required", field="title")
    if len(title) > get_settings().max_name_length:
        raise InvalidInputError("Title is too long", field="title")
    return title
