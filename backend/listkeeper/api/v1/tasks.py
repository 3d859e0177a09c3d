"""Tasks API endpoints."""

from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from listkeeper.api.v1.auth import CurrentUser
from listkeeper.db.session import get_db_session
from listkeeper.models.task import Task
from listkeeper.services.recurrence import describe_rule
from listkeeper.services.task_lifecycle import TaskLifecycleService

router = APIRouter()


# Request/Response Models
class TaskCreate(BaseModel):
    """Create a new task."""

    list_id: int
    title: str = Field(..., min_length=1)
    due_date: date | None = None
    repeat: str | None = Field(
        default=None,
        description="Preset: none, daily, weekdays, weekly, monthly or yearly",
    )


class DueDateUpdate(BaseModel):
    """Set or clear a due date."""

    due_date: date | None = None


class ToggleRequest(BaseModel):
    """Optional completion date; defaults to today."""

    completed_on: date | None = None


class TaskResponse(BaseModel):
    """Task response."""

    id: int
    list_id: int
    title: str
    due_date: date | None
    is_done: bool
    repeat_rule: dict[str, Any] | None
    repeat_label: str | None
    repeat_source_id: int | None
    created_by_id: int | None
    created_at: datetime

    class Config:
        from_attributes = True


class TaskMutationResponse(BaseModel):
    """Outcome of a task mutation: the affected list lets clients refresh it."""

    ok: bool = True
    action: str
    list_id: int
    task: TaskResponse | None = None


class ToggleResponse(TaskMutationResponse):
    """Outcome of a toggle, including successor bookkeeping."""

    is_done: bool
    successor_id: int | None = None
    successor_created: bool = False
    successors_removed: int = 0


def task_to_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        list_id=task.list_id,
        title=task.title,
        due_date=task.due_date,
        is_done=task.is_done,
        repeat_rule=task.repeat_rule,
        repeat_label=describe_rule(task.repeat_rule),
        repeat_source_id=task.repeat_source_id,
        created_by_id=task.created_by_id,
        created_at=task.created_at,
    )


@router.post("", response_model=TaskMutationResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_in: TaskCreate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Create a task in a list the user can edit."""
    service = TaskLifecycleService(db)
    task = await service.create_task(
        current_user.id,
        task_in.list_id,
        task_in.title,
        due_date=task_in.due_date,
        repeat=task_in.repeat,
    )
    return TaskMutationResponse(
        action="created",
        list_id=task.list_id,
        task=task_to_response(task),
    )


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Get a task from a list the user can see."""
    task = await TaskLifecycleService(db).get_task(current_user.id, task_id)
    return task_to_response(task)


@router.patch("/{task_id}/due-date", response_model=TaskMutationResponse)
async def update_due_date(
    task_id: int,
    update_in: DueDateUpdate,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Set or clear a task's due date."""
    task = await TaskLifecycleService(db).update_due_date(
        current_user.id, task_id, update_in.due_date
    )
    return TaskMutationResponse(
        action="due_date_updated",
        list_id=task.list_id,
        task=task_to_response(task),
    )


@router.post("/{task_id}/toggle", response_model=ToggleResponse)
async def toggle_task(
    task_id: int,
    current_user: CurrentUser,
    toggle_in: ToggleRequest | None = None,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Complete or reopen a task; recurring tasks spawn or retract their successor."""
    outcome = await TaskLifecycleService(db).toggle(
        current_user.id,
        task_id,
        completed_on=toggle_in.completed_on if toggle_in else None,
    )
    return ToggleResponse(
        action="toggled",
        list_id=outcome.list_id,
        is_done=outcome.is_done,
        successor_id=outcome.successor_id,
        successor_created=outcome.successor_created,
        successors_removed=outcome.successors_removed,
    )


@router.delete("/{task_id}", response_model=TaskMutationResponse)
async def delete_task(
    task_id: int,
    current_user: CurrentUser,
    db: AsyncSession = Depends(get_db_session),
) -> Any:
    """Delete a task."""
    list_id = await TaskLifecycleService(db).delete_task(current_user.id, task_id)
    return TaskMutationResponse(action="deleted", list_id=list_id)
