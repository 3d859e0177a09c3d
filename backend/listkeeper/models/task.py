"""Task model."""

from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from listkeeper.db.base import BaseModel, JSONType

if TYPE_CHECKING:
    from listkeeper.models.todo_list import TodoList
    from listkeeper.models.user import User


class Task(BaseModel):
    """Task within a list."""

    __tablename__ = "tasks"

    list_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_by_id: Mapped[int | None] = mapped_column(
        "created_by",
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    title: Mapped[str] = mapped_column(Text, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Recurrence payload: {freq, byweekday?, bymonth?, bymonthday?}
    repeat_rule: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    # Task whose completion spawned this one. Not a foreign key: the source
    # may be deleted later and lookups must then resolve to nothing.
    repeat_source_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # Relationships
    todo_list: Mapped["TodoList"] = relationship("TodoList", back_populates="tasks")
    created_by: Mapped["User | None"] = relationship("User", foreign_keys=[created_by_id])

    def __repr__(self) -> str:
        try:
            return f"<Task {self.title[:30]}>"
        except Exception:
            try:
                return f"<Task id={self.id}>"
            except Exception:
                return "<Task detached>"
