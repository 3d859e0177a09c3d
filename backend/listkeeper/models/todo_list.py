"""List and per-user access grant models."""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from listkeeper.db.base import Base, BaseModel

if TYPE_CHECKING:
    from listkeeper.models.task import Task
    from listkeeper.models.user import User


class TodoList(BaseModel):
    """Named collection of tasks.

    The earliest list a user created is that user's personal list; this is
    derived from `created_by`/`created_at`/`id` and never stored.
    """

    __tablename__ = "lists"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_by_id: Mapped[int | None] = mapped_column(
        "created_by",
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Relationships
    created_by: Mapped["User | None"] = relationship("User", foreign_keys=[created_by_id])
    tasks: Mapped[list["Task"]] = relationship(
        "Task", back_populates="todo_list",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    access: Mapped[list["ListAccess"]] = relationship(
        "ListAccess", back_populates="todo_list",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def __repr__(self) -> str:
        try:
            return f"<TodoList {self.name[:30]}>"
        except Exception:
            return f"<TodoList id={self.id}>"


class ListAccess(Base):
    """Grant of one user on one list; the only source of list visibility."""

    __tablename__ = "list_access"

    list_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("lists.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    can_edit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Per-user presentation state
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_expanded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    todo_list: Mapped["TodoList"] = relationship("TodoList", back_populates="access")
    user: Mapped["User"] = relationship("User", back_populates="list_access")

    def __repr__(self) -> str:
        return f"<ListAccess list={self.list_id} user={self.user_id} edit={self.can_edit}>"
