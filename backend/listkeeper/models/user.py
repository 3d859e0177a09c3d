"""User model."""

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from listkeeper.db.base import BaseModel

if TYPE_CHECKING:
    from listkeeper.models.todo_list import ListAccess


class User(BaseModel):
    """Account with a credential hash and an admin flag."""

    __tablename__ = "users"

    username: Mapped[str] = mapped_column(Text, unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    list_access: Mapped[list["ListAccess"]] = relationship(
        "ListAccess", back_populates="user",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def __repr__(self) -> str:
        try:
            return f"<User {self.username}>"
        except Exception:
            return f"<User id={self.id}>"
