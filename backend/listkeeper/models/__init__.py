"""SQLAlchemy models package."""

from listkeeper.db.base import Base
from listkeeper.models.app_meta import AppMeta
from listkeeper.models.task import Task
from listkeeper.models.todo_list import ListAccess, TodoList
from listkeeper.models.user import User

__all__ = [
    "Base",
    # Users
    "User",
    # Lists & access
    "TodoList",
    "ListAccess",
    # Tasks
    "Task",
    # Bookkeeping
    "AppMeta",
]
