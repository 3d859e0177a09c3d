"""Database package."""

from listkeeper.db.base import Base, BaseModel
from listkeeper.db.session import get_db_session, init_db, is_contention_error, run_transaction

__all__ = ["Base", "BaseModel", "get_db_session", "init_db", "is_contention_error", "run_transaction"]
