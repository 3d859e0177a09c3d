"""Key/value application metadata (holds the change token)."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from listkeeper.db.base import Base


class AppMeta(Base):
    """Single key/value row store."""

    __tablename__ = "app_meta"

    meta_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<AppMeta {self.meta_key}={self.value}>"
