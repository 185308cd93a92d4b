"""
SQLAlchemy ORM Models for the persisted key-value store

The content listing cache persists its whole payload as a single JSON
document under a fixed key, so one table is all that is needed.
"""
from datetime import datetime, timezone
from sqlalchemy import String, Text, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


class KeyValueEntry(Base):
    """Single persisted string value"""
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<KeyValueEntry(key={self.key}, size={len(self.value)})>"
