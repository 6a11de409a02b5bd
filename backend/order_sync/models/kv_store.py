"""Key-value table backing the local durable store."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from order_sync.db.base import Base, TimestampMixin


class KeyValueEntry(TimestampMixin, Base):
    """One durable key; the value is an opaque string (JSON in practice)."""
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
