"""queue_items table — durable work-queue records."""

from typing import Any, Optional

from sqlalchemy import JSON, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from commitcaster.core.database import Base, TimestampMixin

QUEUE_STATUSES = ("pending", "processing", "retrying", "completed", "failed")
TERMINAL_STATUSES = ("completed", "failed")


class QueueItem(TimestampMixin, Base):
    __tablename__ = "queue_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    queue_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    task_type: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[str] = mapped_column(
        Text, nullable=False, default="default", server_default=text("'default'")
    )
    data_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=2, server_default=text("2")
    )
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default="pending", server_default=text("'pending'")
    )
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_queue_status", "status"),
        Index("idx_queue_priority", "priority", "created_at"),
        Index("idx_queue_user", "user_id"),
    )
