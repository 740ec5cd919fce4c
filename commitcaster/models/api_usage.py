"""api_usage table — per-tenant hourly call counters."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from commitcaster.core.database import Base


class ApiUsage(Base):
    __tablename__ = "api_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        Text, nullable=False, default="default", server_default=text("'default'")
    )
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    request_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1, server_default=text("1")
    )
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", "period_start"),
        Index("idx_api_usage_user_period", "user_id", "period_start"),
    )
