"""user_repos table — repository enrollments."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, Text, UniqueConstraint, func, true
from sqlalchemy.orm import Mapped, mapped_column

from commitcaster.core.database import Base, utcnow


class UserRepo(Base):
    __tablename__ = "user_repos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    repo_full_name: Mapped[str] = mapped_column(Text, nullable=False)
    webhook_secret: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("user_id", "repo_full_name"),
        Index("idx_user_repos_repo", "repo_full_name"),
        Index("idx_user_repos_user", "user_id"),
    )
