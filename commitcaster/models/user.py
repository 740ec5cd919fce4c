"""users table — tenants."""

from typing import Optional

from sqlalchemy import Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from commitcaster.core.database import Base, TimestampMixin

TIERS = ("free", "pro", "enterprise")


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    github_username: Mapped[Optional[str]] = mapped_column(Text)
    display_name: Mapped[Optional[str]] = mapped_column(Text)
    email: Mapped[Optional[str]] = mapped_column(Text)
    tier: Mapped[str] = mapped_column(Text, nullable=False, default="free", server_default=text("'free'"))
    api_quota_limit: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100, server_default=text("100")
    )
