"""github_tokens table — code-host credentials keyed by external user id."""

from typing import Any, Optional

from sqlalchemy import JSON, Float, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from commitcaster.core.database import Base, TimestampMixin


class GithubToken(TimestampMixin, Base):
    __tablename__ = "github_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    github_user_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    scope: Mapped[Optional[str]] = mapped_column(Text)
    user_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    expires_at: Mapped[Optional[float]] = mapped_column(Float)
