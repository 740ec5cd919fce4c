"""oauth_tokens table — social-net credentials keyed by tenant id."""

from typing import Optional

from sqlalchemy import Float, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from commitcaster.core.database import Base, TimestampMixin


class OAuthToken(TimestampMixin, Base):
    __tablename__ = "oauth_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text)
    token_type: Mapped[Optional[str]] = mapped_column(Text)
    scope: Mapped[Optional[str]] = mapped_column(Text)
    # epoch seconds; NULL means non-expiring
    expires_at: Mapped[Optional[float]] = mapped_column(Float)
