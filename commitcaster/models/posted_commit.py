"""tweets table — the posted-commit ledger."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, Text, desc, func, text
from sqlalchemy.orm import Mapped, mapped_column

from commitcaster.core.database import Base, utcnow


class PostedCommit(Base):
    __tablename__ = "tweets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        Text, nullable=False, default="default", server_default=text("'default'")
    )
    repo_name: Mapped[str] = mapped_column(Text, nullable=False)
    commit_sha: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    tweet_id: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_repo_created", "repo_name", desc("created_at")),
        Index("idx_tweets_user", "user_id"),
    )
