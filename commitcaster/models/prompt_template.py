"""user_prompt_templates table."""

from sqlalchemy import Boolean, Index, Integer, Text, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from commitcaster.core.database import Base, TimestampMixin


class PromptTemplate(TimestampMixin, Base):
    __tablename__ = "user_prompt_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    template_id: Mapped[str] = mapped_column(Text, nullable=False)
    template_name: Mapped[str] = mapped_column(Text, nullable=False)
    # JSON envelope {"template": ..., "prompt": ...}; legacy rows hold a bare prompt
    template_content: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "template_id"),
        Index("idx_prompt_templates_user", "user_id"),
        Index("idx_prompt_templates_active", "user_id", "is_active"),
    )
