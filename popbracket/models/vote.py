"""Vote model - one ballot per user per matchup."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from popbracket.models.base import Base, utcnow


class Vote(Base):
    """User vote for a matchup. A repeat vote replaces the existing row."""

    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("user_id", "matchup_id", name="uq_vote_user_matchup"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # opaque identity-provider id
    matchup_id: Mapped[int] = mapped_column(
        ForeignKey("matchups.id", ondelete="CASCADE"), nullable=False, index=True
    )
    selected_contestant_id: Mapped[int] = mapped_column(ForeignKey("contestants.id"), nullable=False)
    is_admin_vote: Mapped[bool] = mapped_column(Boolean, default=False)  # tie-breaker; counted at normal weight
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    matchup = relationship("Matchup", back_populates="votes")
