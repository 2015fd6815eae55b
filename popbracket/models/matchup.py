"""Matchup model - a head-to-head contest within a round."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from popbracket.models.base import Base, utcnow

MATCHUP_UPCOMING = "upcoming"
MATCHUP_ACTIVE = "active"
MATCHUP_COMPLETED = "completed"
MATCHUP_CANCELLED = "cancelled"

TERMINAL_MATCHUP_STATUSES = (MATCHUP_COMPLETED, MATCHUP_CANCELLED)

# upcoming -> completed only happens for byes
MATCHUP_TRANSITIONS = {
    MATCHUP_UPCOMING: {MATCHUP_ACTIVE, MATCHUP_COMPLETED, MATCHUP_CANCELLED},
    MATCHUP_ACTIVE: {MATCHUP_COMPLETED, MATCHUP_CANCELLED},
    MATCHUP_COMPLETED: set(),
    MATCHUP_CANCELLED: set(),
}


class Matchup(Base):
    """Single matchup. total_votes always equals contestant1_votes + contestant2_votes."""

    __tablename__ = "matchups"
    __table_args__ = (UniqueConstraint("round_id", "position", name="uq_matchup_position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    round_id: Mapped[int] = mapped_column(
        ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based slot in the round
    contestant1_id: Mapped[Optional[int]] = mapped_column(ForeignKey("contestants.id"), nullable=True)
    contestant2_id: Mapped[Optional[int]] = mapped_column(ForeignKey("contestants.id"), nullable=True)
    winner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("contestants.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=MATCHUP_UPCOMING, index=True)
    contestant1_votes: Mapped[int] = mapped_column(Integer, default=0)
    contestant2_votes: Mapped[int] = mapped_column(Integer, default=0)
    total_votes: Mapped[int] = mapped_column(Integer, default=0)
    is_tie: Mapped[bool] = mapped_column(Boolean, default=False)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    round = relationship("Round", back_populates="matchups")
    votes = relationship(
        "Vote", back_populates="matchup", cascade="all, delete-orphan"
    )

    def has_contestant(self, contestant_id: Optional[int]) -> bool:
        return contestant_id is not None and contestant_id in (self.contestant1_id, self.contestant2_id)

    def opponent_of(self, contestant_id: int) -> Optional[int]:
        if contestant_id == self.contestant1_id:
            return self.contestant2_id
        if contestant_id == self.contestant2_id:
            return self.contestant1_id
        return None

    @property
    def slots_filled(self) -> int:
        return int(self.contestant1_id is not None) + int(self.contestant2_id is not None)
