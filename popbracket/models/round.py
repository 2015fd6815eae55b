"""Round model - one stage of the single-elimination tree."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from popbracket.models.base import Base, utcnow

ROUND_UPCOMING = "upcoming"
ROUND_ACTIVE = "active"
ROUND_COMPLETED = "completed"
ROUND_PAUSED = "paused"

ROUND_TRANSITIONS = {
    ROUND_UPCOMING: {ROUND_ACTIVE, ROUND_PAUSED},
    ROUND_ACTIVE: {ROUND_COMPLETED, ROUND_PAUSED},
    ROUND_PAUSED: {ROUND_ACTIVE, ROUND_COMPLETED},
    ROUND_COMPLETED: set(),
}


def round_name(round_number: int, round_count: int) -> str:
    """Display name by distance from the final."""
    distance = round_count - round_number
    if distance == 0:
        return "Final"
    if distance == 1:
        return "Semifinal"
    if distance == 2:
        return "Quarterfinal"
    return f"Round {round_number}"


class Round(Base):
    """Round of a tournament. completed_matchups counts matchups in a terminal state."""

    __tablename__ = "rounds"
    __table_args__ = (UniqueConstraint("tournament_id", "round_number", name="uq_round_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=ROUND_UPCOMING)
    total_matchups: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_matchups: Mapped[int] = mapped_column(Integer, default=0)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="rounds")
    matchups = relationship(
        "Matchup", back_populates="round", cascade="all, delete-orphan"
    )
