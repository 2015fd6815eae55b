"""Contestant model - an entry seeded into one quadrant of a tournament."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from popbracket.models.base import Base, utcnow


class Contestant(Base):
    """Tournament contestant. Counters are written only by round progression."""

    __tablename__ = "contestants"
    __table_args__ = (
        UniqueConstraint("tournament_id", "name", name="uq_contestant_name"),
        UniqueConstraint("tournament_id", "quadrant", "seed", name="uq_contestant_quadrant_seed"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    quadrant: Mapped[int] = mapped_column(Integer, nullable=False)  # 1..4
    seed: Mapped[int] = mapped_column(Integer, nullable=False)  # 1 = strongest within quadrant
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    wins: Mapped[int] = mapped_column(Integer, default=0)
    losses: Mapped[int] = mapped_column(Integer, default=0)
    votes_received: Mapped[int] = mapped_column(Integer, default=0)
    eliminated_round: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="contestants")

    def reset_counters(self) -> None:
        self.wins = 0
        self.losses = 0
        self.votes_received = 0
        self.eliminated_round = None
        self.is_active = True
