"""Tournament model."""
from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from popbracket.models.base import Base, utcnow

STATUS_DRAFT = "draft"
STATUS_REGISTRATION = "registration"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

# Allowed lifecycle moves. reset_bracket is the only path back to registration.
STATUS_TRANSITIONS = {
    STATUS_DRAFT: {STATUS_REGISTRATION, STATUS_ACTIVE, STATUS_CANCELLED},
    STATUS_REGISTRATION: {STATUS_ACTIVE, STATUS_CANCELLED},
    STATUS_ACTIVE: {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
}

SINGLE_ELIMINATION = "single-elimination"

MIN_BRACKET_SIZE = 4
MAX_BRACKET_SIZE = 512
QUADRANT_COUNT = 4


def is_power_of_2(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def slugify(text: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace and hyphens to single hyphens.

    All-digit results are prefixed so a slug never reads as a numeric id.
    """
    s = re.sub(r"[^a-z0-9\s-]", "", text.strip().lower())
    s = re.sub(r"\s+", "-", s)
    s = re.sub(r"-+", "-", s).strip("-")
    if not s:
        return "tournament"
    if s.isdigit():
        return f"tournament-{s}"
    return s


class Tournament(Base):
    """Popularity-contest tournament with four seeded quadrants."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)  # opaque media-store path
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    max_contestants: Mapped[int] = mapped_column(Integer, nullable=False)
    bracket_type: Mapped[str] = mapped_column(String(32), default=SINGLE_ELIMINATION)
    quadrant_names: Mapped[list] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=STATUS_DRAFT, index=True)
    allow_ties: Mapped[bool] = mapped_column(Boolean, default=False)
    tie_break_policy: Mapped[str] = mapped_column(String(32), default="contestant1")
    voting_duration_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    contestants = relationship(
        "Contestant", back_populates="tournament", cascade="all, delete-orphan"
    )
    rounds = relationship(
        "Round", back_populates="tournament", cascade="all, delete-orphan"
    )

    @property
    def quadrant_size(self) -> int:
        return self.max_contestants // QUADRANT_COUNT

    @property
    def round_count(self) -> int:
        return self.max_contestants.bit_length() - 1
