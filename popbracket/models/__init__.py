"""Database models."""
from popbracket.models.base import Base, init_db
from popbracket.models.tournament import Tournament
from popbracket.models.contestant import Contestant
from popbracket.models.round import Round
from popbracket.models.matchup import Matchup
from popbracket.models.vote import Vote  # noqa: F401 - for metadata

__all__ = [
    "Base",
    "Tournament",
    "Contestant",
    "Round",
    "Matchup",
    "Vote",
    "init_db",
]
