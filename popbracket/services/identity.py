"""Caller identity passed into the orchestrator. Authentication happens upstream."""
from __future__ import annotations

from dataclasses import dataclass

from popbracket.errors import Unauthorized
from popbracket.models import Tournament


@dataclass(frozen=True)
class Identity:
    user_id: str
    is_admin: bool = False

    def can_manage(self, tournament: Tournament) -> bool:
        return self.is_admin or tournament.created_by == self.user_id


def require_admin(identity: Identity) -> None:
    if not identity.is_admin:
        raise Unauthorized("Admin access required")


def require_manager(identity: Identity, tournament: Tournament) -> None:
    """Admin or the tournament's creator."""
    if not identity.can_manage(tournament):
        raise Unauthorized("Only the tournament creator or an admin can do this")
