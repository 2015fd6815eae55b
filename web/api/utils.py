"""Shared API utilities."""
from __future__ import annotations

from fastapi import status

from popbracket.errors import (
    BracketError,
    IntegrityViolation,
    NotFound,
    StateConflict,
    Unauthorized,
    ValidationError,
)
from popbracket.services.orchestrator import TournamentOrchestrator

_orchestrator = TournamentOrchestrator()


def get_orchestrator() -> TournamentOrchestrator:
    """Dependency: the process-wide orchestrator. Tests override it via app.dependency_overrides."""
    return _orchestrator


def error_status(exc: BracketError) -> int:
    """HTTP status for an engine error. Integrity violations map to 409 like state conflicts."""
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, Unauthorized):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, (StateConflict, IntegrityViolation)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST
