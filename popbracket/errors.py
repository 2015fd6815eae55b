"""Error taxonomy for bracket and voting operations."""
from __future__ import annotations


class BracketError(Exception):
    """Base class for all engine errors. `message` is safe to show to users."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BracketError):
    """Bad input shape (non-power-of-two size, bad quadrant, duplicate name...)."""


class StateConflict(BracketError):
    """Operation not valid in the current lifecycle state."""


class NotFound(BracketError):
    """Unknown id or slug."""


class Unauthorized(BracketError):
    """Caller lacks the role required for this operation."""


class IntegrityViolation(BracketError):
    """A data-model invariant would be broken. Indicates a bug or racing writers."""


class InvalidBracketSize(ValidationError):
    pass


class InsufficientContestants(ValidationError):
    pass


class QuadrantFull(ValidationError):
    pass


class InvalidSeed(ValidationError):
    pass


class DuplicateName(ValidationError):
    pass


class TournamentFull(ValidationError):
    pass


class AlreadyStarted(StateConflict):
    pass


class NotActive(StateConflict):
    pass


class OutsideWindow(StateConflict):
    pass


class InvalidSelection(IntegrityViolation):
    pass
