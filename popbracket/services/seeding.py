"""Seeding partitioner: quadrant/seed assignment for contestants."""
from __future__ import annotations

import logging
import math
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from popbracket.errors import InvalidSeed, QuadrantFull, ValidationError
from popbracket.models import Contestant, Tournament
from popbracket.models.tournament import QUADRANT_COUNT

logger = logging.getLogger("popbracket.seeding")


def max_seeds_per_quadrant(tournament: Tournament) -> int:
    return math.ceil(tournament.max_contestants / QUADRANT_COUNT)


def validate_quadrant(quadrant: int) -> None:
    if quadrant not in range(1, QUADRANT_COUNT + 1):
        raise ValidationError(f"Quadrant must be between 1 and {QUADRANT_COUNT}, got {quadrant}")


async def used_seeds(
    session: AsyncSession,
    tournament_id: int,
    quadrant: int,
    exclude_contestant_id: Optional[int] = None,
) -> set[int]:
    """Seeds already held in a quadrant (optionally ignoring one contestant being moved)."""
    query = select(Contestant.seed).where(
        Contestant.tournament_id == tournament_id,
        Contestant.quadrant == quadrant,
    )
    if exclude_contestant_id is not None:
        query = query.where(Contestant.id != exclude_contestant_id)
    result = await session.execute(query)
    return {row[0] for row in result.fetchall()}


def pick_seed(requested: Optional[int], taken: set[int], limit: int, quadrant: int) -> int:
    """Resolve a requested seed against the seeds already taken in the quadrant.

    A free request is honoured as-is. A taken (or missing) request falls back to the
    lowest unused seed in the same quadrant; a full quadrant is an error, never an
    overflow into another quadrant.
    """
    if requested is not None:
        if requested < 1 or requested > limit:
            raise InvalidSeed(f"Seed must be between 1 and {limit}, got {requested}")
        if requested not in taken:
            return requested
    for seed in range(1, limit + 1):
        if seed not in taken:
            return seed
    raise QuadrantFull(f"Quadrant {quadrant} already has all {limit} seeds assigned")


async def assign_seed(
    session: AsyncSession,
    tournament: Tournament,
    quadrant: int,
    requested_seed: Optional[int],
    exclude_contestant_id: Optional[int] = None,
) -> int:
    """Return the seed a contestant should receive in `quadrant`. Does not write."""
    validate_quadrant(quadrant)
    limit = max_seeds_per_quadrant(tournament)
    taken = await used_seeds(session, tournament.id, quadrant, exclude_contestant_id)
    final_seed = pick_seed(requested_seed, taken, limit, quadrant)
    if requested_seed is not None and final_seed != requested_seed:
        logger.warning(
            "Seed %s taken in quadrant %s of tournament %s, assigned seed %s instead",
            requested_seed, quadrant, tournament.id, final_seed,
        )
    return final_seed
