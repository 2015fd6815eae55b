"""Bracket generation service: quadrant seeding and single-elimination tree."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from popbracket.errors import AlreadyStarted, InsufficientContestants, InvalidBracketSize, StateConflict
from popbracket.models import Contestant, Matchup, Round, Tournament
from popbracket.models.base import utcnow
from popbracket.models.round import round_name
from popbracket.models.tournament import (
    MAX_BRACKET_SIZE,
    MIN_BRACKET_SIZE,
    QUADRANT_COUNT,
    SINGLE_ELIMINATION,
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_DRAFT,
    STATUS_REGISTRATION,
    is_power_of_2,
)
from popbracket.services import progression

logger = logging.getLogger("popbracket.bracket")

MIN_CONTESTANTS = 2

T = TypeVar("T")


@dataclass
class BracketBuild:
    """Rows created by build_bracket, in round/position order."""

    rounds: List[Round] = field(default_factory=list)
    matchups: List[Matchup] = field(default_factory=list)


def seeding_order(size: int) -> List[int]:
    """Seeds in bracket-line order for a power-of-two draw.

    Built by repeated doubling: every seed s in the previous order is followed by
    its complement (2k + 1 - s). For 8 this yields 1,8,4,5,2,7,3,6, so consecutive
    pairs meet in round one and the top two seeds can only meet in the last round.
    """
    if not is_power_of_2(size):
        raise InvalidBracketSize(f"Bracket size must be a power of two, got {size}")
    order = [1]
    k = 1
    while k < size:
        k *= 2
        order = [s for seed in order for s in (seed, k + 1 - seed)]
    return order


def seeding_pairs(size: int) -> List[Tuple[int, int]]:
    """Round-one (high seed, low seed) pairs for a power-of-two draw of `size` (>= 2)."""
    order = seeding_order(size)
    return [(order[i], order[i + 1]) for i in range(0, len(order) - 1, 2)]


def quadrant_slots(ranked: Sequence[T], quadrant_size: int) -> List[Optional[T]]:
    """Place a quadrant's contestants (best first) onto its bracket lines. Missing seeds are None."""
    return [ranked[s - 1] if s <= len(ranked) else None for s in seeding_order(quadrant_size)]


def first_round_slots(quadrants: Sequence[Sequence[T]], quadrant_size: int) -> List[Optional[T]]:
    """Concatenate the four quadrants' lines; round-one matchup k takes lines 2k-1 and 2k."""
    slots: List[Optional[T]] = []
    for ranked in quadrants:
        slots.extend(quadrant_slots(ranked, quadrant_size))
    return slots


def validate_bracket_size(max_contestants: int) -> None:
    if not is_power_of_2(max_contestants):
        raise InvalidBracketSize(f"Bracket size must be a power of two, got {max_contestants}")
    if not MIN_BRACKET_SIZE <= max_contestants <= MAX_BRACKET_SIZE:
        raise InvalidBracketSize(
            f"Bracket size must be between {MIN_BRACKET_SIZE} and {MAX_BRACKET_SIZE}, got {max_contestants}"
        )


def preview_bracket_structure(quadrant_names: Sequence[Sequence[str]], max_contestants: int) -> dict:
    """Return bracket structure for preview (no DB). Same round/matchup shape as the bracket view.
    quadrant_names = four lists of contestant names, best seed first."""
    validate_bracket_size(max_contestants)
    quadrant_size = max_contestants // QUADRANT_COUNT
    slots = first_round_slots(quadrant_names, quadrant_size)
    total_rounds = max_contestants.bit_length() - 1

    def m(s1: Optional[str], s2: Optional[str], position: int) -> dict:
        return {"position": position, "contestant1": s1, "contestant2": s2}

    rounds = []
    first = []
    for i in range(0, len(slots), 2):
        s1, s2 = slots[i], slots[i + 1]
        if s1 is None and s2 is not None:
            s1, s2 = s2, None
        first.append(m(s1 or "BYE", s2 or "BYE", i // 2 + 1))
    rounds.append({"round_number": 1, "round_name": round_name(1, total_rounds), "matchups": first})
    for r in range(2, total_rounds + 1):
        size = max_contestants >> r
        rounds.append({
            "round_number": r,
            "round_name": round_name(r, total_rounds),
            "matchups": [m("TBD", "TBD", i + 1) for i in range(size)],
        })
    return {"rounds": rounds, "bracket_type": SINGLE_ELIMINATION}


async def ranked_quadrants(session: AsyncSession, tournament_id: int) -> List[List[Contestant]]:
    """Active contestants per quadrant, ordered by seed then creation order."""
    result = await session.execute(
        select(Contestant)
        .where(Contestant.tournament_id == tournament_id, Contestant.is_active.is_(True))
        .order_by(Contestant.quadrant, Contestant.seed, Contestant.created_at, Contestant.id)
    )
    quadrants: List[List[Contestant]] = [[] for _ in range(QUADRANT_COUNT)]
    for c in result.scalars().all():
        quadrants[c.quadrant - 1].append(c)
    return quadrants


async def check_can_start(session: AsyncSession, tournament: Tournament) -> None:
    """Raise the reason a tournament cannot be started, if any."""
    if tournament.status in (STATUS_ACTIVE, STATUS_COMPLETED):
        raise AlreadyStarted(f"Tournament is already {tournament.status}")
    if tournament.status not in (STATUS_DRAFT, STATUS_REGISTRATION):
        raise StateConflict(f"Cannot start a {tournament.status} tournament")
    validate_bracket_size(tournament.max_contestants)
    existing = await session.execute(
        select(func.count()).select_from(Round).where(Round.tournament_id == tournament.id)
    )
    if existing.scalar_one():
        raise AlreadyStarted("Bracket already exists; reset it before starting again")
    count = await session.execute(
        select(func.count())
        .select_from(Contestant)
        .where(Contestant.tournament_id == tournament.id, Contestant.is_active.is_(True))
    )
    if count.scalar_one() < MIN_CONTESTANTS:
        raise InsufficientContestants(f"Need at least {MIN_CONTESTANTS} active contestants to start")


async def build_bracket(session: AsyncSession, tournament: Tournament) -> BracketBuild:
    """Create every round and matchup, open round one and mark the tournament active.

    Round one is filled from the quadrant seeding; later rounds are created with empty
    slots. Byes (missing seeds) are resolved by progression when round one opens.
    Caller owns the transaction.
    """
    await check_can_start(session, tournament)
    quadrants = await ranked_quadrants(session, tournament.id)
    quadrant_size = tournament.quadrant_size
    for q, ranked in enumerate(quadrants, start=1):
        if len(ranked) > quadrant_size:
            raise InvalidBracketSize(
                f"Quadrant {q} has {len(ranked)} contestants but only {quadrant_size} lines"
            )

    slots = first_round_slots([[c.id for c in ranked] for ranked in quadrants], quadrant_size)
    total_rounds = tournament.round_count
    build = BracketBuild()

    for r in range(1, total_rounds + 1):
        size = tournament.max_contestants >> r
        rnd = Round(
            tournament_id=tournament.id,
            round_number=r,
            name=round_name(r, total_rounds),
            total_matchups=size,
            completed_matchups=0,
        )
        session.add(rnd)
        await session.flush()
        build.rounds.append(rnd)
        for position in range(1, size + 1):
            m = Matchup(
                round_id=rnd.id,
                tournament_id=tournament.id,
                position=position,
                contestant1_votes=0,
                contestant2_votes=0,
                total_votes=0,
                is_tie=False,
            )
            if r == 1:
                m.contestant1_id = slots[2 * position - 2]
                m.contestant2_id = slots[2 * position - 1]
                if m.contestant1_id is None and m.contestant2_id is not None:
                    m.contestant1_id, m.contestant2_id = m.contestant2_id, None
            session.add(m)
            build.matchups.append(m)
    await session.flush()

    progression.transition_tournament(tournament, STATUS_ACTIVE)
    now = utcnow()
    await progression.open_round(session, tournament, build.rounds[0], now)
    await progression.advance_to_next_round(session, tournament, now)
    logger.info(
        "Built bracket for tournament %s: %d rounds, %d matchups",
        tournament.id, len(build.rounds), len(build.matchups),
    )
    return build
