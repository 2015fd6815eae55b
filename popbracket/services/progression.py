"""Round progression: matchup finalization, winner routing and round advancement."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from popbracket.errors import (
    IntegrityViolation,
    InvalidSelection,
    NotActive,
    NotFound,
    StateConflict,
    ValidationError,
)
from popbracket.models import Contestant, Matchup, Round, Tournament, Vote
from popbracket.models.base import as_naive_utc, utcnow
from popbracket.models.matchup import (
    MATCHUP_ACTIVE,
    MATCHUP_CANCELLED,
    MATCHUP_COMPLETED,
    MATCHUP_TRANSITIONS,
    MATCHUP_UPCOMING,
    TERMINAL_MATCHUP_STATUSES,
)
from popbracket.models.round import (
    ROUND_ACTIVE,
    ROUND_COMPLETED,
    ROUND_PAUSED,
    ROUND_TRANSITIONS,
)
from popbracket.models.tournament import (
    STATUS_ACTIVE,
    STATUS_COMPLETED,
    STATUS_REGISTRATION,
    STATUS_TRANSITIONS,
)
from popbracket.services import votes

logger = logging.getLogger("popbracket.progression")

BYE_NOTE = "Bye"
FORCED_TIE_NOTE = "Winner declared by admin force advance (tie broken)"
FORCED_NOTE = "Winner declared by admin force advance"
OVERRIDE_NOTE = "Winner set by admin override"


def _tie_contestant1(matchup: Matchup, c1: Optional[Contestant], c2: Optional[Contestant]) -> int:
    return matchup.contestant1_id


def _tie_higher_seed(matchup: Matchup, c1: Optional[Contestant], c2: Optional[Contestant]) -> int:
    if c1 is not None and c2 is not None and c2.seed < c1.seed:
        return matchup.contestant2_id
    return matchup.contestant1_id


TieBreakPolicy = Callable[[Matchup, Optional[Contestant], Optional[Contestant]], int]

TIE_BREAK_POLICIES: Dict[str, TieBreakPolicy] = {
    "contestant1": _tie_contestant1,
    "higher_seed": _tie_higher_seed,
}


def get_tie_break_policy(name: str) -> TieBreakPolicy:
    try:
        return TIE_BREAK_POLICIES[name]
    except KeyError:
        raise ValidationError(
            f"Unknown tie-break policy '{name}'. Valid: {', '.join(sorted(TIE_BREAK_POLICIES))}"
        ) from None


@dataclass
class FinalizeResult:
    matchup_id: int
    resolved: bool
    winner_id: Optional[int] = None
    is_tie: bool = False
    reason: Optional[str] = None
    round_advanced: bool = False

    def as_dict(self) -> dict:
        return {
            "matchup_id": self.matchup_id,
            "resolved": self.resolved,
            "winner_id": self.winner_id,
            "is_tie": self.is_tie,
            "reason": self.reason,
            "round_advanced": self.round_advanced,
        }


@dataclass
class ForceAdvanceResult:
    round_number: int
    winners_declared: int
    ties_resolved: int
    round_advanced: bool

    @property
    def message(self) -> str:
        return (
            f"Round {self.round_number} forced: {self.winners_declared} winners declared, "
            f"{self.ties_resolved} ties broken"
        )

    def as_dict(self) -> dict:
        return {
            "round_number": self.round_number,
            "winners_declared": self.winners_declared,
            "ties_resolved": self.ties_resolved,
            "round_advanced": self.round_advanced,
            "message": self.message,
        }


def transition_tournament(tournament: Tournament, new_status: str) -> None:
    if new_status not in STATUS_TRANSITIONS.get(tournament.status, set()):
        raise StateConflict(f"Tournament cannot move from {tournament.status} to {new_status}")
    logger.info("Tournament %s: %s -> %s", tournament.id, tournament.status, new_status)
    tournament.status = new_status


def transition_round(rnd: Round, new_status: str) -> None:
    if new_status not in ROUND_TRANSITIONS.get(rnd.status, set()):
        raise StateConflict(f"Round {rnd.round_number} cannot move from {rnd.status} to {new_status}")
    rnd.status = new_status


def transition_matchup(matchup: Matchup, new_status: str) -> None:
    if new_status not in MATCHUP_TRANSITIONS.get(matchup.status, set()):
        raise StateConflict(f"Matchup {matchup.id} cannot move from {matchup.status} to {new_status}")
    matchup.status = new_status


async def get_round(session: AsyncSession, round_id: int, lock: bool = False) -> Round:
    query = select(Round).where(Round.id == round_id)
    if lock:
        await session.flush()
        query = query.with_for_update().execution_options(populate_existing=True)
    rnd = (await session.execute(query)).scalar_one_or_none()
    if not rnd:
        raise NotFound(f"Round {round_id} not found")
    return rnd


async def current_round(
    session: AsyncSession,
    tournament_id: int,
    statuses: Sequence[str] = (ROUND_ACTIVE,),
    lock: bool = False,
) -> Optional[Round]:
    """Highest-numbered round in one of `statuses`."""
    await session.flush()
    query = (
        select(Round)
        .where(Round.tournament_id == tournament_id, Round.status.in_(statuses))
        .order_by(Round.round_number.desc())
        .limit(1)
    )
    if lock:
        query = query.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(query)).scalar_one_or_none()


async def round_matchups(session: AsyncSession, round_id: int, lock: bool = False) -> List[Matchup]:
    query = select(Matchup).where(Matchup.round_id == round_id).order_by(Matchup.position)
    if lock:
        query = query.with_for_update()
    return list((await session.execute(query)).scalars().all())


async def _next_round(session: AsyncSession, rnd: Round) -> Optional[Round]:
    result = await session.execute(
        select(Round).where(
            Round.tournament_id == rnd.tournament_id,
            Round.round_number == rnd.round_number + 1,
        )
    )
    return result.scalar_one_or_none()


async def recount_round(session: AsyncSession, rnd: Round) -> int:
    """Set completed_matchups to the number of terminal matchups in the round."""
    await session.flush()
    result = await session.execute(
        select(func.count())
        .select_from(Matchup)
        .where(Matchup.round_id == rnd.id, Matchup.status.in_(TERMINAL_MATCHUP_STATUSES))
    )
    rnd.completed_matchups = result.scalar_one()
    return rnd.completed_matchups


async def populate_next_round_slot(
    session: AsyncSession, matchup: Matchup, winner_id: int
) -> Optional[Matchup]:
    """Put a winner into the next round. Odd positions feed slot 1, even positions slot 2."""
    rnd = await session.get(Round, matchup.round_id)
    nxt = await _next_round(session, rnd)
    if nxt is None:
        return None
    result = await session.execute(
        select(Matchup).where(
            Matchup.round_id == nxt.id, Matchup.position == (matchup.position + 1) // 2
        )
    )
    target = result.scalar_one_or_none()
    if target is None:
        raise IntegrityViolation(
            f"Round {nxt.round_number} has no matchup for winner of position {matchup.position}"
        )
    if matchup.position % 2 == 1:
        target.contestant1_id = winner_id
    else:
        target.contestant2_id = winner_id
    return target


async def _complete_matchup(
    session: AsyncSession,
    rnd: Round,
    matchup: Matchup,
    winner_id: int,
    now: datetime,
    note: Optional[str] = None,
    counted: bool = True,
) -> None:
    """Mark matchup completed, update contestant counters, route the winner."""
    if not matchup.has_contestant(winner_id):
        raise InvalidSelection(f"Contestant {winner_id} is not in matchup {matchup.id}")
    transition_matchup(matchup, MATCHUP_COMPLETED)
    matchup.winner_id = winner_id
    matchup.completed_at = now
    matchup.notes = note
    if counted:
        loser_id = matchup.opponent_of(winner_id)
        winner = await session.get(Contestant, winner_id)
        loser = await session.get(Contestant, loser_id)
        winner.wins += 1
        loser.losses += 1
        loser.eliminated_round = rnd.round_number
        if winner_id == matchup.contestant1_id:
            winner.votes_received += matchup.contestant1_votes
            loser.votes_received += matchup.contestant2_votes
        else:
            winner.votes_received += matchup.contestant2_votes
            loser.votes_received += matchup.contestant1_votes
    await populate_next_round_slot(session, matchup, winner_id)
    logger.info(
        "Matchup %s (round %s, position %s) won by %s%s",
        matchup.id, rnd.round_number, matchup.position, winner_id, f" [{note}]" if note else "",
    )


def _activate_matchup(tournament: Tournament, matchup: Matchup, now: datetime) -> None:
    transition_matchup(matchup, MATCHUP_ACTIVE)
    if tournament.voting_duration_hours:
        matchup.start_date = now
        matchup.end_date = now + timedelta(hours=tournament.voting_duration_hours)


async def open_round(
    session: AsyncSession, tournament: Tournament, rnd: Round, now: Optional[datetime] = None
) -> None:
    """Activate a round: two-contestant matchups open for voting, byes resolve, empty slots cancel."""
    now = now or utcnow()
    transition_round(rnd, ROUND_ACTIVE)
    rnd.start_date = now
    for matchup in await round_matchups(session, rnd.id):
        if matchup.status != MATCHUP_UPCOMING:
            continue
        filled = matchup.slots_filled
        if filled == 2:
            _activate_matchup(tournament, matchup, now)
        elif filled == 1:
            present = matchup.contestant1_id if matchup.contestant1_id is not None else matchup.contestant2_id
            await _complete_matchup(session, rnd, matchup, present, now, note=BYE_NOTE, counted=False)
        else:
            transition_matchup(matchup, MATCHUP_CANCELLED)
            matchup.completed_at = now
    await recount_round(session, rnd)
    logger.info("Opened %s (round %s) of tournament %s", rnd.name, rnd.round_number, tournament.id)


async def advance_to_next_round(
    session: AsyncSession, tournament: Tournament, now: Optional[datetime] = None
) -> bool:
    """Close the current round once every matchup is terminal and open the next one.

    Repeats while a freshly opened round is already complete (all byes). Completes
    the tournament when the final round closes. Returns True if anything advanced.
    """
    now = now or utcnow()
    advanced = False
    while True:
        rnd = await current_round(session, tournament.id, statuses=(ROUND_ACTIVE, ROUND_PAUSED), lock=True)
        if rnd is None:
            return advanced
        done = await recount_round(session, rnd)
        if done < rnd.total_matchups:
            return advanced
        transition_round(rnd, ROUND_COMPLETED)
        rnd.end_date = now
        advanced = True
        nxt = await _next_round(session, rnd)
        if nxt is None:
            if tournament.status == STATUS_ACTIVE:
                transition_tournament(tournament, STATUS_COMPLETED)
            logger.info("Tournament %s completed", tournament.id)
            return advanced
        # next-round slots always mirror this round's winners
        for matchup in await round_matchups(session, rnd.id):
            if matchup.status == MATCHUP_COMPLETED and matchup.winner_id is not None:
                await populate_next_round_slot(session, matchup, matchup.winner_id)
        await session.flush()
        await open_round(session, tournament, nxt, now)


async def _contestants_of(session: AsyncSession, matchup: Matchup):
    c1 = await session.get(Contestant, matchup.contestant1_id) if matchup.contestant1_id else None
    c2 = await session.get(Contestant, matchup.contestant2_id) if matchup.contestant2_id else None
    return c1, c2


async def finalize_matchup(
    session: AsyncSession, matchup_id: int, now: Optional[datetime] = None
) -> FinalizeResult:
    """Decide a matchup from its tallies. Idempotent on completed matchups."""
    now = as_naive_utc(now) if now else utcnow()
    matchup = await votes.get_matchup(session, matchup_id, lock=True)
    if matchup.status == MATCHUP_COMPLETED:
        return FinalizeResult(matchup.id, True, matchup.winner_id, matchup.is_tie, "already_completed")
    if matchup.status != MATCHUP_ACTIVE:
        raise NotActive(f"Cannot finalize matchup with status: {matchup.status}")

    tournament = await session.get(Tournament, matchup.tournament_id)
    tally = await votes.recompute_tallies(session, matchup)
    if tally.total_votes == 0:
        return FinalizeResult(matchup.id, False, reason="no_votes")

    note = None
    if tally.is_tie:
        if not tournament.allow_ties:
            logger.info("Matchup %s tied %d-%d, left open", matchup.id, tally.contestant1_votes, tally.contestant2_votes)
            return FinalizeResult(matchup.id, False, is_tie=True, reason="tie")
        policy = get_tie_break_policy(tournament.tie_break_policy)
        winner_id = policy(matchup, *(await _contestants_of(session, matchup)))
        note = f"Tie broken by {tournament.tie_break_policy} policy"
    else:
        winner_id = tally.leader_id

    rnd = await session.get(Round, matchup.round_id)
    await _complete_matchup(session, rnd, matchup, winner_id, now, note=note)
    await recount_round(session, rnd)
    advanced = await advance_to_next_round(session, tournament, now)
    return FinalizeResult(matchup.id, True, winner_id, tally.is_tie, round_advanced=advanced)


async def force_advance_round(
    session: AsyncSession,
    tournament: Tournament,
    tie_break: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ForceAdvanceResult:
    """Declare winners for every open matchup in the current round, then advance."""
    now = as_naive_utc(now) if now else utcnow()
    policy = get_tie_break_policy(tie_break or tournament.tie_break_policy)
    rnd = await current_round(session, tournament.id, statuses=(ROUND_ACTIVE, ROUND_PAUSED), lock=True)
    if rnd is None:
        raise StateConflict("No active round found for tournament")
    if rnd.status == ROUND_PAUSED:
        transition_round(rnd, ROUND_ACTIVE)
        rnd.locked_at = None

    declared = ties = 0
    for matchup in await round_matchups(session, rnd.id, lock=True):
        if matchup.status in TERMINAL_MATCHUP_STATUSES or matchup.slots_filled < 2:
            continue
        tally = await votes.recompute_tallies(session, matchup)
        if tally.contestant1_votes == tally.contestant2_votes:
            winner_id = policy(matchup, *(await _contestants_of(session, matchup)))
            note = FORCED_TIE_NOTE
            ties += 1
        else:
            winner_id = tally.leader_id
            note = FORCED_NOTE
        await _complete_matchup(session, rnd, matchup, winner_id, now, note=note)
        declared += 1

    await recount_round(session, rnd)
    logger.warning(
        "Force advanced round %s of tournament %s: %d winners, %d ties",
        rnd.round_number, tournament.id, declared, ties,
    )
    advanced = await advance_to_next_round(session, tournament, now)
    return ForceAdvanceResult(rnd.round_number, declared, ties, advanced)


async def override_matchup_winner(
    session: AsyncSession, matchup_id: int, winner_id: int, now: Optional[datetime] = None
) -> FinalizeResult:
    """Admin sets the winner of an undecided matchup regardless of the tallies."""
    now = as_naive_utc(now) if now else utcnow()
    matchup = await votes.get_matchup(session, matchup_id, lock=True)
    if matchup.status in TERMINAL_MATCHUP_STATUSES:
        raise StateConflict(f"Cannot override a {matchup.status} matchup")
    if matchup.slots_filled < 2:
        raise StateConflict("Both contestants must be set before a winner can be declared")
    if not matchup.has_contestant(winner_id):
        raise InvalidSelection(f"Contestant {winner_id} is not in matchup {matchup_id}")
    tournament = await session.get(Tournament, matchup.tournament_id)
    tally = await votes.recompute_tallies(session, matchup)
    rnd = await session.get(Round, matchup.round_id)
    await _complete_matchup(session, rnd, matchup, winner_id, now, note=OVERRIDE_NOTE)
    await recount_round(session, rnd)
    logger.warning("Matchup %s winner overridden to %s", matchup_id, winner_id)
    advanced = await advance_to_next_round(session, tournament, now)
    return FinalizeResult(matchup.id, True, winner_id, tally.is_tie, "override", advanced)


async def lock_round(session: AsyncSession, round_id: int, now: Optional[datetime] = None) -> Round:
    """Pause voting in an active round. Decided matchups still count toward completion."""
    rnd = await get_round(session, round_id, lock=True)
    if rnd.status != ROUND_ACTIVE:
        raise StateConflict(f"Only an active round can be locked (round is {rnd.status})")
    transition_round(rnd, ROUND_PAUSED)
    rnd.locked_at = as_naive_utc(now) if now else utcnow()
    logger.info("Locked round %s of tournament %s", rnd.round_number, rnd.tournament_id)
    return rnd


async def unlock_round(session: AsyncSession, round_id: int, now: Optional[datetime] = None) -> Round:
    """Resume voting in a paused round."""
    rnd = await get_round(session, round_id, lock=True)
    if rnd.status != ROUND_PAUSED:
        raise StateConflict(f"Only a paused round can be unlocked (round is {rnd.status})")
    transition_round(rnd, ROUND_ACTIVE)
    rnd.locked_at = None
    tournament = await session.get(Tournament, rnd.tournament_id)
    await advance_to_next_round(session, tournament, now)
    logger.info("Unlocked round %s of tournament %s", rnd.round_number, rnd.tournament_id)
    return rnd


async def reset_bracket(session: AsyncSession, tournament: Tournament) -> None:
    """Drop votes, matchups and rounds, zero contestant counters, reopen registration."""
    if tournament.status not in (STATUS_ACTIVE, STATUS_COMPLETED):
        raise StateConflict(f"Cannot reset bracket of a {tournament.status} tournament")
    matchup_ids = select(Matchup.id).where(Matchup.tournament_id == tournament.id)
    await session.execute(
        delete(Vote).where(Vote.matchup_id.in_(matchup_ids)).execution_options(synchronize_session="fetch")
    )
    await session.execute(
        delete(Matchup).where(Matchup.tournament_id == tournament.id).execution_options(synchronize_session="fetch")
    )
    await session.execute(
        delete(Round).where(Round.tournament_id == tournament.id).execution_options(synchronize_session="fetch")
    )
    result = await session.execute(select(Contestant).where(Contestant.tournament_id == tournament.id))
    for contestant in result.scalars().all():
        contestant.reset_counters()
    # Only path back to registration, outside the normal transition table
    tournament.status = STATUS_REGISTRATION
    await session.flush()
    logger.warning("Bracket reset for tournament %s", tournament.id)


async def close_expired_matchups(
    session: AsyncSession, tournament: Tournament, now: Optional[datetime] = None
) -> List[FinalizeResult]:
    """Finalize every active matchup whose voting window has ended."""
    now = as_naive_utc(now) if now else utcnow()
    result = await session.execute(
        select(Matchup.id)
        .join(Round, Round.id == Matchup.round_id)
        .where(
            Matchup.tournament_id == tournament.id,
            Matchup.status == MATCHUP_ACTIVE,
            Matchup.end_date.is_not(None),
            Matchup.end_date <= now,
        )
        .order_by(Round.round_number, Matchup.position)
    )
    return [await finalize_matchup(session, mid, now) for mid in result.scalars().all()]
