"""Vote ledger: one upsertable ballot per user per matchup, plus live tallies."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from popbracket.errors import (
    IntegrityViolation,
    InvalidSelection,
    NotActive,
    NotFound,
    OutsideWindow,
    StateConflict,
)
from popbracket.models import Contestant, Matchup, Round, Vote
from popbracket.models.base import as_naive_utc, utcnow
from popbracket.models.matchup import MATCHUP_ACTIVE, TERMINAL_MATCHUP_STATUSES
from popbracket.models.round import ROUND_PAUSED

logger = logging.getLogger("popbracket.votes")


@dataclass(frozen=True)
class Tally:
    """Aggregate vote counts for a matchup. leader_id is provisional until finalized."""

    contestant1_votes: int
    contestant2_votes: int
    total_votes: int
    leader_id: Optional[int]
    is_tie: bool

    def as_dict(self) -> dict:
        return {
            "contestant1_votes": self.contestant1_votes,
            "contestant2_votes": self.contestant2_votes,
            "total_votes": self.total_votes,
        }


def make_tally(matchup: Matchup, c1_votes: int, c2_votes: int) -> Tally:
    total = c1_votes + c2_votes
    if c1_votes > c2_votes:
        leader = matchup.contestant1_id
    elif c2_votes > c1_votes:
        leader = matchup.contestant2_id
    else:
        leader = None
    return Tally(c1_votes, c2_votes, total, leader, c1_votes == c2_votes and total > 0)


def stored_tally(matchup: Matchup) -> Tally:
    return make_tally(matchup, matchup.contestant1_votes, matchup.contestant2_votes)


async def get_matchup(session: AsyncSession, matchup_id: int, lock: bool = False) -> Matchup:
    """Load a matchup, optionally row-locked and refreshed from the store."""
    query = select(Matchup).where(Matchup.id == matchup_id)
    if lock:
        await session.flush()
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    matchup = result.scalar_one_or_none()
    if not matchup:
        raise NotFound(f"Matchup {matchup_id} not found")
    return matchup


async def recompute_tallies(session: AsyncSession, matchup: Matchup) -> Tally:
    """Recount vote rows and write the aggregate columns. Never touches winner_id."""
    await session.flush()
    result = await session.execute(
        select(Vote.selected_contestant_id, func.count(Vote.id))
        .where(Vote.matchup_id == matchup.id)
        .group_by(Vote.selected_contestant_id)
    )
    counts = {cid: n for cid, n in result.all()}
    c1 = counts.get(matchup.contestant1_id, 0) if matchup.contestant1_id is not None else 0
    c2 = counts.get(matchup.contestant2_id, 0) if matchup.contestant2_id is not None else 0
    tally = make_tally(matchup, c1, c2)
    matchup.contestant1_votes = tally.contestant1_votes
    matchup.contestant2_votes = tally.contestant2_votes
    matchup.total_votes = tally.total_votes
    matchup.is_tie = tally.is_tie
    return tally


async def get_live_tallies(session: AsyncSession, matchup_id: int) -> Tally:
    matchup = await get_matchup(session, matchup_id)
    return stored_tally(matchup)


def check_voting_open(matchup: Matchup, rnd: Round, now: datetime) -> None:
    """Raise unless votes may be cast on this matchup at `now`."""
    if matchup.status != MATCHUP_ACTIVE:
        raise NotActive(f"Cannot vote on matchup with status: {matchup.status}")
    if rnd.status == ROUND_PAUSED:
        raise NotActive("Voting is locked for this round")
    if matchup.start_date is not None and now < matchup.start_date:
        raise OutsideWindow("Voting has not started yet for this matchup")
    if matchup.end_date is not None and now > matchup.end_date:
        raise OutsideWindow("Voting has ended for this matchup")


async def cast_vote(
    session: AsyncSession,
    user_id: str,
    matchup_id: int,
    contestant_id: int,
    is_admin_vote: bool = False,
    now: Optional[datetime] = None,
) -> Vote:
    """Record (or replace) the user's vote and recount the matchup in the same transaction."""
    now = as_naive_utc(now) if now else utcnow()
    matchup = await get_matchup(session, matchup_id, lock=True)
    rnd = await session.get(Round, matchup.round_id)
    check_voting_open(matchup, rnd, now)
    if not matchup.has_contestant(contestant_id):
        raise InvalidSelection("Selected contestant is not in this matchup")

    result = await session.execute(
        select(Vote).where(Vote.user_id == user_id, Vote.matchup_id == matchup_id)
    )
    vote = result.scalar_one_or_none()
    if vote:
        vote.selected_contestant_id = contestant_id
        vote.is_admin_vote = is_admin_vote
        vote.updated_at = now
    else:
        vote = Vote(
            user_id=user_id,
            matchup_id=matchup_id,
            selected_contestant_id=contestant_id,
            is_admin_vote=is_admin_vote,
            created_at=now,
            updated_at=now,
        )
        session.add(vote)
    try:
        await session.flush()
    except IntegrityError as e:
        raise IntegrityViolation("Concurrent vote for the same user and matchup") from e
    tally = await recompute_tallies(session, matchup)
    logger.debug(
        "Vote by %s on matchup %s for %s (%d-%d)",
        user_id, matchup_id, contestant_id, tally.contestant1_votes, tally.contestant2_votes,
    )
    return vote


async def remove_vote(
    session: AsyncSession, user_id: str, matchup_id: int, now: Optional[datetime] = None
) -> Tally:
    """Delete the user's vote while voting on the matchup is still open and recount."""
    now = as_naive_utc(now) if now else utcnow()
    matchup = await get_matchup(session, matchup_id, lock=True)
    if matchup.status in TERMINAL_MATCHUP_STATUSES:
        raise NotActive(f"Cannot remove a vote from a {matchup.status} matchup")
    rnd = await session.get(Round, matchup.round_id)
    check_voting_open(matchup, rnd, now)
    result = await session.execute(
        select(Vote).where(Vote.user_id == user_id, Vote.matchup_id == matchup_id)
    )
    vote = result.scalar_one_or_none()
    if not vote:
        raise NotFound("No vote to remove for this matchup")
    await session.delete(vote)
    return await recompute_tallies(session, matchup)


async def submit_admin_tie_breaker(
    session: AsyncSession,
    admin_user_id: str,
    matchup_id: int,
    contestant_id: int,
    now: Optional[datetime] = None,
) -> Vote:
    """Cast an admin ballot on a tied matchup. Counted at normal weight."""
    matchup = await get_matchup(session, matchup_id, lock=True)
    tally = await recompute_tallies(session, matchup)
    if not tally.is_tie:
        raise StateConflict("Tie-breaking votes can only be used for actual ties")
    vote = await cast_vote(session, admin_user_id, matchup_id, contestant_id, is_admin_vote=True, now=now)
    logger.info("Admin %s cast tie-breaker on matchup %s", admin_user_id, matchup_id)
    return vote


async def remove_admin_tie_breakers(session: AsyncSession, matchup_id: int) -> int:
    """Delete every admin tie-breaker on an open matchup. Returns the number removed."""
    matchup = await get_matchup(session, matchup_id, lock=True)
    if matchup.status in TERMINAL_MATCHUP_STATUSES:
        raise NotActive(f"Cannot remove votes from a {matchup.status} matchup")
    rnd = await session.get(Round, matchup.round_id)
    if rnd.status == ROUND_PAUSED:
        raise NotActive("Voting is locked for this round")
    result = await session.execute(
        delete(Vote)
        .where(Vote.matchup_id == matchup_id, Vote.is_admin_vote.is_(True))
        .execution_options(synchronize_session="fetch")
    )
    await recompute_tallies(session, matchup)
    return result.rowcount or 0


async def get_tie_break_opportunities(session: AsyncSession, tournament_id: int) -> List[dict]:
    """Active matchups whose counts are exactly level, with whether an admin already voted."""
    result = await session.execute(
        select(Matchup)
        .where(
            Matchup.tournament_id == tournament_id,
            Matchup.status == MATCHUP_ACTIVE,
            Matchup.total_votes > 0,
            Matchup.contestant1_votes == Matchup.contestant2_votes,
        )
        .order_by(Matchup.round_id, Matchup.position)
    )
    matchups = result.scalars().all()
    if not matchups:
        return []
    ids = [m.id for m in matchups]
    admin_result = await session.execute(
        select(Vote.matchup_id).where(Vote.matchup_id.in_(ids), Vote.is_admin_vote.is_(True))
    )
    with_admin = {row[0] for row in admin_result.all()}
    contestant_ids = {cid for m in matchups for cid in (m.contestant1_id, m.contestant2_id)}
    names_result = await session.execute(
        select(Contestant.id, Contestant.name).where(Contestant.id.in_(contestant_ids))
    )
    names = dict(names_result.all())
    return [
        {
            "matchup_id": m.id,
            "contestant1_id": m.contestant1_id,
            "contestant1_name": names.get(m.contestant1_id),
            "contestant2_id": m.contestant2_id,
            "contestant2_name": names.get(m.contestant2_id),
            "contestant1_votes": m.contestant1_votes,
            "contestant2_votes": m.contestant2_votes,
            "vote_difference": 0,
            "has_admin_vote": m.id in with_admin,
        }
        for m in matchups
    ]


async def get_user_votes(session: AsyncSession, tournament_id: int, user_id: str) -> List[Vote]:
    result = await session.execute(
        select(Vote)
        .join(Matchup, Matchup.id == Vote.matchup_id)
        .where(Matchup.tournament_id == tournament_id, Vote.user_id == user_id)
        .order_by(Vote.created_at, Vote.id)
    )
    return list(result.scalars().all())


async def get_voting_status(session: AsyncSession, tournament_id: int, user_id: str) -> dict:
    """How many of the currently active matchups the user has voted on (admin ballots excluded)."""
    active = select(Matchup.id).where(
        Matchup.tournament_id == tournament_id, Matchup.status == MATCHUP_ACTIVE
    )
    total = (await session.execute(select(func.count()).select_from(active.subquery()))).scalar_one()
    if total == 0:
        return {"total_matchups": 0, "voted_matchups": 0, "available_matchups": 0, "completion_percentage": 0.0}
    voted = (
        await session.execute(
            select(func.count(Vote.id)).where(
                Vote.user_id == user_id,
                Vote.is_admin_vote.is_(False),
                Vote.matchup_id.in_(active),
            )
        )
    ).scalar_one()
    return {
        "total_matchups": total,
        "voted_matchups": voted,
        "available_matchups": max(0, total - voted),
        "completion_percentage": round(min(100.0, voted / total * 100), 2),
    }
