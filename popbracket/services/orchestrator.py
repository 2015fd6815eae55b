"""Tournament orchestrator: transactional facade over seeding, bracket, votes and progression."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional, Sequence, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import config
from popbracket.errors import (
    AlreadyStarted,
    DuplicateName,
    IntegrityViolation,
    NotFound,
    TournamentFull,
    ValidationError,
)
from popbracket.models import Contestant, Matchup, Round, Tournament, Vote
from popbracket.models.base import async_session_factory
from popbracket.models.matchup import MATCHUP_ACTIVE, MATCHUP_COMPLETED
from popbracket.models.tournament import (
    QUADRANT_COUNT,
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_REGISTRATION,
    STATUS_TRANSITIONS,
    slugify,
)
from popbracket.services import bracket_gen, progression, seeding, votes
from popbracket.services.identity import Identity, require_admin, require_manager

logger = logging.getLogger("popbracket.orchestrator")

TournamentRef = Union[int, str]

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100

_EDITABLE_BEFORE_START = {"max_contestants"}
_EDITABLE_FIELDS = {
    "name",
    "description",
    "image_url",
    "quadrant_names",
    "allow_ties",
    "tie_break_policy",
    "voting_duration_hours",
} | _EDITABLE_BEFORE_START
_NULLABLE_FIELDS = {"description", "image_url", "voting_duration_hours"}


def _validate_name(name: str) -> str:
    name = (name or "").strip()
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters")
    return name


def _validate_quadrant_names(names: Optional[Sequence[str]]) -> List[str]:
    if names is None:
        return list(config.DEFAULT_QUADRANT_NAMES)
    cleaned = [str(n).strip() for n in names]
    if len(cleaned) != QUADRANT_COUNT or not all(cleaned):
        raise ValidationError(f"Exactly {QUADRANT_COUNT} non-empty quadrant names are required")
    return cleaned


def _validate_duration(hours: Optional[int]) -> Optional[int]:
    if hours is not None and hours <= 0:
        raise ValidationError("voting_duration_hours must be positive")
    return hours


def _contestant_ref(c: Optional[Contestant]) -> Optional[dict]:
    if c is None:
        return None
    return {
        "id": c.id,
        "name": c.name,
        "seed": c.seed,
        "quadrant": c.quadrant,
        "image_url": c.image_url,
    }


class TournamentOrchestrator:
    """One transaction per call. Pass a session factory to target a different database."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self._session_factory = session_factory or async_session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except IntegrityError as e:
            logger.exception("Integrity error during bracket operation")
            raise IntegrityViolation("Conflicting update, please retry") from e

    # --- lookups ---

    async def _resolve(self, session: AsyncSession, ref: TournamentRef, lock: bool = False) -> Tournament:
        if isinstance(ref, int) or (isinstance(ref, str) and ref.isdigit()):
            query = select(Tournament).where(Tournament.id == int(ref))
        else:
            query = select(Tournament).where(Tournament.slug == ref)
        if lock:
            query = query.with_for_update()
        tournament = (await session.execute(query)).scalar_one_or_none()
        if not tournament:
            raise NotFound(f"Tournament {ref} not found")
        return tournament

    async def _contestant(self, session: AsyncSession, contestant_id: int) -> Contestant:
        contestant = await session.get(Contestant, contestant_id)
        if not contestant:
            raise NotFound(f"Contestant {contestant_id} not found")
        return contestant

    async def _tournament_of_matchup(self, session: AsyncSession, matchup_id: int) -> Tournament:
        matchup = await votes.get_matchup(session, matchup_id)
        return await session.get(Tournament, matchup.tournament_id)

    async def _unique_slug(self, session: AsyncSession, name: str) -> str:
        base = slugify(name)
        result = await session.execute(
            select(Tournament.slug).where(Tournament.slug.like(f"{base}%"))
        )
        taken = set(result.scalars().all())
        slug, n = base, 2
        while slug in taken:
            slug = f"{base}-{n}"
            n += 1
        return slug

    # --- tournament lifecycle ---

    async def create_tournament(
        self,
        identity: Identity,
        name: str,
        max_contestants: int,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        quadrant_names: Optional[Sequence[str]] = None,
        allow_ties: bool = False,
        tie_break_policy: Optional[str] = None,
        voting_duration_hours: Optional[int] = None,
    ) -> Tournament:
        name = _validate_name(name)
        bracket_gen.validate_bracket_size(max_contestants)
        policy = tie_break_policy or config.DEFAULT_TIE_BREAK_POLICY
        progression.get_tie_break_policy(policy)
        async with self._transaction() as session:
            tournament = Tournament(
                slug=await self._unique_slug(session, name),
                name=name,
                description=description,
                image_url=image_url,
                created_by=identity.user_id,
                max_contestants=max_contestants,
                quadrant_names=_validate_quadrant_names(quadrant_names),
                status=STATUS_DRAFT,
                allow_ties=allow_ties,
                tie_break_policy=policy,
                voting_duration_hours=_validate_duration(voting_duration_hours),
            )
            session.add(tournament)
            await session.flush()
            logger.info("Tournament %s (%s) created by %s", tournament.id, tournament.slug, identity.user_id)
            return tournament

    async def update_tournament(self, identity: Identity, ref: TournamentRef, **changes) -> Tournament:
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        nulled = sorted(k for k, v in changes.items() if v is None and k not in _NULLABLE_FIELDS)
        if nulled:
            raise ValidationError(f"Field(s) cannot be null: {', '.join(nulled)}")
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            if tournament.status not in (STATUS_DRAFT, STATUS_REGISTRATION) and set(changes) & _EDITABLE_BEFORE_START:
                raise AlreadyStarted("Bracket size cannot change once the tournament has started")
            if "name" in changes:
                changes["name"] = _validate_name(changes["name"])
            if "quadrant_names" in changes:
                changes["quadrant_names"] = _validate_quadrant_names(changes["quadrant_names"])
            if "tie_break_policy" in changes:
                progression.get_tie_break_policy(changes["tie_break_policy"])
            if "voting_duration_hours" in changes:
                _validate_duration(changes["voting_duration_hours"])
            if "max_contestants" in changes:
                size = changes["max_contestants"]
                bracket_gen.validate_bracket_size(size)
                count = await self._active_count(session, tournament.id)
                if count > size:
                    raise ValidationError(f"Tournament already has {count} contestants")
            for key, value in changes.items():
                setattr(tournament, key, value)
            return tournament

    async def _transition(self, identity: Identity, ref: TournamentRef, new_status: str) -> Tournament:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            progression.transition_tournament(tournament, new_status)
            return tournament

    async def open_registration(self, identity: Identity, ref: TournamentRef) -> Tournament:
        return await self._transition(identity, ref, STATUS_REGISTRATION)

    async def cancel_tournament(self, identity: Identity, ref: TournamentRef) -> Tournament:
        return await self._transition(identity, ref, STATUS_CANCELLED)

    async def delete_tournament(self, identity: Identity, ref: TournamentRef) -> None:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            tid = tournament.id
            matchup_ids = select(Matchup.id).where(Matchup.tournament_id == tid)
            await session.execute(
                delete(Vote).where(Vote.matchup_id.in_(matchup_ids)).execution_options(synchronize_session="fetch")
            )
            for model in (Matchup, Round, Contestant):
                await session.execute(
                    delete(model).where(model.tournament_id == tid).execution_options(synchronize_session="fetch")
                )
            await session.execute(delete(Tournament).where(Tournament.id == tid))
            logger.warning("Tournament %s deleted by %s", tid, identity.user_id)

    async def get_tournament(self, ref: TournamentRef) -> Tournament:
        async with self._transaction() as session:
            return await self._resolve(session, ref)

    async def list_tournaments(self, status: Optional[str] = None) -> List[Tournament]:
        if status is not None and status not in STATUS_TRANSITIONS:
            raise ValidationError(f"Unknown status '{status}'")
        async with self._transaction() as session:
            query = select(Tournament).order_by(Tournament.created_at.desc(), Tournament.id.desc())
            if status:
                query = query.where(Tournament.status == status)
            return list((await session.execute(query)).scalars().all())

    # --- contestants ---

    async def _active_count(self, session: AsyncSession, tournament_id: int) -> int:
        await session.flush()
        result = await session.execute(
            select(func.count())
            .select_from(Contestant)
            .where(Contestant.tournament_id == tournament_id, Contestant.is_active.is_(True))
        )
        return result.scalar_one()

    @staticmethod
    def _check_editable(tournament: Tournament) -> None:
        if tournament.status not in (STATUS_DRAFT, STATUS_REGISTRATION):
            raise AlreadyStarted(f"Contestants cannot change while the tournament is {tournament.status}")

    async def _check_name_free(
        self, session: AsyncSession, tournament_id: int, name: str, exclude_id: Optional[int] = None
    ) -> None:
        query = select(Contestant.id).where(
            Contestant.tournament_id == tournament_id,
            func.lower(Contestant.name) == name.lower(),
        )
        if exclude_id is not None:
            query = query.where(Contestant.id != exclude_id)
        if (await session.execute(query)).first():
            raise DuplicateName(f"A contestant named '{name}' already exists in this tournament")

    async def add_contestant(
        self,
        identity: Identity,
        ref: TournamentRef,
        name: str,
        quadrant: int,
        seed: Optional[int] = None,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Contestant:
        name = (name or "").strip()
        if not name or len(name) > NAME_MAX_LENGTH:
            raise ValidationError(f"Contestant name must be 1-{NAME_MAX_LENGTH} characters")
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            self._check_editable(tournament)
            if await self._active_count(session, tournament.id) >= tournament.max_contestants:
                raise TournamentFull(f"Tournament is full ({tournament.max_contestants} contestants)")
            await self._check_name_free(session, tournament.id, name)
            final_seed = await seeding.assign_seed(session, tournament, quadrant, seed)
            contestant = Contestant(
                tournament_id=tournament.id,
                name=name,
                description=description,
                image_url=image_url,
                quadrant=quadrant,
                seed=final_seed,
                is_active=True,
                wins=0,
                losses=0,
                votes_received=0,
            )
            session.add(contestant)
            await session.flush()
            return contestant

    async def update_contestant(
        self,
        identity: Identity,
        contestant_id: int,
        name: Optional[str] = None,
        quadrant: Optional[int] = None,
        seed: Optional[int] = None,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Contestant:
        async with self._transaction() as session:
            contestant = await self._contestant(session, contestant_id)
            tournament = await self._resolve(session, contestant.tournament_id, lock=True)
            require_manager(identity, tournament)
            if quadrant is not None or seed is not None or is_active is not None:
                self._check_editable(tournament)
            if name is not None:
                name = name.strip()
                if not name or len(name) > NAME_MAX_LENGTH:
                    raise ValidationError(f"Contestant name must be 1-{NAME_MAX_LENGTH} characters")
                await self._check_name_free(session, tournament.id, name, exclude_id=contestant.id)
                contestant.name = name
            if quadrant is not None or seed is not None:
                target_quadrant = quadrant if quadrant is not None else contestant.quadrant
                requested = seed if seed is not None else contestant.seed
                contestant.seed = await seeding.assign_seed(
                    session, tournament, target_quadrant, requested, exclude_contestant_id=contestant.id
                )
                contestant.quadrant = target_quadrant
            if is_active is not None:
                if is_active and not contestant.is_active:
                    if await self._active_count(session, tournament.id) >= tournament.max_contestants:
                        raise TournamentFull(f"Tournament is full ({tournament.max_contestants} contestants)")
                contestant.is_active = is_active
            if description is not None:
                contestant.description = description
            if image_url is not None:
                contestant.image_url = image_url
            await session.flush()
            return contestant

    async def remove_contestant(self, identity: Identity, contestant_id: int) -> None:
        async with self._transaction() as session:
            contestant = await self._contestant(session, contestant_id)
            tournament = await self._resolve(session, contestant.tournament_id, lock=True)
            require_manager(identity, tournament)
            self._check_editable(tournament)
            await session.execute(
                delete(Contestant)
                .where(Contestant.id == contestant.id)
                .execution_options(synchronize_session="fetch")
            )
            logger.info("Contestant %s removed from tournament %s", contestant.id, tournament.id)

    async def list_contestants(self, ref: TournamentRef) -> List[Contestant]:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref)
            result = await session.execute(
                select(Contestant)
                .where(Contestant.tournament_id == tournament.id)
                .order_by(Contestant.quadrant, Contestant.seed)
            )
            return list(result.scalars().all())

    # --- bracket ---

    async def start_tournament(self, identity: Identity, ref: TournamentRef) -> dict:
        """Build the bracket, open round one and return the bracket view."""
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            await bracket_gen.build_bracket(session, tournament)
            return await self._bracket_view(session, tournament)

    async def preview_bracket(self, ref: TournamentRef) -> dict:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref)
            quadrants = await bracket_gen.ranked_quadrants(session, tournament.id)
            names = [[c.name for c in ranked] for ranked in quadrants]
            preview = bracket_gen.preview_bracket_structure(names, tournament.max_contestants)
            preview["tournament_id"] = tournament.id
            preview["preview"] = True
            return preview

    # --- voting ---

    async def cast_vote(
        self, identity: Identity, matchup_id: int, contestant_id: int, now: Optional[datetime] = None
    ) -> Vote:
        async with self._transaction() as session:
            return await votes.cast_vote(session, identity.user_id, matchup_id, contestant_id, now=now)

    async def remove_vote(
        self, identity: Identity, matchup_id: int, now: Optional[datetime] = None
    ) -> votes.Tally:
        async with self._transaction() as session:
            return await votes.remove_vote(session, identity.user_id, matchup_id, now=now)

    async def get_live_tallies(self, matchup_id: int) -> votes.Tally:
        async with self._transaction() as session:
            return await votes.get_live_tallies(session, matchup_id)

    async def get_user_votes(self, identity: Identity, ref: TournamentRef) -> List[Vote]:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref)
            return await votes.get_user_votes(session, tournament.id, identity.user_id)

    async def get_voting_status(self, identity: Identity, ref: TournamentRef) -> dict:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref)
            return await votes.get_voting_status(session, tournament.id, identity.user_id)

    async def submit_admin_tie_breaker(
        self, identity: Identity, matchup_id: int, contestant_id: int, now: Optional[datetime] = None
    ) -> Vote:
        require_admin(identity)
        async with self._transaction() as session:
            return await votes.submit_admin_tie_breaker(session, identity.user_id, matchup_id, contestant_id, now=now)

    async def remove_admin_tie_breakers(self, identity: Identity, matchup_id: int) -> int:
        require_admin(identity)
        async with self._transaction() as session:
            return await votes.remove_admin_tie_breakers(session, matchup_id)

    async def get_tie_break_opportunities(self, identity: Identity, ref: TournamentRef) -> List[dict]:
        require_admin(identity)
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref)
            return await votes.get_tie_break_opportunities(session, tournament.id)

    # --- progression ---

    async def finalize_matchup(
        self, identity: Identity, matchup_id: int, now: Optional[datetime] = None
    ) -> progression.FinalizeResult:
        async with self._transaction() as session:
            require_manager(identity, await self._tournament_of_matchup(session, matchup_id))
            return await progression.finalize_matchup(session, matchup_id, now)

    async def advance_to_next_round(self, identity: Identity, ref: TournamentRef) -> bool:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            return await progression.advance_to_next_round(session, tournament)

    async def force_advance_round(
        self, identity: Identity, ref: TournamentRef, tie_break: Optional[str] = None
    ) -> progression.ForceAdvanceResult:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            return await progression.force_advance_round(session, tournament, tie_break)

    async def override_matchup_winner(
        self, identity: Identity, matchup_id: int, winner_id: int
    ) -> progression.FinalizeResult:
        async with self._transaction() as session:
            require_manager(identity, await self._tournament_of_matchup(session, matchup_id))
            return await progression.override_matchup_winner(session, matchup_id, winner_id)

    async def lock_round(self, identity: Identity, round_id: int) -> Round:
        async with self._transaction() as session:
            rnd = await progression.get_round(session, round_id)
            require_manager(identity, await session.get(Tournament, rnd.tournament_id))
            return await progression.lock_round(session, round_id)

    async def unlock_round(self, identity: Identity, round_id: int) -> Round:
        async with self._transaction() as session:
            rnd = await progression.get_round(session, round_id)
            require_manager(identity, await session.get(Tournament, rnd.tournament_id))
            return await progression.unlock_round(session, round_id)

    async def reset_bracket(self, identity: Identity, ref: TournamentRef) -> Tournament:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            await progression.reset_bracket(session, tournament)
            return tournament

    async def close_expired_matchups(
        self, identity: Identity, ref: TournamentRef, now: Optional[datetime] = None
    ) -> List[progression.FinalizeResult]:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref, lock=True)
            require_manager(identity, tournament)
            return await progression.close_expired_matchups(session, tournament, now)

    # --- read models ---

    async def _load_bracket(self, session: AsyncSession, tournament_id: int):
        await session.flush()
        rounds = list(
            (
                await session.execute(
                    select(Round).where(Round.tournament_id == tournament_id).order_by(Round.round_number)
                )
            ).scalars().all()
        )
        matchups = list(
            (
                await session.execute(
                    select(Matchup).where(Matchup.tournament_id == tournament_id).order_by(Matchup.position)
                )
            ).scalars().all()
        )
        contestants = {
            c.id: c
            for c in (
                await session.execute(select(Contestant).where(Contestant.tournament_id == tournament_id))
            ).scalars().all()
        }
        by_round = {r.id: [] for r in rounds}
        for m in matchups:
            by_round.setdefault(m.round_id, []).append(m)
        return rounds, by_round, contestants

    async def _bracket_view(self, session: AsyncSession, tournament: Tournament) -> dict:
        rounds, by_round, contestants = await self._load_bracket(session, tournament.id)
        return {
            "tournament_id": tournament.id,
            "slug": tournament.slug,
            "name": tournament.name,
            "status": tournament.status,
            "quadrant_names": list(tournament.quadrant_names or []),
            "rounds": [
                {
                    "round_id": r.id,
                    "round_number": r.round_number,
                    "round_name": r.name,
                    "round_status": r.status,
                    "total_matchups": r.total_matchups,
                    "completed_matchups": r.completed_matchups,
                    "matchups": [
                        {
                            "id": m.id,
                            "position": m.position,
                            "contestant1": _contestant_ref(contestants.get(m.contestant1_id)),
                            "contestant2": _contestant_ref(contestants.get(m.contestant2_id)),
                            "winner": _contestant_ref(contestants.get(m.winner_id)),
                            "vote_counts": votes.stored_tally(m).as_dict(),
                            "status": m.status,
                            "is_tie": m.is_tie,
                            "start_date": m.start_date,
                            "end_date": m.end_date,
                            "notes": m.notes,
                        }
                        for m in by_round[r.id]
                    ],
                }
                for r in rounds
            ],
        }

    async def get_bracket_view(self, ref: TournamentRef) -> dict:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref)
            return await self._bracket_view(session, tournament)

    async def get_stats(self, ref: TournamentRef) -> dict:
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref)
            matchups = list(
                (await session.execute(select(Matchup).where(Matchup.tournament_id == tournament.id))).scalars().all()
            )
            participants = (
                await session.execute(
                    select(func.count(func.distinct(Vote.user_id)))
                    .join(Matchup, Matchup.id == Vote.matchup_id)
                    .where(Matchup.tournament_id == tournament.id)
                )
            ).scalar_one()
            top = (
                await session.execute(
                    select(Contestant.id)
                    .where(Contestant.tournament_id == tournament.id, Contestant.votes_received > 0)
                    .order_by(Contestant.votes_received.desc(), Contestant.id)
                    .limit(1)
                )
            ).scalar_one_or_none()
            total = len(matchups)
            completed = sum(1 for m in matchups if m.status == MATCHUP_COMPLETED)
            most_voted = max(
                (m for m in matchups if m.total_votes > 0),
                key=lambda m: (m.total_votes, -m.id),
                default=None,
            )
            return {
                "tournament_id": tournament.id,
                "total_votes": sum(m.total_votes for m in matchups),
                "total_matchups": total,
                "completed_matchups": completed,
                "active_matchups": sum(1 for m in matchups if m.status == MATCHUP_ACTIVE),
                "total_participants": participants,
                "most_voted_matchup_id": most_voted.id if most_voted else None,
                "top_contestant_id": top,
                "completion_percentage": round(completed / total * 100, 2) if total else 0.0,
            }

    async def get_participant_performance(self, ref: TournamentRef) -> dict:
        """Per-contestant round history plus the largest winning margin of each round."""
        async with self._transaction() as session:
            tournament = await self._resolve(session, ref)
            rounds, by_round, contestants = await self._load_bracket(session, tournament.id)
            history = {cid: [] for cid in contestants}
            blowouts = []
            for r in rounds:
                biggest = None
                for m in by_round[r.id]:
                    for me_id, opp_id, my_votes, opp_votes in (
                        (m.contestant1_id, m.contestant2_id, m.contestant1_votes, m.contestant2_votes),
                        (m.contestant2_id, m.contestant1_id, m.contestant2_votes, m.contestant1_votes),
                    ):
                        if me_id is None:
                            continue
                        if m.status == MATCHUP_COMPLETED:
                            result = "WON" if m.winner_id == me_id else "LOST"
                        elif m.is_tie:
                            result = "TIED"
                        else:
                            result = "PENDING"
                        opponent = contestants.get(opp_id)
                        history[me_id].append({
                            "round_number": r.round_number,
                            "round_name": r.name,
                            "round_status": r.status,
                            "matchup_id": m.id,
                            "opponent_id": opp_id,
                            "opponent_name": opponent.name if opponent else None,
                            "my_votes": my_votes,
                            "opponent_votes": opp_votes,
                            "total_votes": m.total_votes,
                            "result": result,
                            "is_tie": m.is_tie,
                            "completed_at": m.completed_at,
                        })
                    if m.status != MATCHUP_COMPLETED or m.slots_filled < 2:
                        continue
                    loser_id = m.opponent_of(m.winner_id)
                    if m.winner_id == m.contestant1_id:
                        winner_votes, loser_votes = m.contestant1_votes, m.contestant2_votes
                    else:
                        winner_votes, loser_votes = m.contestant2_votes, m.contestant1_votes
                    margin = winner_votes - loser_votes
                    if biggest is None or margin > biggest["vote_margin"]:
                        biggest = {
                            "round_number": r.round_number,
                            "round_name": r.name,
                            "matchup_id": m.id,
                            "vote_margin": margin,
                            "total_votes": m.total_votes,
                            "winner_name": contestants[m.winner_id].name,
                            "loser_name": contestants[loser_id].name,
                            "winner_votes": winner_votes,
                            "loser_votes": loser_votes,
                        }
                if biggest:
                    blowouts.append(biggest)
            participants = [
                {
                    "id": c.id,
                    "name": c.name,
                    "seed": c.seed,
                    "quadrant": c.quadrant,
                    "total_wins": c.wins,
                    "total_losses": c.losses,
                    "total_votes_received": c.votes_received,
                    "eliminated_round": c.eliminated_round,
                    "is_active": c.is_active,
                    "rounds": history[c.id],
                }
                for c in sorted(contestants.values(), key=lambda c: (c.quadrant, c.seed))
            ]
            return {"participants": participants, "biggest_blowouts": blowouts}
