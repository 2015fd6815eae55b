"""Voting API: cast/replace/remove a vote, live tallies, the caller's voting progress."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from popbracket.services.identity import Identity
from popbracket.services.orchestrator import TournamentOrchestrator
from web.auth import require_identity
from web.api.utils import get_orchestrator

router = APIRouter(prefix="/api", tags=["votes"])


class VoteRequest(BaseModel):
    contestant_id: int


class VoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    matchup_id: int
    selected_contestant_id: int
    is_admin_vote: bool
    created_at: datetime
    updated_at: datetime


def _tally_json(tally) -> dict:
    return {**tally.as_dict(), "leader_id": tally.leader_id, "is_tie": tally.is_tie}


@router.post("/matchups/{matchup_id}/vote", response_model=VoteResponse)
async def cast_vote(
    matchup_id: int,
    body: VoteRequest,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    """Cast a vote, replacing any earlier vote by the same user on this matchup."""
    return await orchestrator.cast_vote(identity, matchup_id, body.contestant_id)


@router.delete("/matchups/{matchup_id}/vote")
async def remove_vote(
    matchup_id: int,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    tally = await orchestrator.remove_vote(identity, matchup_id)
    return _tally_json(tally)


@router.get("/matchups/{matchup_id}/tally")
async def get_tally(matchup_id: int, orchestrator: TournamentOrchestrator = Depends(get_orchestrator)):
    tally = await orchestrator.get_live_tallies(matchup_id)
    return _tally_json(tally)


@router.get("/tournaments/{ref}/votes/me", response_model=list[VoteResponse])
async def get_my_votes(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_user_votes(identity, ref)


@router.get("/tournaments/{ref}/voting-status")
async def get_voting_status(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_voting_status(identity, ref)
