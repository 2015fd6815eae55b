"""Admin API: finalize, override, tie-breakers, round locks, force advance, reset."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from popbracket.services.identity import Identity
from popbracket.services.orchestrator import TournamentOrchestrator
from web.auth import require_identity
from web.api.utils import get_orchestrator

router = APIRouter(prefix="/api/admin", tags=["admin"])


class OverrideRequest(BaseModel):
    winner_id: int


class TieBreakerRequest(BaseModel):
    contestant_id: int


class ForceAdvanceRequest(BaseModel):
    tie_break: Optional[str] = None


def _round_json(rnd) -> dict:
    return {
        "id": rnd.id,
        "round_number": rnd.round_number,
        "name": rnd.name,
        "status": rnd.status,
        "locked_at": rnd.locked_at,
    }


@router.post("/matchups/{matchup_id}/finalize")
async def finalize_matchup(
    matchup_id: int,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.finalize_matchup(identity, matchup_id)
    return result.as_dict()


@router.post("/matchups/{matchup_id}/override")
async def override_winner(
    matchup_id: int,
    body: OverrideRequest,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.override_matchup_winner(identity, matchup_id, body.winner_id)
    return result.as_dict()


@router.post("/matchups/{matchup_id}/tie-breaker")
async def submit_tie_breaker(
    matchup_id: int,
    body: TieBreakerRequest,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    vote = await orchestrator.submit_admin_tie_breaker(identity, matchup_id, body.contestant_id)
    return {"id": vote.id, "matchup_id": vote.matchup_id, "selected_contestant_id": vote.selected_contestant_id}


@router.delete("/matchups/{matchup_id}/tie-breakers")
async def remove_tie_breakers(
    matchup_id: int,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    removed = await orchestrator.remove_admin_tie_breakers(identity, matchup_id)
    return {"removed": removed}


@router.get("/tournaments/{ref}/tie-breaks")
async def get_tie_break_opportunities(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_tie_break_opportunities(identity, ref)


@router.post("/tournaments/{ref}/advance")
async def advance_round(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    advanced = await orchestrator.advance_to_next_round(identity, ref)
    return {"advanced": advanced}


@router.post("/tournaments/{ref}/force-advance")
async def force_advance(
    ref: str,
    body: Optional[ForceAdvanceRequest] = None,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.force_advance_round(identity, ref, body.tie_break if body else None)
    return result.as_dict()


@router.post("/tournaments/{ref}/reset")
async def reset_bracket(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    tournament = await orchestrator.reset_bracket(identity, ref)
    return {"id": tournament.id, "status": tournament.status}


@router.post("/tournaments/{ref}/close-expired")
async def close_expired(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    results = await orchestrator.close_expired_matchups(identity, ref)
    return [r.as_dict() for r in results]


@router.post("/rounds/{round_id}/lock")
async def lock_round(
    round_id: int,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return _round_json(await orchestrator.lock_round(identity, round_id))


@router.post("/rounds/{round_id}/unlock")
async def unlock_round(
    round_id: int,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return _round_json(await orchestrator.unlock_round(identity, round_id))
