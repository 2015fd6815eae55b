"""API routes for tournaments, contestants and bracket read models."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from popbracket.services.identity import Identity
from popbracket.services.orchestrator import TournamentOrchestrator
from web.auth import require_identity
from web.api.utils import get_orchestrator

router = APIRouter(prefix="/api", tags=["tournaments"])


# --- Pydantic schemas ---


class TournamentCreate(BaseModel):
    name: str
    max_contestants: int
    description: Optional[str] = None
    image_url: Optional[str] = None
    quadrant_names: Optional[list[str]] = None
    allow_ties: bool = False
    tie_break_policy: Optional[str] = None
    voting_duration_hours: Optional[int] = None


class TournamentUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    quadrant_names: Optional[list[str]] = None
    allow_ties: Optional[bool] = None
    tie_break_policy: Optional[str] = None
    voting_duration_hours: Optional[int] = None
    max_contestants: Optional[int] = None


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    description: Optional[str]
    image_url: Optional[str]
    created_by: str
    max_contestants: int
    bracket_type: str
    quadrant_names: list[str]
    status: str
    allow_ties: bool
    tie_break_policy: str
    voting_duration_hours: Optional[int]
    created_at: datetime


class ContestantCreate(BaseModel):
    name: str
    quadrant: int = Field(ge=1, le=4)
    seed: Optional[int] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


class ContestantUpdate(BaseModel):
    name: Optional[str] = None
    quadrant: Optional[int] = Field(default=None, ge=1, le=4)
    seed: Optional[int] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class ContestantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    name: str
    description: Optional[str]
    image_url: Optional[str]
    quadrant: int
    seed: int
    is_active: bool
    wins: int
    losses: int
    votes_received: int
    eliminated_round: Optional[int]


# --- Tournaments ---


@router.get("/tournaments", response_model=list[TournamentResponse])
async def list_tournaments(
    status: Optional[str] = None,
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.list_tournaments(status)


@router.post("/tournaments", response_model=TournamentResponse)
async def create_tournament(
    body: TournamentCreate,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.create_tournament(identity, **body.model_dump())


@router.get("/tournaments/{ref}", response_model=TournamentResponse)
async def get_tournament(ref: str, orchestrator: TournamentOrchestrator = Depends(get_orchestrator)):
    """Look up by numeric id or slug."""
    return await orchestrator.get_tournament(ref)


@router.patch("/tournaments/{ref}", response_model=TournamentResponse)
async def update_tournament(
    ref: str,
    body: TournamentUpdate,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.update_tournament(identity, ref, **body.model_dump(exclude_unset=True))


@router.delete("/tournaments/{ref}")
async def delete_tournament(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.delete_tournament(identity, ref)
    return {"ok": True}


@router.post("/tournaments/{ref}/registration", response_model=TournamentResponse)
async def open_registration(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.open_registration(identity, ref)


@router.post("/tournaments/{ref}/cancel", response_model=TournamentResponse)
async def cancel_tournament(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.cancel_tournament(identity, ref)


# --- Contestants ---


@router.get("/tournaments/{ref}/contestants", response_model=list[ContestantResponse])
async def list_contestants(ref: str, orchestrator: TournamentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.list_contestants(ref)


@router.post("/tournaments/{ref}/contestants", response_model=ContestantResponse)
async def add_contestant(
    ref: str,
    body: ContestantCreate,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.add_contestant(identity, ref, **body.model_dump())


@router.patch("/contestants/{contestant_id}", response_model=ContestantResponse)
async def update_contestant(
    contestant_id: int,
    body: ContestantUpdate,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.update_contestant(identity, contestant_id, **body.model_dump(exclude_unset=True))


@router.delete("/contestants/{contestant_id}")
async def remove_contestant(
    contestant_id: int,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    await orchestrator.remove_contestant(identity, contestant_id)
    return {"ok": True}


# --- Bracket ---


@router.post("/tournaments/{ref}/start")
async def start_tournament(
    ref: str,
    identity: Identity = Depends(require_identity),
    orchestrator: TournamentOrchestrator = Depends(get_orchestrator),
):
    """Generate the bracket and open round one. Returns the bracket view."""
    return await orchestrator.start_tournament(identity, ref)


@router.get("/tournaments/{ref}/bracket")
async def get_bracket(ref: str, orchestrator: TournamentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.get_bracket_view(ref)


@router.get("/tournaments/{ref}/bracket/preview")
async def get_bracket_preview(ref: str, orchestrator: TournamentOrchestrator = Depends(get_orchestrator)):
    """Preview bracket structure from current contestants without persisting it."""
    return await orchestrator.preview_bracket(ref)


@router.get("/tournaments/{ref}/stats")
async def get_stats(ref: str, orchestrator: TournamentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.get_stats(ref)


@router.get("/tournaments/{ref}/performance")
async def get_participant_performance(ref: str, orchestrator: TournamentOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.get_participant_performance(ref)
