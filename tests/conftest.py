"""Pytest configuration and fixtures for engine and API tests."""
import os

# Set test env BEFORE any imports that use config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from popbracket.models import init_db
from popbracket.services.identity import Identity
from popbracket.services.orchestrator import TournamentOrchestrator
from web.api.main import app
from web.api.utils import get_orchestrator
from web.auth import create_access_token


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory():
    """Fresh in-memory database per test (ASGI lifespan doesn't run with httpx)."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(bind=engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def orchestrator(session_factory):
    return TournamentOrchestrator(session_factory)


@pytest.fixture
def organiser():
    return Identity(user_id="organiser-1")


@pytest.fixture
def admin():
    return Identity(user_id="admin-1", is_admin=True)


@pytest.fixture
def build_tournament(orchestrator, organiser):
    """Factory: create a tournament, register `count` contestants round-robin over the
    quadrants (Contestant 1 -> Q1, 2 -> Q2, ...) and optionally start it."""

    async def _build(max_contestants=8, count=None, start=True, **kwargs):
        t = await orchestrator.create_tournament(organiser, "Test Bracket", max_contestants, **kwargs)
        count = max_contestants if count is None else count
        for i in range(count):
            await orchestrator.add_contestant(organiser, t.id, f"Contestant {i + 1}", quadrant=i % 4 + 1)
        if start:
            await orchestrator.start_tournament(organiser, t.id)
        return await orchestrator.get_tournament(t.id)

    return _build


@pytest.fixture
async def client(orchestrator):
    """Async HTTP client for testing the API against the per-test database."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Authorization headers for a regular (non-admin) organiser."""
    return {"Authorization": f"Bearer {create_access_token('organiser-1')}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token('admin-1', is_admin=True)}"}


@pytest.fixture
def round_matchups():
    """Matchups of one round from a bracket view."""

    def _round(view, round_number):
        return next(r for r in view["rounds"] if r["round_number"] == round_number)["matchups"]

    return _round


@pytest.fixture
def cast_votes(orchestrator):
    """Cast `count` votes from distinct users for one contestant."""

    async def _cast(matchup_id, contestant_id, count, prefix="voter"):
        for i in range(count):
            await orchestrator.cast_vote(Identity(f"{prefix}-{contestant_id}-{i}"), matchup_id, contestant_id)

    return _cast
