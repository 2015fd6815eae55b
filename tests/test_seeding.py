"""Tests for quadrant seed assignment."""
import logging

import pytest

from popbracket.errors import InvalidSeed, QuadrantFull, ValidationError
from popbracket.models import Tournament
from popbracket.services.seeding import max_seeds_per_quadrant, pick_seed, validate_quadrant


def test_pick_seed_free_request_kept():
    assert pick_seed(3, {1, 2}, 4, 1) == 3


def test_pick_seed_taken_falls_back_to_lowest_free():
    assert pick_seed(1, {1, 2, 4}, 4, 2) == 3


def test_pick_seed_none_gets_lowest_free():
    assert pick_seed(None, {2}, 4, 1) == 1


def test_pick_seed_full_quadrant():
    with pytest.raises(QuadrantFull):
        pick_seed(None, {1, 2}, 2, 3)


@pytest.mark.parametrize("seed", [0, 3])
def test_pick_seed_out_of_range(seed):
    with pytest.raises(InvalidSeed):
        pick_seed(seed, set(), 2, 1)


@pytest.mark.parametrize("quadrant", [0, 5])
def test_validate_quadrant_rejects_out_of_range(quadrant):
    with pytest.raises(ValidationError):
        validate_quadrant(quadrant)


def test_max_seeds_per_quadrant():
    assert max_seeds_per_quadrant(Tournament(max_contestants=8)) == 2
    assert max_seeds_per_quadrant(Tournament(max_contestants=64)) == 16


@pytest.mark.asyncio
async def test_conflicting_seed_reassigned_within_quadrant(orchestrator, organiser, caplog):
    """A taken seed is moved to the next free seed in the same quadrant, with a warning."""
    t = await orchestrator.create_tournament(organiser, "Seed Cup", 16)
    first = await orchestrator.add_contestant(organiser, t.id, "Alpha", quadrant=2, seed=1)
    with caplog.at_level(logging.WARNING, logger="popbracket.seeding"):
        second = await orchestrator.add_contestant(organiser, t.id, "Beta", quadrant=2, seed=1)
    assert first.seed == 1
    assert second.quadrant == 2
    assert second.seed == 2
    assert "assigned seed 2 instead" in caplog.text


@pytest.mark.asyncio
async def test_full_quadrant_never_overflows(orchestrator, organiser):
    t = await orchestrator.create_tournament(organiser, "Small Cup", 8)
    await orchestrator.add_contestant(organiser, t.id, "A", quadrant=1)
    await orchestrator.add_contestant(organiser, t.id, "B", quadrant=1)
    with pytest.raises(QuadrantFull):
        await orchestrator.add_contestant(organiser, t.id, "C", quadrant=1)
    contestants = await orchestrator.list_contestants(t.id)
    assert {(c.quadrant, c.seed) for c in contestants} == {(1, 1), (1, 2)}


@pytest.mark.asyncio
async def test_moving_contestant_keeps_seeds_unique(orchestrator, organiser):
    t = await orchestrator.create_tournament(organiser, "Move Cup", 8)
    a = await orchestrator.add_contestant(organiser, t.id, "A", quadrant=1)
    await orchestrator.add_contestant(organiser, t.id, "B", quadrant=2)
    moved = await orchestrator.update_contestant(organiser, a.id, quadrant=2)
    assert (moved.quadrant, moved.seed) == (2, 2)
