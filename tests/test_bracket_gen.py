"""Tests for seeding order, bracket preview and bracket construction."""
import pytest

from popbracket.errors import AlreadyStarted, InsufficientContestants, InvalidBracketSize, StateConflict
from popbracket.services.bracket_gen import (
    first_round_slots,
    preview_bracket_structure,
    seeding_order,
    seeding_pairs,
    validate_bracket_size,
)


def test_seeding_order_eight():
    assert seeding_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]


@pytest.mark.parametrize("size", [2, 4, 8, 16, 32, 64, 128])
def test_seeding_pairs_properties(size):
    order = seeding_order(size)
    assert sorted(order) == list(range(1, size + 1))
    pairs = seeding_pairs(size)
    assert len(pairs) == size // 2
    assert all(a + b == size + 1 for a, b in pairs)
    # top two seeds land in opposite halves
    half = size // 2
    assert (order.index(1) < half) != (order.index(2) < half)


def test_seeding_order_rejects_non_power_of_two():
    with pytest.raises(InvalidBracketSize):
        seeding_order(6)


@pytest.mark.parametrize("size", [2, 6, 1024])
def test_validate_bracket_size_rejects(size):
    with pytest.raises(InvalidBracketSize):
        validate_bracket_size(size)


def test_quadrant_size_one_pairs_adjacent_quadrants():
    slots = first_round_slots([["a"], ["b"], ["c"], ["d"]], 1)
    assert slots == ["a", "b", "c", "d"]


def test_missing_seeds_become_empty_slots():
    slots = first_round_slots([["a1", "a2"], ["b1"], [], ["d1", "d2"]], 2)
    assert slots == ["a1", "a2", "b1", None, None, None, "d1", "d2"]


def test_preview_structure():
    preview = preview_bracket_structure([["A1", "A2"], ["B1"], ["C1", "C2"], ["D1", "D2"]], 8)
    assert preview["bracket_type"] == "single-elimination"
    assert [r["round_name"] for r in preview["rounds"]] == ["Quarterfinal", "Semifinal", "Final"]
    first = preview["rounds"][0]["matchups"]
    assert len(first) == 4
    assert first[0] == {"position": 1, "contestant1": "A1", "contestant2": "A2"}
    assert first[1] == {"position": 2, "contestant1": "B1", "contestant2": "BYE"}
    assert preview["rounds"][2]["matchups"] == [{"position": 1, "contestant1": "TBD", "contestant2": "TBD"}]


@pytest.mark.asyncio
async def test_full_bracket_structure(build_tournament, orchestrator, round_matchups):
    t = await build_tournament(8)
    assert t.status == "active"
    view = await orchestrator.get_bracket_view(t.id)
    assert [r["total_matchups"] for r in view["rounds"]] == [4, 2, 1]
    assert [r["round_status"] for r in view["rounds"]] == ["active", "upcoming", "upcoming"]
    first = round_matchups(view, 1)
    assert all(m["status"] == "active" for m in first)
    # quadrant 1 seeds 1 and 2 meet first
    assert (first[0]["contestant1"]["name"], first[0]["contestant2"]["name"]) == ("Contestant 1", "Contestant 5")
    assert all(m["contestant1"] is None for m in round_matchups(view, 2))


@pytest.mark.asyncio
async def test_byes_resolved_at_start(build_tournament, orchestrator, round_matchups):
    """Missing seeds give top seeds a bye: completed, winner routed, no win counted."""
    t = await build_tournament(8, count=6)
    view = await orchestrator.get_bracket_view(t.id)
    first = round_matchups(view, 1)
    assert [m["status"] for m in first] == ["active", "active", "completed", "completed"]
    assert first[2]["notes"] == "Bye"
    assert first[2]["winner"]["name"] == "Contestant 3"
    assert view["rounds"][0]["completed_matchups"] == 2
    second = round_matchups(view, 2)
    assert second[1]["contestant1"]["name"] == "Contestant 3"
    assert second[1]["contestant2"]["name"] == "Contestant 4"
    assert second[1]["status"] == "upcoming"
    contestants = {c.name: c for c in await orchestrator.list_contestants(t.id)}
    assert contestants["Contestant 3"].wins == 0


@pytest.mark.asyncio
async def test_empty_matchups_cancelled(orchestrator, organiser, round_matchups):
    t = await orchestrator.create_tournament(organiser, "Lonely Cup", 8)
    await orchestrator.add_contestant(organiser, t.id, "A", quadrant=1)
    await orchestrator.add_contestant(organiser, t.id, "B", quadrant=1)
    view = await orchestrator.start_tournament(organiser, t.id)
    first = round_matchups(view, 1)
    assert [m["status"] for m in first] == ["active", "cancelled", "cancelled", "cancelled"]
    assert view["rounds"][0]["completed_matchups"] == 3


@pytest.mark.asyncio
async def test_start_requires_two_contestants(build_tournament):
    with pytest.raises(InsufficientContestants):
        await build_tournament(4, count=1)


@pytest.mark.asyncio
async def test_start_twice(build_tournament, orchestrator, organiser):
    t = await build_tournament(4)
    with pytest.raises(AlreadyStarted):
        await orchestrator.start_tournament(organiser, t.id)


@pytest.mark.asyncio
async def test_cancelled_tournament_cannot_start(build_tournament, orchestrator, organiser):
    t = await build_tournament(4, start=False)
    await orchestrator.cancel_tournament(organiser, t.id)
    with pytest.raises(StateConflict):
        await orchestrator.start_tournament(organiser, t.id)


@pytest.mark.asyncio
async def test_preview_from_registered_contestants(build_tournament, orchestrator):
    t = await build_tournament(4, count=3, start=False)
    preview = await orchestrator.preview_bracket(t.slug)
    assert preview["preview"] is True
    first = preview["rounds"][0]["matchups"]
    assert first[0] == {"position": 1, "contestant1": "Contestant 1", "contestant2": "Contestant 2"}
    assert first[1] == {"position": 2, "contestant1": "Contestant 3", "contestant2": "BYE"}
