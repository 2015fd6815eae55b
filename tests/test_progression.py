"""Tests for matchup finalization, routing, forced advance, locks and reset."""
from datetime import timedelta

import pytest

from popbracket.errors import InvalidSelection, StateConflict
from popbracket.services.progression import FORCED_TIE_NOTE


async def _view(orchestrator, tid):
    return await orchestrator.get_bracket_view(tid)


@pytest.mark.asyncio
async def test_finalize_without_votes_stays_open(build_tournament, orchestrator, organiser, round_matchups):
    t = await build_tournament(4)
    m = round_matchups(await _view(orchestrator, t.id), 1)[0]
    result = await orchestrator.finalize_matchup(organiser, m["id"])
    assert result.resolved is False
    assert result.reason == "no_votes"
    assert round_matchups(await _view(orchestrator, t.id), 1)[0]["status"] == "active"


@pytest.mark.asyncio
async def test_tie_left_open_when_ties_disallowed(
    build_tournament, orchestrator, organiser, round_matchups, cast_votes
):
    t = await build_tournament(4)
    m = round_matchups(await _view(orchestrator, t.id), 1)[0]
    await cast_votes(m["id"], m["contestant1"]["id"], 2)
    await cast_votes(m["id"], m["contestant2"]["id"], 2)
    result = await orchestrator.finalize_matchup(organiser, m["id"])
    assert result.resolved is False
    assert result.is_tie is True
    after = round_matchups(await _view(orchestrator, t.id), 1)[0]
    assert after["status"] == "active"
    assert after["is_tie"] is True
    assert after["winner"] is None


@pytest.mark.asyncio
async def test_tie_broken_by_policy_when_allowed(
    build_tournament, orchestrator, organiser, round_matchups, cast_votes
):
    t = await build_tournament(4, allow_ties=True)
    m = round_matchups(await _view(orchestrator, t.id), 1)[0]
    await cast_votes(m["id"], m["contestant1"]["id"], 1)
    await cast_votes(m["id"], m["contestant2"]["id"], 1)
    result = await orchestrator.finalize_matchup(organiser, m["id"])
    assert result.resolved is True
    assert result.winner_id == m["contestant1"]["id"]
    after = round_matchups(await _view(orchestrator, t.id), 1)[0]
    assert after["notes"] == "Tie broken by contestant1 policy"


@pytest.mark.asyncio
async def test_finalize_majority_updates_counters_and_routes(
    build_tournament, orchestrator, organiser, round_matchups, cast_votes
):
    t = await build_tournament(8)
    first = round_matchups(await _view(orchestrator, t.id), 1)
    m1, m2 = first[0], first[1]
    await cast_votes(m1["id"], m1["contestant2"]["id"], 3)
    await cast_votes(m1["id"], m1["contestant1"]["id"], 1)
    result = await orchestrator.finalize_matchup(organiser, m1["id"])
    assert result.resolved is True
    assert result.winner_id == m1["contestant2"]["id"]
    assert result.round_advanced is False

    contestants = {c.id: c for c in await orchestrator.list_contestants(t.id)}
    winner = contestants[m1["contestant2"]["id"]]
    loser = contestants[m1["contestant1"]["id"]]
    assert (winner.wins, winner.losses, winner.votes_received) == (1, 0, 3)
    assert (loser.wins, loser.losses, loser.votes_received, loser.eliminated_round) == (0, 1, 1, 1)

    await cast_votes(m2["id"], m2["contestant1"]["id"], 1)
    await orchestrator.finalize_matchup(organiser, m2["id"])
    view = await _view(orchestrator, t.id)
    semi = round_matchups(view, 2)[0]
    assert semi["contestant1"]["id"] == m1["contestant2"]["id"]
    assert semi["contestant2"]["id"] == m2["contestant1"]["id"]
    assert view["rounds"][0]["completed_matchups"] == 2


@pytest.mark.asyncio
async def test_finalize_is_idempotent(build_tournament, orchestrator, organiser, round_matchups, cast_votes):
    t = await build_tournament(4)
    m = round_matchups(await _view(orchestrator, t.id), 1)[0]
    await cast_votes(m["id"], m["contestant1"]["id"], 2)
    first = await orchestrator.finalize_matchup(organiser, m["id"])
    second = await orchestrator.finalize_matchup(organiser, m["id"])
    assert second.resolved is True
    assert second.winner_id == first.winner_id
    contestants = {c.id: c for c in await orchestrator.list_contestants(t.id)}
    assert contestants[first.winner_id].wins == 1


@pytest.mark.asyncio
async def test_full_tournament_walkthrough(build_tournament, orchestrator, organiser, round_matchups, cast_votes):
    """Eight contestants, contestant1 wins every matchup, three rounds to a champion."""
    t = await build_tournament(8)
    for round_number in (1, 2, 3):
        view = await _view(orchestrator, t.id)
        assert view["rounds"][round_number - 1]["round_status"] == "active"
        for m in round_matchups(view, round_number):
            await cast_votes(m["id"], m["contestant1"]["id"], 2, prefix=f"r{round_number}")
            await cast_votes(m["id"], m["contestant2"]["id"], 1, prefix=f"r{round_number}")
            await orchestrator.finalize_matchup(organiser, m["id"])

    view = await _view(orchestrator, t.id)
    assert view["status"] == "completed"
    assert all(r["round_status"] == "completed" for r in view["rounds"])
    assert all(r["completed_matchups"] == r["total_matchups"] for r in view["rounds"])
    champion = round_matchups(view, 3)[0]["winner"]
    assert champion["name"] == "Contestant 1"

    contestants = await orchestrator.list_contestants(t.id)
    assert sum(c.losses for c in contestants) == 7
    assert sum(c.wins for c in contestants) == 7
    by_name = {c.name: c for c in contestants}
    assert by_name["Contestant 1"].wins == 3
    assert by_name["Contestant 1"].eliminated_round is None
    assert by_name["Contestant 2"].eliminated_round == 2
    assert by_name["Contestant 3"].eliminated_round == 3


@pytest.mark.asyncio
async def test_byes_cascade_to_completion(orchestrator, organiser, round_matchups, cast_votes):
    """Two contestants in an 8 bracket: one real matchup, then byes all the way."""
    t = await orchestrator.create_tournament(organiser, "Short Cup", 8)
    await orchestrator.add_contestant(organiser, t.id, "A", quadrant=1)
    await orchestrator.add_contestant(organiser, t.id, "B", quadrant=1)
    view = await orchestrator.start_tournament(organiser, t.id)
    m = round_matchups(view, 1)[0]
    await cast_votes(m["id"], m["contestant2"]["id"], 1)
    result = await orchestrator.finalize_matchup(organiser, m["id"])
    assert result.round_advanced is True
    view = await _view(orchestrator, t.id)
    assert view["status"] == "completed"
    assert round_matchups(view, 3)[0]["winner"]["name"] == "B"
    assert round_matchups(view, 3)[0]["notes"] == "Bye"


@pytest.mark.asyncio
async def test_force_advance_breaks_ties(build_tournament, orchestrator, organiser, round_matchups, cast_votes):
    t = await build_tournament(8)
    first = round_matchups(await _view(orchestrator, t.id), 1)
    await cast_votes(first[0]["id"], first[0]["contestant1"]["id"], 1)
    await cast_votes(first[0]["id"], first[0]["contestant2"]["id"], 1)
    await cast_votes(first[1]["id"], first[1]["contestant2"]["id"], 1)

    result = await orchestrator.force_advance_round(organiser, t.id)
    assert result.round_number == 1
    assert result.winners_declared == 4
    assert result.ties_resolved == 3  # one 1-1 tie plus two 0-0 matchups
    assert result.round_advanced is True

    view = await _view(orchestrator, t.id)
    after = round_matchups(view, 1)
    assert after[0]["notes"] == FORCED_TIE_NOTE
    assert after[0]["winner"]["id"] == first[0]["contestant1"]["id"]
    assert after[1]["winner"]["id"] == first[1]["contestant2"]["id"]
    assert view["rounds"][1]["round_status"] == "active"


@pytest.mark.asyncio
async def test_force_advance_with_higher_seed_policy(build_tournament, orchestrator, organiser, round_matchups):
    t = await build_tournament(4)
    first = round_matchups(await _view(orchestrator, t.id), 1)
    await orchestrator.force_advance_round(organiser, t.id, tie_break="higher_seed")
    after = round_matchups(await _view(orchestrator, t.id), 1)
    # equal seeds across quadrants fall back to contestant1
    assert after[0]["winner"]["id"] == first[0]["contestant1"]["id"]


@pytest.mark.asyncio
async def test_force_advance_without_round(build_tournament, orchestrator, organiser):
    t = await build_tournament(4, start=False)
    with pytest.raises(StateConflict):
        await orchestrator.force_advance_round(organiser, t.id)


@pytest.mark.asyncio
async def test_force_advance_unpauses_round(build_tournament, orchestrator, organiser):
    t = await build_tournament(4)
    view = await _view(orchestrator, t.id)
    await orchestrator.lock_round(organiser, view["rounds"][0]["round_id"])
    result = await orchestrator.force_advance_round(organiser, t.id)
    assert result.winners_declared == 2
    view = await _view(orchestrator, t.id)
    assert view["rounds"][0]["round_status"] == "completed"
    assert view["rounds"][1]["round_status"] == "active"


@pytest.mark.asyncio
async def test_override_winner(build_tournament, orchestrator, organiser, round_matchups, cast_votes):
    t = await build_tournament(4)
    first = round_matchups(await _view(orchestrator, t.id), 1)
    m = first[0]
    await cast_votes(m["id"], m["contestant1"]["id"], 5)
    with pytest.raises(InvalidSelection):
        await orchestrator.override_matchup_winner(organiser, m["id"], first[1]["contestant1"]["id"])
    result = await orchestrator.override_matchup_winner(organiser, m["id"], m["contestant2"]["id"])
    assert result.winner_id == m["contestant2"]["id"]
    with pytest.raises(StateConflict):
        await orchestrator.override_matchup_winner(organiser, m["id"], m["contestant1"]["id"])
    final = round_matchups(await _view(orchestrator, t.id), 2)[0]
    assert final["contestant1"]["id"] == m["contestant2"]["id"]


@pytest.mark.asyncio
async def test_round_decided_while_locked_completes(
    build_tournament, orchestrator, organiser, round_matchups, cast_votes
):
    t = await build_tournament(4)
    view = await _view(orchestrator, t.id)
    round_id = view["rounds"][0]["round_id"]
    first = round_matchups(view, 1)
    for m in first:
        await cast_votes(m["id"], m["contestant1"]["id"], 1)
    locked = await orchestrator.lock_round(organiser, round_id)
    assert locked.status == "paused"
    assert locked.locked_at is not None

    result = await orchestrator.finalize_matchup(organiser, first[0]["id"])
    assert (result.resolved, result.round_advanced) == (True, False)
    assert (await _view(orchestrator, t.id))["rounds"][0]["round_status"] == "paused"

    result = await orchestrator.finalize_matchup(organiser, first[1]["id"])
    assert result.round_advanced is True
    view = await _view(orchestrator, t.id)
    assert view["rounds"][0]["round_status"] == "completed"
    assert view["rounds"][1]["round_status"] == "active"
    with pytest.raises(StateConflict):
        await orchestrator.unlock_round(organiser, round_id)


@pytest.mark.asyncio
async def test_overrides_in_locked_round_keep_counts_consistent(
    build_tournament, orchestrator, organiser, round_matchups
):
    t = await build_tournament(8)
    view = await _view(orchestrator, t.id)
    await orchestrator.lock_round(organiser, view["rounds"][0]["round_id"])
    for m in round_matchups(view, 1):
        await orchestrator.override_matchup_winner(organiser, m["id"], m["contestant2"]["id"])
    for r in (await _view(orchestrator, t.id))["rounds"]:
        assert (r["round_status"] == "completed") == (r["completed_matchups"] == r["total_matchups"])
    assert (await _view(orchestrator, t.id))["rounds"][1]["round_status"] == "active"


@pytest.mark.asyncio
async def test_unlock_resumes_voting(build_tournament, orchestrator, organiser, round_matchups, cast_votes):
    t = await build_tournament(4)
    view = await _view(orchestrator, t.id)
    round_id = view["rounds"][0]["round_id"]
    await orchestrator.lock_round(organiser, round_id)
    unlocked = await orchestrator.unlock_round(organiser, round_id)
    assert unlocked.status == "active"
    assert unlocked.locked_at is None
    m = round_matchups(view, 1)[0]
    await cast_votes(m["id"], m["contestant1"]["id"], 1)
    assert (await orchestrator.get_live_tallies(m["id"])).total_votes == 1


@pytest.mark.asyncio
async def test_lock_requires_active_round(build_tournament, orchestrator, organiser):
    t = await build_tournament(4)
    view = await _view(orchestrator, t.id)
    with pytest.raises(StateConflict):
        await orchestrator.lock_round(organiser, view["rounds"][1]["round_id"])
    with pytest.raises(StateConflict):
        await orchestrator.unlock_round(organiser, view["rounds"][0]["round_id"])


@pytest.mark.asyncio
async def test_reset_bracket(build_tournament, orchestrator, organiser, round_matchups, cast_votes):
    t = await build_tournament(4)
    m = round_matchups(await _view(orchestrator, t.id), 1)[0]
    await cast_votes(m["id"], m["contestant1"]["id"], 2)
    await orchestrator.finalize_matchup(organiser, m["id"])

    reset = await orchestrator.reset_bracket(organiser, t.id)
    assert reset.status == "registration"
    view = await _view(orchestrator, t.id)
    assert view["rounds"] == []
    contestants = await orchestrator.list_contestants(t.id)
    assert all((c.wins, c.losses, c.votes_received, c.eliminated_round) == (0, 0, 0, None) for c in contestants)
    stats = await orchestrator.get_stats(t.id)
    assert stats["total_votes"] == 0
    assert stats["total_participants"] == 0

    # a reset bracket can be started again
    await orchestrator.start_tournament(organiser, t.id)
    assert (await orchestrator.get_tournament(t.id)).status == "active"


@pytest.mark.asyncio
async def test_reset_rejected_before_start(build_tournament, orchestrator, organiser):
    t = await build_tournament(4, start=False)
    with pytest.raises(StateConflict):
        await orchestrator.reset_bracket(organiser, t.id)


@pytest.mark.asyncio
async def test_close_expired_matchups(build_tournament, orchestrator, organiser, round_matchups, cast_votes):
    t = await build_tournament(4, voting_duration_hours=2)
    first = round_matchups(await _view(orchestrator, t.id), 1)
    await cast_votes(first[0]["id"], first[0]["contestant2"]["id"], 1)
    later = first[0]["end_date"] + timedelta(minutes=1)

    results = await orchestrator.close_expired_matchups(organiser, t.id, now=later)
    by_id = {r.matchup_id: r for r in results}
    assert by_id[first[0]["id"]].resolved is True
    assert by_id[first[0]["id"]].winner_id == first[0]["contestant2"]["id"]
    assert by_id[first[1]["id"]].resolved is False
