"""
Tests for result finalization and the standings it produces.
"""

from datetime import timedelta

import pytest

from padel_league.database.models import (
    Match,
    MatchMode,
    MatchResult,
    MatchStatus,
    Team,
    TeamStatus,
)
from padel_league.services import result_service
from padel_league.services.errors import InvalidStateError, NotFoundError
from padel_league.utils.constants import COOLDOWN_DAYS, POINTS_PER_WIN
from padel_league.utils.datetime_utils import ensure_utc, utcnow


async def _awaiting(league, mode=MatchMode.COMPETITIVE, result=MatchResult.WIN, **team_values):
    club = await league.club()
    team_a = await league.team(club, **team_values)
    team_b = await league.team(club, **team_values)
    match = await league.match(
        team_a, team_b, status=MatchStatus.AWAITING_CONFIRMATION, mode=mode, result=result
    )
    return match, team_a, team_b


@pytest.mark.asyncio
async def test_competitive_win_updates_standings_and_cooldown(db_session, league):
    match, team_a, team_b = await _awaiting(league, points=6)
    now = utcnow()

    result = await result_service.finalize_match_result(db_session, match.id, now=now)

    assert result.success
    assert result.value.status == MatchStatus.COMPLETED
    assert result.value.auto_confirmed is False

    winner = await db_session.get(Team, team_a.id, populate_existing=True)
    loser = await db_session.get(Team, team_b.id, populate_existing=True)
    assert (winner.wins, winner.losses, winner.points) == (1, 0, 6 + POINTS_PER_WIN)
    assert (loser.wins, loser.losses, loser.points) == (0, 1, 6)
    assert winner.matches_played == loser.matches_played == 1

    expected_expiry = now + timedelta(days=COOLDOWN_DAYS)
    for team in (winner, loser):
        assert team.status == TeamStatus.COOLDOWN
        assert ensure_utc(team.cooldown_expires_at) == expected_expiry
        assert ensure_utc(team.last_match_completed_at) == now


@pytest.mark.asyncio
async def test_loss_from_team_a_perspective_credits_team_b(db_session, league):
    match, team_a, team_b = await _awaiting(league, result=MatchResult.LOSS)

    assert result_service.winner_and_loser(match) == (team_b.id, team_a.id)
    await result_service.finalize_match_result(db_session, match.id)

    winner = await db_session.get(Team, team_b.id, populate_existing=True)
    assert winner.wins == 1
    assert winner.points == POINTS_PER_WIN


@pytest.mark.asyncio
async def test_friendly_releases_both_teams_without_points(db_session, league):
    match, team_a, team_b = await _awaiting(league, mode=MatchMode.FRIENDLY, points=9)

    result = await result_service.finalize_match_result(db_session, match.id)

    assert result.success
    for team_id in (team_a.id, team_b.id):
        team = await db_session.get(Team, team_id, populate_existing=True)
        assert team.status == TeamStatus.AVAILABLE
        assert team.cooldown_expires_at is None
        assert (team.wins, team.losses, team.points) == (0, 0, 9)
        assert team.matches_played == 1


@pytest.mark.asyncio
async def test_second_finalization_changes_nothing(db_session, league):
    match, team_a, _ = await _awaiting(league)
    await result_service.finalize_match_result(db_session, match.id)

    again = await result_service.finalize_match_result(db_session, match.id)

    assert not again.success
    assert isinstance(again.error, InvalidStateError)
    winner = await db_session.get(Team, team_a.id, populate_existing=True)
    assert winner.wins == 1
    assert winner.points == POINTS_PER_WIN


@pytest.mark.asyncio
async def test_team_no_longer_in_match_aborts_everything(db_session, league):
    match, team_a, team_b = await _awaiting(league)
    team_b.status = TeamStatus.AVAILABLE
    await db_session.commit()

    result = await result_service.finalize_match_result(db_session, match.id)

    assert isinstance(result.error, InvalidStateError)
    stored = await db_session.get(Match, match.id, populate_existing=True)
    assert stored.status == MatchStatus.AWAITING_CONFIRMATION
    a = await db_session.get(Team, team_a.id, populate_existing=True)
    assert a.status == TeamStatus.IN_MATCH
    assert a.wins == 0


@pytest.mark.asyncio
async def test_finalize_requires_result_and_status(db_session, league):
    club = await league.club()
    proposed = await league.match(await league.team(club), await league.team(club))

    wrong_status = await result_service.finalize_match_result(db_session, proposed.id)
    missing = await result_service.finalize_match_result(db_session, 424242)

    assert isinstance(wrong_status.error, InvalidStateError)
    assert isinstance(missing.error, NotFoundError)
