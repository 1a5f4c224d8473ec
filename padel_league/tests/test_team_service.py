"""
Tests for team availability, queueing and standings.
"""

from datetime import timedelta

import pytest

from padel_league.database.models import MatchMode, MatchStatus, TeamStatus
from padel_league.services import matchmaking_service, team_service
from padel_league.services.errors import InvalidStateError, NotFoundError, UnauthorizedError
from padel_league.utils.datetime_utils import ensure_utc, utcnow


@pytest.mark.asyncio
async def test_toggle_unavailable_round_trip(db_session, league):
    club = await league.club()
    team = await league.team(club, is_queued=True)
    back_on = utcnow() + timedelta(days=14)

    away = await team_service.toggle_unavailable(db_session, team.id, team.captain_id, return_date=back_on)

    assert away.value.status == TeamStatus.UNAVAILABLE
    assert ensure_utc(away.value.unavailable_return_date) == back_on
    assert away.value.is_queued is False

    back = await team_service.toggle_unavailable(db_session, team.id, team.captain_id)

    assert back.value.status == TeamStatus.AVAILABLE
    assert back.value.unavailable_return_date is None


@pytest.mark.asyncio
async def test_cooldown_cannot_be_skipped_by_stepping_out(db_session, league):
    club = await league.club()
    team = await league.team(club, status=TeamStatus.COOLDOWN)
    expires_at = ensure_utc(team.cooldown_expires_at)

    first = await team_service.toggle_unavailable(db_session, team.id, team.captain_id)
    second = await team_service.toggle_unavailable(db_session, team.id, team.captain_id)

    for result in (first, second):
        assert not result.success
        assert isinstance(result.error, InvalidStateError)
        assert result.error.message == "Cannot mark team unavailable during cooldown"

    await db_session.refresh(team)
    assert team.status == TeamStatus.COOLDOWN
    assert ensure_utc(team.cooldown_expires_at) == expires_at

    opponent = await league.team(club)
    found = await matchmaking_service.find_opponent_and_create_match(
        db_session, team.id, team.captain_id, mode=MatchMode.COMPETITIVE
    )
    assert not found.success
    await db_session.refresh(opponent)
    assert opponent.status == TeamStatus.AVAILABLE


@pytest.mark.asyncio
async def test_return_without_partner_goes_to_pending_partner(db_session, league):
    club = await league.club()
    team = await league.team(club, status=TeamStatus.UNAVAILABLE, with_partner=False)

    result = await team_service.toggle_unavailable(db_session, team.id, team.captain_id)

    assert result.value.status == TeamStatus.PENDING_PARTNER


@pytest.mark.asyncio
async def test_toggle_unavailable_guards(db_session, league):
    club = await league.club()
    team_a = await league.team(club)
    team_b = await league.team(club)
    await league.match(team_a, team_b, status=MatchStatus.SCHEDULED)

    in_match = await team_service.toggle_unavailable(db_session, team_a.id, team_a.captain_id)
    partner = await team_service.toggle_unavailable(db_session, team_a.id, team_a.player_2_id)
    missing = await team_service.toggle_unavailable(db_session, 31337, team_a.captain_id)

    assert isinstance(in_match.error, InvalidStateError)
    assert isinstance(partner.error, UnauthorizedError)
    assert isinstance(missing.error, NotFoundError)


@pytest.mark.asyncio
async def test_queue_toggle_only_in_cooldown(db_session, league):
    club = await league.club()
    expiry = utcnow() + timedelta(days=2)
    cooling = await league.team(club, status=TeamStatus.COOLDOWN, cooldown_expires_at=expiry)
    available = await league.team(club)

    queued = await team_service.toggle_queue(db_session, cooling.id, cooling.captain_id)
    assert queued.value.is_queued is True
    assert queued.value.status == TeamStatus.COOLDOWN
    assert ensure_utc(queued.value.cooldown_expires_at) == expiry

    unqueued = await team_service.toggle_queue(db_session, cooling.id, cooling.captain_id)
    assert unqueued.value.is_queued is False

    refused = await team_service.toggle_queue(db_session, available.id, available.captain_id)
    assert isinstance(refused.error, InvalidStateError)


@pytest.mark.asyncio
async def test_league_table_ordering(db_session, league):
    club = await league.club()
    third = await league.team(club, points=3, wins=1)
    first = await league.team(club, points=9, wins=3)
    second = await league.team(club, points=3, wins=2)
    await league.team(club, points=30, status=TeamStatus.INACTIVE)
    await league.team(await league.club(), points=99)

    table = await team_service.get_league_table(db_session, club.id)

    assert [row["id"] for row in table] == [first.id, second.id, third.id]
    assert [row["position"] for row in table] == [1, 2, 3]


@pytest.mark.asyncio
async def test_my_team_and_cooldown_days(db_session, league):
    club = await league.club()
    now = utcnow()
    team = await league.team(club, status=TeamStatus.COOLDOWN, cooldown_expires_at=now + timedelta(days=4))
    loner = await league.user(club)

    mine = await team_service.get_my_team(db_session, team.player_2_id)

    assert mine["id"] == team.id
    assert mine["cooldown_days_remaining"] == 4
    assert await team_service.get_my_team(db_session, loner.id) is None
