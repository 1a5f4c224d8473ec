"""
Tests for opponent selection and locked match creation.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
import pytz
from sqlalchemy import func, select

from padel_league.database import db
from padel_league.database.models import (
    Dispute,
    DisputeStatus,
    Match,
    MatchMode,
    MatchStatus,
    Notification,
    NotificationType,
    SquadSize,
    Team,
    TeamStatus,
)
from padel_league.services import matchmaking_service
from padel_league.services.errors import (
    ConflictError,
    InvalidStateError,
    NoOpponentError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from padel_league.utils.constants import MATCH_DEADLINE_DAYS
from padel_league.utils.datetime_utils import ensure_utc, utcnow, week_cycle


# ---------------------------------------------------------------------------
# Opponent selection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_closest_points_wins(db_session, league):
    club = await league.club()
    me = await league.team(club, points=45)
    await league.team(club, points=10)
    await league.team(club, points=50)
    closest = await league.team(club, points=48)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.success
    assert result.value.id == closest.id


@pytest.mark.asyncio
async def test_point_ties_keep_first_candidate(db_session, league):
    club = await league.club()
    me = await league.team(club, points=20)
    first = await league.team(club, points=23)
    await league.team(club, points=17)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.value.id == first.id


@pytest.mark.asyncio
async def test_same_band_preferred_over_closer_adjacent(db_session, league):
    club = await league.club()
    me = await league.team(club, experience_level="INTERMEDIATE", points=30)
    await league.team(club, experience_level="ADVANCED", points=30)
    same_band = await league.team(club, experience_level="INTERMEDIATE", points=0)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.value.id == same_band.id


@pytest.mark.asyncio
async def test_adjacent_band_used_when_same_band_empty(db_session, league):
    club = await league.club()
    me = await league.team(club, experience_level="INTERMEDIATE")
    adjacent = await league.team(club, experience_level="BEGINNER")
    await league.team(club, experience_level="VERY_COMPETITIVE")

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.value.id == adjacent.id


@pytest.mark.asyncio
async def test_beginner_never_meets_very_competitive(db_session, league):
    club = await league.club()
    me = await league.team(club, experience_level="BEGINNER", points=100)
    await league.team(club, experience_level="VERY_COMPETITIVE", points=100)
    advanced = await league.team(club, experience_level="ADVANCED", points=0)

    result = await matchmaking_service.find_best_opponent(db_session, me)
    # ADVANCED is two bands away, so nothing qualifies at all
    assert not result.success
    assert isinstance(result.error, NoOpponentError)

    advanced.experience_level = "INTERMEDIATE"
    await db_session.commit()
    result = await matchmaking_service.find_best_opponent(db_session, me)
    assert result.value.id == advanced.id


@pytest.mark.asyncio
async def test_very_competitive_never_meets_beginner(db_session, league):
    club = await league.club()
    me = await league.team(club, experience_level="VERY_COMPETITIVE")
    await league.team(club, experience_level="BEGINNER")

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert isinstance(result.error, NoOpponentError)
    assert result.message == "No eligible opponents found"


@pytest.mark.asyncio
async def test_legacy_level_searches_whole_club(db_session, league):
    club = await league.club()
    me = await league.team(club, experience_level="0-1 Months", points=5)
    elite = await league.team(club, experience_level="VERY_COMPETITIVE", points=6)
    await league.team(club, experience_level="BEGINNER", points=40)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.value.id == elite.id


@pytest.mark.asyncio
async def test_experience_override_changes_search_band(db_session, league):
    club = await league.club()
    me = await league.team(club, experience_level="BEGINNER")
    advanced = await league.team(club, experience_level="ADVANCED")

    result = await matchmaking_service.find_best_opponent(db_session, me, experience_override="ADVANCED")

    assert result.value.id == advanced.id


@pytest.mark.asyncio
async def test_never_another_club_or_self(db_session, league):
    club = await league.club()
    other_club = await league.club()
    me = await league.team(club)
    await league.team(other_club)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert isinstance(result.error, NoOpponentError)


@pytest.mark.asyncio
async def test_ineligible_candidates_skipped(db_session, league):
    club = await league.club()
    me = await league.team(club)
    await league.team(club, status=TeamStatus.UNAVAILABLE)
    await league.team(club, status=TeamStatus.COOLDOWN)
    await league.team(club, with_partner=False)
    await league.team(club, status=TeamStatus.INACTIVE)
    eligible = await league.team(club, points=500)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.value.id == eligible.id


@pytest.mark.asyncio
async def test_friendly_search_includes_cooldown_teams(db_session, league):
    club = await league.club()
    me = await league.team(club)
    cooling = await league.team(club, status=TeamStatus.COOLDOWN)

    competitive = await matchmaking_service.find_best_opponent(db_session, me)
    friendly = await matchmaking_service.find_best_opponent(db_session, me, is_friendly=True)

    assert not competitive.success
    assert friendly.value.id == cooling.id


@pytest.mark.asyncio
async def test_squad_sizes_never_mix(db_session, league):
    club = await league.club()
    me = await league.team(club, with_partner=False, squad_size=SquadSize.SINGLES)
    await league.team(club)
    singles = await league.team(club, with_partner=False, squad_size=SquadSize.SINGLES, points=99)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.value.id == singles.id


@pytest.mark.asyncio
async def test_disputed_teams_excluded(db_session, league):
    club = await league.club()
    me = await league.team(club)
    disputed_a = await league.team(club)
    disputed_b = await league.team(club)
    match = await league.match(disputed_a, disputed_b, status=MatchStatus.DISPUTED)
    # Pretend an admin already released the teams while the dispute is still open
    for team in (disputed_a, disputed_b):
        team.status = TeamStatus.AVAILABLE
    db_session.add(
        Dispute(
            club_id=club.id,
            match_id=match.id,
            disputed_by=disputed_b.captain_id,
            disputing_team_id=disputed_b.id,
            reason="Score was wrong",
            status=DisputeStatus.PENDING,
        )
    )
    await db_session.commit()

    assert await matchmaking_service.get_disputed_team_ids(db_session) == {disputed_a.id, disputed_b.id}
    result = await matchmaking_service.find_best_opponent(db_session, me)
    assert isinstance(result.error, NoOpponentError)


async def _completed_match(league, team_a, team_b, minutes_ago):
    return await league.match(
        team_a,
        team_b,
        status=MatchStatus.COMPLETED,
        completed_at=utcnow() - timedelta(minutes=minutes_ago),
    )


@pytest.mark.asyncio
async def test_recent_opponent_avoided_when_alternative_exists(db_session, league):
    club = await league.club()
    me = await league.team(club, points=20)
    rematch = await league.team(club, points=20)
    other = await league.team(club, points=0)
    await _completed_match(league, me, rematch, minutes_ago=10)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.value.id == other.id


@pytest.mark.asyncio
async def test_recent_opponent_returned_when_only_candidate(db_session, league):
    club = await league.club()
    me = await league.team(club)
    only = await league.team(club)
    await _completed_match(league, only, me, minutes_ago=10)

    result = await matchmaking_service.find_best_opponent(db_session, me)

    assert result.success
    assert result.value.id == only.id


@pytest.mark.asyncio
async def test_recent_opponents_look_back_two_matches(db_session, league):
    club = await league.club()
    me = await league.team(club)
    oldest = await league.team(club)
    middle = await league.team(club)
    newest = await league.team(club)
    await _completed_match(league, me, oldest, minutes_ago=30)
    await _completed_match(league, me, middle, minutes_ago=20)
    await _completed_match(league, newest, me, minutes_ago=10)

    recent = await matchmaking_service.get_recent_opponent_ids(db_session, me.id)

    assert recent == [newest.id, middle.id]


# ---------------------------------------------------------------------------
# Locked creation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_match_claims_both_teams(db_session, league, sink):
    club = await league.club()
    team_a = await league.team(club, is_queued=True)
    team_b = await league.team(club)

    result = await matchmaking_service.create_match_with_locking(db_session, team_a, team_b, sink=sink)

    assert result.success
    match = result.value["match"]
    assert match.status == MatchStatus.PROPOSED
    assert match.mode == MatchMode.COMPETITIVE
    assert match.week_cycle == week_cycle(utcnow())

    a = await db_session.get(Team, team_a.id, populate_existing=True)
    b = await db_session.get(Team, team_b.id, populate_existing=True)
    assert a.status == TeamStatus.IN_MATCH and b.status == TeamStatus.IN_MATCH
    assert a.last_opponent_id == b.id and b.last_opponent_id == a.id
    assert a.is_queued is False

    assert sink.types_for(team_a.captain_id) == [NotificationType.MATCH_CREATED.value]
    assert sink.types_for(team_b.captain_id) == [NotificationType.MATCH_CREATED.value]
    undelivered = await db_session.execute(
        select(func.count()).select_from(Notification).where(Notification.delivered_at.is_(None))
    )
    assert undelivered.scalar_one() == 0


@pytest.mark.asyncio
async def test_created_match_is_bucketed_by_epoch_week(db_session, league):
    club = await league.club()
    team_a = await league.team(club)
    team_b = await league.team(club)
    now = datetime(2026, 10, 18, 9, 30, tzinfo=pytz.UTC)

    result = await matchmaking_service.create_match_with_locking(db_session, team_a, team_b, now=now)

    match = result.value["match"]
    assert match.week_cycle == int(now.timestamp()) // (7 * 24 * 60 * 60)
    assert ensure_utc(match.match_deadline) == now + timedelta(days=MATCH_DEADLINE_DAYS)


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_match(db_session, league, make_sink):
    club = await league.club()
    team_a = await league.team(club)
    team_b = await league.team(club)

    result = await matchmaking_service.create_match_with_locking(
        db_session, team_a, team_b, sink=make_sink(raises=True)
    )

    assert result.success
    pending = (await db_session.execute(select(Notification))).scalars().all()
    assert len(pending) == 2
    assert all(n.delivered_at is None for n in pending)


@pytest.mark.asyncio
async def test_stale_snapshot_conflict_rolls_back(db_session, league):
    club = await league.club()
    team_a = await league.team(club)
    team_b = await league.team(club, name="Taken")

    # Someone else claims team B after it was selected
    async with db.AsyncSessionLocal() as other:
        taken = await other.get(Team, team_b.id)
        taken.status = TeamStatus.IN_MATCH
        await other.commit()

    result = await matchmaking_service.create_match_with_locking(db_session, team_a, team_b)

    assert not result.success
    assert isinstance(result.error, ConflictError)
    assert result.error.retryable
    assert result.message == 'Team "Taken" is no longer available. Please try again.'
    a = await db_session.get(Team, team_a.id, populate_existing=True)
    assert a.status == TeamStatus.AVAILABLE
    assert (await db_session.execute(select(func.count()).select_from(Match))).scalar_one() == 0


@pytest.mark.asyncio
async def test_concurrent_requests_for_same_opponent(test_engine, league):
    """Two captains race for the same third team: exactly one match is created."""
    club = await league.club()
    team_x = await league.team(club)
    team_y = await league.team(club)
    contested = await league.team(club)

    async def attempt(team):
        async with db.AsyncSessionLocal() as session:
            return await matchmaking_service.create_match_with_locking(session, team, contested)

    results = await asyncio.gather(attempt(team_x), attempt(team_y))

    successes = [r for r in results if r.success]
    failures = [r for r in results if not r.success]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0].error, ConflictError)

    async with db.AsyncSessionLocal() as session:
        matches = (await session.execute(select(Match))).scalars().all()
        assert len(matches) == 1
        statuses = {
            t.id: t.status
            for t in (await session.execute(select(Team))).scalars().all()
        }
    winner = successes[0].value["team_a"].id
    loser = team_y.id if winner == team_x.id else team_x.id
    assert statuses[contested.id] == TeamStatus.IN_MATCH
    assert statuses[winner] == TeamStatus.IN_MATCH
    assert statuses[loser] == TeamStatus.AVAILABLE


@pytest.mark.asyncio
async def test_cannot_match_across_clubs_or_self(db_session, league):
    club = await league.club()
    team_a = await league.team(club)
    outsider = await league.team(await league.club())

    self_match = await matchmaking_service.create_match_with_locking(db_session, team_a, team_a)
    cross_club = await matchmaking_service.create_match_with_locking(db_session, team_a, outsider)

    assert isinstance(self_match.error, ValidationError)
    assert isinstance(cross_club.error, ValidationError)


# ---------------------------------------------------------------------------
# Captain-initiated matchmaking
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_find_opponent_and_create_match(db_session, league, sink):
    club = await league.club()
    me = await league.team(club, points=45)
    await league.team(club, points=10)
    closest = await league.team(club, points=48)

    result = await matchmaking_service.find_opponent_and_create_match(
        db_session, me.id, me.captain_id, mode="competitive", sink=sink
    )

    assert result.success
    assert result.value["team_a"].id == me.id
    assert result.value["team_b"].id == closest.id


@pytest.mark.asyncio
async def test_only_captain_can_matchmake(db_session, league):
    club = await league.club()
    me = await league.team(club)
    await league.team(club)

    result = await matchmaking_service.find_opponent_and_create_match(db_session, me.id, me.player_2_id)

    assert isinstance(result.error, UnauthorizedError)
    assert result.message == "Only team captain can initiate matchmaking"


@pytest.mark.asyncio
async def test_ineligible_requester_gets_reason(db_session, league):
    club = await league.club()
    now = utcnow()
    me = await league.team(club, status=TeamStatus.COOLDOWN, cooldown_expires_at=now + timedelta(days=3))
    await league.team(club)

    result = await matchmaking_service.find_opponent_and_create_match(
        db_session, me.id, me.captain_id, now=now
    )

    assert isinstance(result.error, InvalidStateError)
    assert result.message == "In cooldown for 3 more days"


@pytest.mark.asyncio
async def test_invalid_mode_and_unknown_team(db_session, league):
    club = await league.club()
    me = await league.team(club)

    bad_mode = await matchmaking_service.find_opponent_and_create_match(db_session, me.id, me.captain_id, mode="RANKED")
    missing = await matchmaking_service.find_opponent_and_create_match(db_session, 9999, me.captain_id)

    assert isinstance(bad_mode.error, ValidationError)
    assert isinstance(missing.error, NotFoundError)


@pytest.mark.asyncio
async def test_friendly_match_from_cooldown(db_session, league, sink):
    club = await league.club()
    me = await league.team(club, status=TeamStatus.COOLDOWN)
    other = await league.team(club, status=TeamStatus.COOLDOWN)

    result = await matchmaking_service.find_opponent_and_create_match(
        db_session, me.id, me.captain_id, mode=MatchMode.FRIENDLY, sink=sink
    )

    assert result.success
    assert result.value["match"].mode == MatchMode.FRIENDLY
    claimed = await db_session.get(Team, other.id, populate_existing=True)
    assert claimed.status == TeamStatus.IN_MATCH
    assert claimed.cooldown_expires_at is None
