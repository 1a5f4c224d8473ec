"""
Matchmaking service: opponent selection and race-free match creation.

Flow for a "find match" request:
    eligibility check -> find_best_opponent -> create_match_with_locking

Opponent selection works on a snapshot that can be stale by the time the
match is written, so create_match_with_locking claims both teams with
conditional updates inside one transaction. Two captains racing for the same
third team both pass selection, but only one claim matches the row; the other
gets a ConflictError and may retry.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Set, Union
import logging

from sqlalchemy import select, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.database.models import (
    ACTIVE_DISPUTE_STATUSES,
    Dispute,
    ExperienceLevel,
    Match,
    MatchMode,
    MatchStatus,
    NotificationType,
    SquadSize,
    Team,
    TeamStatus,
)
from padel_league.services import notification_service
from padel_league.services.eligibility_service import (
    allowed_statuses,
    allowed_statuses_for_mode,
    is_team_eligible,
)
from padel_league.services.errors import (
    ConflictError,
    InvalidStateError,
    NoOpponentError,
    NotFoundError,
    ServiceResult,
    UnauthorizedError,
    ValidationError,
    error_from_db,
)
from padel_league.services.team_state import transition_team
from padel_league.services.websocket_manager import NotificationSink
from padel_league.utils.constants import MATCH_DEADLINE_DAYS, RECENT_OPPONENT_WINDOW
from padel_league.utils.datetime_utils import utcnow, week_cycle

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "Matchmaking conflict. Please try again."


def parse_mode(mode: Union[MatchMode, str, None]) -> Optional[MatchMode]:
    """Resolve a mode given as enum or string; None when unrecognised."""
    if mode is None:
        return MatchMode.COMPETITIVE
    if isinstance(mode, MatchMode):
        return mode
    try:
        return MatchMode(str(mode).strip().upper())
    except ValueError:
        return None


def is_adjacent_band(level: ExperienceLevel, other: ExperienceLevel) -> bool:
    """One band apart. Beginners and very competitive teams never meet."""
    if {level, other} == {ExperienceLevel.BEGINNER, ExperienceLevel.VERY_COMPETITIVE}:
        return False
    return abs(level.rank - other.rank) == 1


async def get_disputed_team_ids(session: AsyncSession) -> Set[int]:
    """Ids of both teams of every match with an open dispute, across all clubs."""
    result = await session.execute(
        select(Match.team_a_id, Match.team_b_id)
        .join(Dispute, Dispute.match_id == Match.id)
        .where(Dispute.status.in_(ACTIVE_DISPUTE_STATUSES))
    )
    disputed = set()
    for team_a_id, team_b_id in result.all():
        disputed.add(team_a_id)
        disputed.add(team_b_id)
    return disputed


async def get_recent_opponent_ids(
    session: AsyncSession, team_id: int, limit: int = RECENT_OPPONENT_WINDOW
) -> List[int]:
    """Opponents of the team's most recent completed matches, newest first."""
    result = await session.execute(
        select(Match.team_a_id, Match.team_b_id)
        .where(
            or_(Match.team_a_id == team_id, Match.team_b_id == team_id),
            Match.status == MatchStatus.COMPLETED,
        )
        .order_by(Match.completed_at.desc(), Match.id.desc())
        .limit(limit)
    )
    return [
        team_b_id if team_a_id == team_id else team_a_id
        for team_a_id, team_b_id in result.all()
    ]


def _best_in_pool(
    team: Team,
    pool: Sequence[Team],
    disputed_team_ids: Set[int],
    recent_opponent_ids: Sequence[int],
    is_friendly: bool,
    now: Optional[datetime],
) -> Optional[Team]:
    eligible = [
        candidate for candidate in pool
        if is_team_eligible(candidate, disputed_team_ids, is_friendly, now).eligible
    ]
    # Repeat avoidance is best-effort: never leave the pool empty for it
    fresh = [candidate for candidate in eligible if candidate.id not in recent_opponent_ids]
    if fresh:
        eligible = fresh
    if not eligible:
        return None

    # sorted() is stable, so ties keep candidate (id) order
    ranked = sorted(eligible, key=lambda candidate: abs((candidate.points or 0) - (team.points or 0)))
    return ranked[0]


async def find_best_opponent(
    session: AsyncSession,
    team: Team,
    is_friendly: bool = False,
    experience_override: Optional[str] = None,
    disputed_team_ids: Optional[Set[int]] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Pick the best opponent for a team from its own club.

    Candidates in the same experience band are preferred; only if none
    qualifies is the search widened to adjacent bands. Within a pool the
    candidate with the closest point total wins. A team without a recognised
    band (legacy or solo-formed) searches the whole club.

    Args:
        session: Database session
        team: Requesting team
        is_friendly: Friendly search (cooldown teams are eligible)
        experience_override: Band to search from instead of the team's own
        disputed_team_ids: Precomputed open-dispute team ids
        now: Reference time

    Returns:
        ServiceResult with the opponent Team, or NoOpponentError
    """
    if disputed_team_ids is None:
        disputed_team_ids = await get_disputed_team_ids(session)
    recent_opponent_ids = await get_recent_opponent_ids(session, team.id)

    query = (
        select(Team)
        .where(
            Team.club_id == team.club_id,
            Team.id != team.id,
            Team.squad_size == team.squad_size,
            Team.status.in_(allowed_statuses(is_friendly)),
        )
        .order_by(Team.id)
    )
    if team.squad_size != SquadSize.SINGLES:
        query = query.where(Team.player_2_id.is_not(None))
    if disputed_team_ids:
        query = query.where(Team.id.not_in(list(disputed_team_ids)))
    candidates = (await session.execute(query)).scalars().all()

    band = ExperienceLevel.parse(experience_override) if experience_override else team.experience_band

    if band is None:
        passes = [candidates]
    else:
        same_band = [c for c in candidates if c.experience_band == band]
        adjacent_band = [
            c for c in candidates
            if c.experience_band is not None and is_adjacent_band(band, c.experience_band)
        ]
        passes = [same_band, adjacent_band]

    for pool in passes:
        opponent = _best_in_pool(team, pool, disputed_team_ids, recent_opponent_ids, is_friendly, now)
        if opponent is not None:
            return ServiceResult.ok(opponent)

    return ServiceResult.fail(NoOpponentError("No eligible opponents found"))


async def create_match_with_locking(
    session: AsyncSession,
    team_a: Team,
    team_b: Team,
    mode: MatchMode = MatchMode.COMPETITIVE,
    notification_type: str = NotificationType.MATCH_CREATED.value,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Claim both teams and create the match in one transaction.

    Each team is moved to IN_MATCH with a conditional update that only
    matches while the team is still in a status the mode allows. If either
    claim matches nothing, another request got there first: the whole
    transaction is rolled back and a ConflictError is returned. The
    match-created notifications are written in the same transaction and
    delivered after commit.

    Returns:
        ServiceResult with {"match", "team_a", "team_b"} on success
    """
    if team_a.id == team_b.id:
        return ServiceResult.fail(ValidationError("A team cannot play against itself"))
    if team_a.club_id != team_b.club_id:
        return ServiceResult.fail(ValidationError("Teams must be from the same club"))

    now = now or utcnow()
    allowed = allowed_statuses_for_mode(mode)
    # Rollback expires ORM state; keep what the error paths report
    team_a_id, team_b_id = team_a.id, team_b.id
    names = {team_a.id: team_a.name, team_b.id: team_b.name}

    try:
        for team_id, opponent_id in ((team_a_id, team_b_id), (team_b_id, team_a_id)):
            claimed = await transition_team(
                session,
                team_id,
                allowed,
                TeamStatus.IN_MATCH,
                last_opponent_id=opponent_id,
                is_queued=False,
            )
            if not claimed:
                await session.rollback()
                logger.info(f"Matchmaking conflict: team {team_id} no longer available")
                return ServiceResult.fail(
                    ConflictError(f'Team "{names[team_id]}" is no longer available. Please try again.')
                )

        match = Match(
            club_id=team_a.club_id,
            team_a_id=team_a_id,
            team_b_id=team_b_id,
            status=MatchStatus.PROPOSED,
            mode=mode,
            week_cycle=week_cycle(now),
            match_deadline=now + timedelta(days=MATCH_DEADLINE_DAYS),
        )
        session.add(match)
        await session.flush()

        locked_a = await session.get(Team, team_a_id, populate_existing=True)
        locked_b = await session.get(Team, team_b_id, populate_existing=True)
        notifications = await notification_service.notify_match_created(
            session, match, locked_a, locked_b, notification_type
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        error = error_from_db(e, CONFLICT_MESSAGE)
        logger.warning(f"Match creation between teams {team_a_id} and {team_b_id} aborted: {e}")
        return ServiceResult.fail(error)

    logger.info(
        f"Created {mode.value} match {match.id}: team {team_a_id} vs team {team_b_id}"
    )

    try:
        await notification_service.deliver_pending_notifications(
            sink=sink, notification_ids=[n["id"] for n in notifications]
        )
    except Exception as e:
        logger.warning(f"Failed to deliver match-created notifications for match {match.id}: {e}")

    return ServiceResult.ok({"match": match, "team_a": locked_a, "team_b": locked_b})


async def match_team(
    session: AsyncSession,
    team: Team,
    mode: MatchMode = MatchMode.COMPETITIVE,
    experience_override: Optional[str] = None,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """Eligibility check, opponent search and locked creation for one team."""
    is_friendly = mode == MatchMode.FRIENDLY
    disputed_team_ids = await get_disputed_team_ids(session)

    eligibility = is_team_eligible(team, disputed_team_ids, is_friendly, now)
    if not eligibility.eligible:
        return ServiceResult.fail(InvalidStateError(eligibility.reason))

    opponent_result = await find_best_opponent(
        session,
        team,
        is_friendly=is_friendly,
        experience_override=experience_override,
        disputed_team_ids=disputed_team_ids,
        now=now,
    )
    if not opponent_result.success:
        return opponent_result

    return await create_match_with_locking(
        session, team, opponent_result.value, mode=mode, sink=sink, now=now
    )


async def find_opponent_and_create_match(
    session: AsyncSession,
    requesting_team_id: int,
    acting_user_id: int,
    mode: Union[MatchMode, str, None] = MatchMode.COMPETITIVE,
    experience_override: Optional[str] = None,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Captain-initiated matchmaking.

    Args:
        session: Database session
        requesting_team_id: Team asking for a match (becomes team A)
        acting_user_id: Authenticated user; must captain the team
        mode: COMPETITIVE or FRIENDLY
        experience_override: Optional band to search from
        sink: Notification sink for the post-commit push
        now: Reference time

    Returns:
        ServiceResult with {"match", "team_a", "team_b"}, or one of
        ValidationError, NotFoundError, UnauthorizedError, InvalidStateError,
        NoOpponentError, ConflictError, PersistenceError
    """
    match_mode = parse_mode(mode)
    if match_mode is None:
        return ServiceResult.fail(ValidationError("Mode must be COMPETITIVE or FRIENDLY"))

    team = await session.get(Team, requesting_team_id)
    if team is None:
        return ServiceResult.fail(NotFoundError("Team not found"))
    if team.captain_id != acting_user_id:
        return ServiceResult.fail(UnauthorizedError("Only team captain can initiate matchmaking"))

    return await match_team(session, team, match_mode, experience_override, sink=sink, now=now)


async def attempt_queued_match(
    session: AsyncSession,
    team_id: int,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Matchmaking on behalf of a queued team (no captain in the loop).

    The queue flag is cleared by the match-creation claim itself, so it only
    goes away when a match is actually created.
    """
    team = await session.get(Team, team_id, populate_existing=True)
    if team is None:
        return ServiceResult.fail(NotFoundError("Team not found"))
    if not team.is_queued:
        return ServiceResult.fail(InvalidStateError("Team is not queued"))
    if team.status != TeamStatus.AVAILABLE:
        return ServiceResult.fail(InvalidStateError(f"Team is currently {team.status.value}"))

    return await match_team(session, team, team.mode or MatchMode.COMPETITIVE, sink=sink, now=now)
