"""
Team availability, queueing and read models.
"""

from datetime import datetime
from typing import Dict, List, Optional
import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.database.models import Team, TeamStatus
from padel_league.services.errors import (
    InvalidStateError,
    NotFoundError,
    ServiceResult,
    UnauthorizedError,
    error_from_db,
)
from padel_league.services.team_state import transition_team
from padel_league.utils.datetime_utils import days_remaining, ensure_utc, utcnow

logger = logging.getLogger(__name__)

CONCURRENT_UPDATE_MESSAGE = "Team was updated by someone else. Please refresh and try again."


def team_to_dict(team: Team, now: Optional[datetime] = None) -> Dict:
    return {
        "id": team.id,
        "club_id": team.club_id,
        "name": team.name,
        "captain_id": team.captain_id,
        "player_2_id": team.player_2_id,
        "experience_level": team.experience_level,
        "mode": team.mode.value if team.mode else None,
        "squad_size": team.squad_size.value if team.squad_size else None,
        "status": team.status.value,
        "cooldown_expires_at": ensure_utc(team.cooldown_expires_at).isoformat() if team.cooldown_expires_at else None,
        "cooldown_days_remaining": days_remaining(team.cooldown_expires_at, now),
        "unavailable_return_date": (
            ensure_utc(team.unavailable_return_date).isoformat() if team.unavailable_return_date else None
        ),
        "is_queued": team.is_queued,
        "points": team.points,
        "wins": team.wins,
        "losses": team.losses,
        "matches_played": team.matches_played,
        "last_match_completed_at": (
            ensure_utc(team.last_match_completed_at).isoformat() if team.last_match_completed_at else None
        ),
    }


async def _load_captained_team(session: AsyncSession, team_id: int, acting_user_id: int):
    team = await session.get(Team, team_id, populate_existing=True)
    if team is None:
        return None, ServiceResult.fail(NotFoundError("Team not found"))
    if team.captain_id != acting_user_id:
        return None, ServiceResult.fail(UnauthorizedError("Only team captain can change team availability"))
    return team, None


async def toggle_unavailable(
    session: AsyncSession,
    team_id: int,
    acting_user_id: int,
    return_date: Optional[datetime] = None,
) -> ServiceResult:
    """
    Flip a team between UNAVAILABLE and playable.

    Coming back goes to AVAILABLE, or PENDING_PARTNER while a doubles team
    still has no second player. Stepping out is refused during a match and
    while cooling down, so a cooldown can only end by expiring.
    """
    team, error = await _load_captained_team(session, team_id, acting_user_id)
    if error:
        return error
    if team.status == TeamStatus.IN_MATCH:
        return ServiceResult.fail(InvalidStateError("Cannot change availability during an active match"))
    if team.status == TeamStatus.COOLDOWN:
        return ServiceResult.fail(InvalidStateError("Cannot mark team unavailable during cooldown"))

    current = team.status
    if current == TeamStatus.UNAVAILABLE:
        to_status = TeamStatus.AVAILABLE if team.has_full_roster else TeamStatus.PENDING_PARTNER
        values = {"unavailable_return_date": None}
    else:
        to_status = TeamStatus.UNAVAILABLE
        values = {"unavailable_return_date": ensure_utc(return_date), "is_queued": False}

    try:
        moved = await transition_team(session, team_id, [current], to_status, **values)
        if not moved:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError(CONCURRENT_UPDATE_MESSAGE))
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error toggling availability for team {team_id}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, CONCURRENT_UPDATE_MESSAGE))

    logger.info(f"Team {team_id}: {current.value} -> {to_status.value}")
    team = await session.get(Team, team_id, populate_existing=True)
    return ServiceResult.ok(team)


async def toggle_queue(session: AsyncSession, team_id: int, acting_user_id: int) -> ServiceResult:
    """Queue (or unqueue) a cooling-down team for automatic matchmaking when it ends."""
    team, error = await _load_captained_team(session, team_id, acting_user_id)
    if error:
        return error
    if team.status != TeamStatus.COOLDOWN:
        return ServiceResult.fail(InvalidStateError("Can only queue for next match while in cooldown"))

    queued = not team.is_queued
    try:
        # Status-preserving write, still guarded so the flag can't land after the cooldown ended
        moved = await transition_team(
            session,
            team_id,
            [TeamStatus.COOLDOWN],
            TeamStatus.COOLDOWN,
            cooldown_expires_at=team.cooldown_expires_at,
            is_queued=queued,
        )
        if not moved:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError(CONCURRENT_UPDATE_MESSAGE))
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error toggling queue for team {team_id}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, CONCURRENT_UPDATE_MESSAGE))

    logger.info(f"Team {team_id} {'queued' if queued else 'unqueued'} for next match")
    team = await session.get(Team, team_id, populate_existing=True)
    return ServiceResult.ok(team)


async def get_league_table(session: AsyncSession, club_id: int) -> List[Dict]:
    """Club standings: every non-inactive team, best first."""
    result = await session.execute(
        select(Team)
        .where(Team.club_id == club_id, Team.status != TeamStatus.INACTIVE)
        .order_by(Team.points.desc(), Team.wins.desc(), Team.id)
    )
    now = utcnow()
    table = []
    for position, team in enumerate(result.scalars().all(), start=1):
        row = team_to_dict(team, now)
        row["position"] = position
        table.append(row)
    return table


async def get_my_team(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """The user's current team (as captain or partner), newest first; None if they have none."""
    result = await session.execute(
        select(Team)
        .where(
            or_(Team.captain_id == user_id, Team.player_2_id == user_id),
            Team.status != TeamStatus.INACTIVE,
        )
        .order_by(Team.created_at.desc(), Team.id.desc())
        .limit(1)
    )
    team = result.scalar_one_or_none()
    return team_to_dict(team) if team else None
