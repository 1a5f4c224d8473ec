"""
Result finalizer: turns a submitted (or admin-decided) result into standings.

Competitive matches give the winner +1 win and POINTS_PER_WIN points, the
loser +1 loss, and put BOTH teams into cooldown with the same expiry, so
every team re-enters the market at the same cadence whether it won or lost.
Friendly matches only count towards matches played and release both teams
straight back to AVAILABLE.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional
import logging

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.database.models import (
    Match,
    MatchMode,
    MatchResult,
    MatchStatus,
    Team,
    TeamStatus,
)
from padel_league.services.errors import (
    InvalidStateError,
    NotFoundError,
    ServiceResult,
    error_from_db,
)
from padel_league.services.team_state import transition_team
from padel_league.utils.constants import COOLDOWN_DAYS, POINTS_PER_WIN
from padel_league.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def winner_and_loser(match: Match):
    """(winner_team_id, loser_team_id) from the team-A-relative result."""
    if match.result == MatchResult.WIN:
        return match.team_a_id, match.team_b_id
    return match.team_b_id, match.team_a_id


def _team_update(mode: MatchMode, won: bool, now: datetime, cooldown_expiry: datetime):
    values = {
        "matches_played": Team.matches_played + 1,
        "last_match_completed_at": now,
    }
    if mode != MatchMode.COMPETITIVE:
        return TeamStatus.AVAILABLE, values

    if won:
        values["wins"] = Team.wins + 1
        values["points"] = Team.points + POINTS_PER_WIN
    else:
        values["losses"] = Team.losses + 1
    values["cooldown_expires_at"] = cooldown_expiry
    return TeamStatus.COOLDOWN, values


async def finalize_match_result(
    session: AsyncSession,
    match_id: int,
    from_statuses: Iterable[MatchStatus] = (MatchStatus.AWAITING_CONFIRMATION,),
    auto_confirmed: bool = False,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Complete a match and apply its result to both teams in one transaction.

    The match is claimed with a conditional update on its status first, so a
    second finalization of the same match (a re-run sweep, a confirm racing
    the auto-confirmation) matches nothing and changes nothing.

    Args:
        session: Database session
        match_id: Match to finalize (must carry a result)
        from_statuses: Statuses the match may be finalized from
        auto_confirmed: Finalized by the deadline sweep rather than a captain
        now: Reference time

    Returns:
        ServiceResult with the completed Match. The caller notifies captains.
    """
    now = now or utcnow()
    from_statuses = list(from_statuses)

    try:
        match = await session.get(Match, match_id, populate_existing=True)
        if match is None:
            return ServiceResult.fail(NotFoundError("Match not found"))
        if match.status not in from_statuses:
            return ServiceResult.fail(
                InvalidStateError(f"Match cannot be finalized from {match.status.value}")
            )
        if match.result is None:
            return ServiceResult.fail(InvalidStateError("Match has no submitted result"))

        mode = match.mode
        winner_id, loser_id = winner_and_loser(match)

        claimed = await session.execute(
            update(Match)
            .where(Match.id == match_id, Match.status.in_(from_statuses))
            .values(status=MatchStatus.COMPLETED, completed_at=now, auto_confirmed=auto_confirmed)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError("Match has already been finalized"))

        cooldown_expiry = now + timedelta(days=COOLDOWN_DAYS)
        for team_id, won in ((winner_id, True), (loser_id, False)):
            to_status, values = _team_update(mode, won, now, cooldown_expiry)
            released = await transition_team(
                session, team_id, [TeamStatus.IN_MATCH], to_status, **values
            )
            if not released:
                await session.rollback()
                logger.error(f"Finalizing match {match_id}: team {team_id} is not IN_MATCH")
                return ServiceResult.fail(
                    InvalidStateError(f"Team {team_id} is no longer in this match")
                )

        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error finalizing match {match_id}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, "Match was updated concurrently. Please try again."))

    match = await session.get(Match, match_id, populate_existing=True)
    logger.info(
        f"Match {match_id} finalized ({mode.value}, {'auto' if auto_confirmed else 'confirmed'}): "
        f"winner team {winner_id}, loser team {loser_id}"
    )
    return ServiceResult.ok(match)
