r"""
Match lifecycle: accept, schedule, submit, confirm, dispute.

    PROPOSED -> ACCEPTED -> SCHEDULED -> AWAITING_CONFIRMATION -> COMPLETED
                                                              \-> DISPUTED

A result may be submitted from PROPOSED, ACCEPTED or SCHEDULED. Every
transition is a conditional update on the match status, so two captains
acting on the same match at once cannot both succeed.

Results are stored from team A's perspective. A captain of team B reporting
"WIN" is stored as LOSS.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.database.models import (
    Dispute,
    DisputeStatus,
    Match,
    MatchResult,
    MatchStatus,
    OPEN_MATCH_STATUSES,
    Team,
    TeamStatus,
)
from padel_league.services import notification_service
from padel_league.services.errors import (
    InvalidStateError,
    NotFoundError,
    SelfConfirmError,
    ServiceResult,
    UnauthorizedError,
    ValidationError,
    error_from_db,
)
from padel_league.services.result_service import finalize_match_result
from padel_league.services.websocket_manager import NotificationSink
from padel_league.utils.constants import CONFIRMATION_WINDOW_HOURS, DISPUTE_REASON_MAX_LENGTH
from padel_league.utils.datetime_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

SUBMITTABLE_STATUSES = (MatchStatus.PROPOSED, MatchStatus.ACCEPTED, MatchStatus.SCHEDULED)
HISTORY_STATUSES = (
    MatchStatus.COMPLETED,
    MatchStatus.AWAITING_CONFIRMATION,
    MatchStatus.DISPUTED,
)
HISTORY_LIMIT = 10

CONCURRENT_UPDATE_MESSAGE = "Match was updated by someone else. Please refresh and try again."


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


def match_to_dict(match: Match, team_a: Optional[Team] = None, team_b: Optional[Team] = None) -> Dict:
    data = {
        "id": match.id,
        "club_id": match.club_id,
        "team_a_id": match.team_a_id,
        "team_b_id": match.team_b_id,
        "status": match.status.value,
        "mode": match.mode.value,
        "result": match.result.value if match.result else None,
        "score": match.score,
        "submitted_by": match.submitted_by,
        "confirmation_deadline": _iso(match.confirmation_deadline),
        "week_cycle": match.week_cycle,
        "match_deadline": _iso(match.match_deadline),
        "completed_at": _iso(match.completed_at),
        "auto_confirmed": match.auto_confirmed,
        "created_at": _iso(match.created_at),
    }
    if team_a is not None:
        data["team_a_name"] = team_a.name
    if team_b is not None:
        data["team_b_name"] = team_b.name
    return data


async def load_match_with_teams(
    session: AsyncSession, match_id: int
) -> Tuple[Optional[Match], Optional[Team], Optional[Team]]:
    """Fresh copies of a match and both of its teams."""
    match = await session.get(Match, match_id, populate_existing=True)
    if match is None:
        return None, None, None
    team_a = await session.get(Team, match.team_a_id, populate_existing=True)
    team_b = await session.get(Team, match.team_b_id, populate_existing=True)
    return match, team_a, team_b


def captain_side(team_a: Team, team_b: Team, user_id: int) -> Optional[str]:
    """'A' or 'B' when the user captains one of the teams, else None."""
    if team_a.captain_id == user_id:
        return "A"
    if team_b.captain_id == user_id:
        return "B"
    return None


async def transition_match(
    session: AsyncSession,
    match_id: int,
    from_statuses: Iterable[MatchStatus],
    to_status: MatchStatus,
    **values,
) -> bool:
    """Conditionally move a match between statuses. False when the guard matched nothing."""
    result = await session.execute(
        update(Match)
        .where(Match.id == match_id, Match.status.in_(list(from_statuses)))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _commit_transition(
    session: AsyncSession,
    match_id: int,
    from_statuses: Iterable[MatchStatus],
    to_status: MatchStatus,
    **values,
) -> ServiceResult:
    try:
        moved = await transition_match(session, match_id, from_statuses, to_status, **values)
        if not moved:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError(CONCURRENT_UPDATE_MESSAGE))
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error moving match {match_id} to {to_status.value}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, CONCURRENT_UPDATE_MESSAGE))

    match = await session.get(Match, match_id, populate_existing=True)
    logger.info(f"Match {match_id} -> {to_status.value}")
    return ServiceResult.ok(match)


async def accept_match(session: AsyncSession, match_id: int, acting_user_id: int) -> ServiceResult:
    """Team B's captain accepts a proposed match."""
    match, team_a, team_b = await load_match_with_teams(session, match_id)
    if match is None:
        return ServiceResult.fail(NotFoundError("Match not found"))
    if match.status != MatchStatus.PROPOSED:
        return ServiceResult.fail(InvalidStateError("Match is not in proposed state"))
    if team_b.captain_id != acting_user_id:
        return ServiceResult.fail(UnauthorizedError("Only the opposing team captain can accept"))

    return await _commit_transition(session, match_id, [MatchStatus.PROPOSED], MatchStatus.ACCEPTED)


async def schedule_match(session: AsyncSession, match_id: int, acting_user_id: int) -> ServiceResult:
    """Either captain marks an accepted match as scheduled."""
    match, team_a, team_b = await load_match_with_teams(session, match_id)
    if match is None:
        return ServiceResult.fail(NotFoundError("Match not found"))
    if match.status != MatchStatus.ACCEPTED:
        return ServiceResult.fail(InvalidStateError("Match must be accepted before scheduling"))
    if captain_side(team_a, team_b, acting_user_id) is None:
        return ServiceResult.fail(UnauthorizedError("Only team captains can schedule matches"))

    return await _commit_transition(session, match_id, [MatchStatus.ACCEPTED], MatchStatus.SCHEDULED)


def parse_result(result) -> Optional[MatchResult]:
    if isinstance(result, MatchResult):
        return result
    try:
        return MatchResult(str(result).strip().upper())
    except ValueError:
        return None


async def submit_result(
    session: AsyncSession,
    match_id: int,
    acting_user_id: int,
    result,
    score: Optional[str] = None,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Record a captain's reported result and open the confirmation window.

    Args:
        session: Database session
        match_id: Match to report on
        acting_user_id: Reporting captain
        result: "WIN" or "LOSS" from the reporting captain's perspective
        score: Optional free-form score, e.g. "6-4 6-4"
        sink: Notification sink for the opposing captain's prompt
        now: Reference time

    Returns:
        ServiceResult with the updated Match
    """
    reported = parse_result(result)
    if reported is None:
        return ServiceResult.fail(ValidationError("Result must be WIN or LOSS"))

    now = now or utcnow()
    match, team_a, team_b = await load_match_with_teams(session, match_id)
    if match is None:
        return ServiceResult.fail(NotFoundError("Match not found"))
    if match.status not in SUBMITTABLE_STATUSES:
        return ServiceResult.fail(InvalidStateError("Cannot submit result for this match"))

    side = captain_side(team_a, team_b, acting_user_id)
    if side is None:
        return ServiceResult.fail(UnauthorizedError("Only team captains can submit results"))

    stored = reported if side == "A" else reported.inverted()
    submitting_team, opposing_team = (team_a, team_b) if side == "A" else (team_b, team_a)

    outcome = await _commit_transition(
        session,
        match_id,
        SUBMITTABLE_STATUSES,
        MatchStatus.AWAITING_CONFIRMATION,
        result=stored,
        score=score.strip() if score and score.strip() else None,
        submitted_by=acting_user_id,
        confirmation_deadline=now + timedelta(hours=CONFIRMATION_WINDOW_HOURS),
    )
    if not outcome.success:
        return outcome

    await notification_service.emit(
        notification_service.notify_result_submitted,
        outcome.value,
        submitting_team,
        opposing_team,
        reported,
        sink=sink,
    )
    return outcome


async def confirm_match(
    session: AsyncSession,
    match_id: int,
    acting_user_id: int,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    The opposing captain confirms a submitted result, which finalizes it.

    The submitter can never confirm their own report, whatever the match state.
    """
    match, team_a, team_b = await load_match_with_teams(session, match_id)
    if match is None:
        return ServiceResult.fail(NotFoundError("Match not found"))
    if match.submitted_by is not None and match.submitted_by == acting_user_id:
        return ServiceResult.fail(SelfConfirmError("Cannot confirm your own submission"))
    if match.status != MatchStatus.AWAITING_CONFIRMATION:
        return ServiceResult.fail(InvalidStateError("Match is not awaiting confirmation"))
    if captain_side(team_a, team_b, acting_user_id) is None:
        return ServiceResult.fail(UnauthorizedError("Only team captains can confirm results"))

    outcome = await finalize_match_result(session, match_id, auto_confirmed=False, now=now)
    if not outcome.success:
        return outcome
    team_a = await session.get(Team, team_a.id, populate_existing=True)
    team_b = await session.get(Team, team_b.id, populate_existing=True)

    await notification_service.emit(
        notification_service.notify_result_confirmed,
        outcome.value,
        team_a,
        team_b,
        False,
        sink=sink,
    )
    return outcome


def dispute_to_dict(dispute: Dispute) -> Dict:
    return {
        "id": dispute.id,
        "match_id": dispute.match_id,
        "disputed_by": dispute.disputed_by,
        "disputing_team_id": dispute.disputing_team_id,
        "reason": dispute.reason,
        "status": dispute.status.value,
        "resolution": dispute.resolution.value if dispute.resolution else None,
        "admin_notes": dispute.admin_notes,
        "final_result": dispute.final_result.value if dispute.final_result else None,
        "final_score": dispute.final_score,
        "resolved_at": _iso(dispute.resolved_at),
        "created_at": _iso(dispute.created_at),
    }


async def dispute_match(
    session: AsyncSession,
    match_id: int,
    acting_user_id: int,
    reason: Optional[str],
    sink: Optional[NotificationSink] = None,
) -> ServiceResult:
    """
    A captain disputes a submitted result.

    The match moves to DISPUTED and a PENDING dispute is opened in the same
    transaction. Both teams stay IN_MATCH until an admin resolves it.
    """
    reason = (reason or "").strip()
    if not reason:
        return ServiceResult.fail(ValidationError("Dispute reason is required"))
    if len(reason) > DISPUTE_REASON_MAX_LENGTH:
        return ServiceResult.fail(
            ValidationError(f"Dispute reason must be at most {DISPUTE_REASON_MAX_LENGTH} characters")
        )

    match, team_a, team_b = await load_match_with_teams(session, match_id)
    if match is None:
        return ServiceResult.fail(NotFoundError("Match not found"))
    if match.status != MatchStatus.AWAITING_CONFIRMATION:
        return ServiceResult.fail(InvalidStateError("Can only dispute matches awaiting confirmation"))

    side = captain_side(team_a, team_b, acting_user_id)
    if side is None:
        return ServiceResult.fail(UnauthorizedError("Only team captains can dispute results"))
    disputing_team, opposing_team = (team_a, team_b) if side == "A" else (team_b, team_a)
    club_id = match.club_id

    try:
        moved = await transition_match(
            session, match_id, [MatchStatus.AWAITING_CONFIRMATION], MatchStatus.DISPUTED
        )
        if not moved:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError(CONCURRENT_UPDATE_MESSAGE))

        dispute = Dispute(
            club_id=club_id,
            match_id=match_id,
            disputed_by=acting_user_id,
            disputing_team_id=disputing_team.id,
            reason=reason,
            status=DisputeStatus.PENDING,
        )
        session.add(dispute)
        await session.flush()
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return ServiceResult.fail(InvalidStateError("This match has already been disputed"))
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error disputing match {match_id}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, CONCURRENT_UPDATE_MESSAGE))

    logger.info(f"Match {match_id} disputed by user {acting_user_id} (dispute {dispute.id})")
    match = await session.get(Match, match_id, populate_existing=True)
    await notification_service.emit(
        notification_service.notify_dispute_created,
        match,
        dispute,
        opposing_team,
        sink=sink,
    )
    return ServiceResult.ok(dispute)


async def _teams_for_user(session: AsyncSession, user_id: int) -> List[Team]:
    result = await session.execute(
        select(Team)
        .where(
            or_(Team.captain_id == user_id, Team.player_2_id == user_id),
            Team.status != TeamStatus.INACTIVE,
        )
        .order_by(Team.id)
    )
    return list(result.scalars().all())


async def get_active_match(session: AsyncSession, user_id: int) -> Optional[Dict]:
    """The newest unfinished match of any team the user plays for, or None."""
    team_ids = [team.id for team in await _teams_for_user(session, user_id)]
    if not team_ids:
        return None

    result = await session.execute(
        select(Match)
        .where(
            or_(Match.team_a_id.in_(team_ids), Match.team_b_id.in_(team_ids)),
            Match.status.in_(OPEN_MATCH_STATUSES + (MatchStatus.DISPUTED,)),
        )
        .order_by(Match.created_at.desc(), Match.id.desc())
        .limit(1)
    )
    match = result.scalar_one_or_none()
    if match is None:
        return None

    team_a = await session.get(Team, match.team_a_id)
    team_b = await session.get(Team, match.team_b_id)
    return match_to_dict(match, team_a, team_b)


async def get_match_history(
    session: AsyncSession, team_id: int, limit: int = HISTORY_LIMIT
) -> List[Dict]:
    """Most recent reported matches of a team, newest first."""
    result = await session.execute(
        select(Match)
        .where(
            or_(Match.team_a_id == team_id, Match.team_b_id == team_id),
            Match.status.in_(HISTORY_STATUSES),
        )
        .order_by(Match.updated_at.desc(), Match.id.desc())
        .limit(limit)
    )
    matches = result.scalars().all()

    history = []
    for match in matches:
        team_a = await session.get(Team, match.team_a_id)
        team_b = await session.get(Team, match.team_b_id)
        history.append(match_to_dict(match, team_a, team_b))
    return history
