"""
Administrative oversight: disputes, status overrides, match tooling, listings, stats.

Callers are expected to have checked the ADMIN role already (see
`require_admin`); these functions only record who acted.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional
import logging

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.database.models import (
    ACTIVE_DISPUTE_STATUSES,
    Dispute,
    DisputeResolution,
    DisputeStatus,
    Match,
    MatchMode,
    MatchStatus,
    Notification,
    NotificationType,
    OPEN_MATCH_STATUSES,
    Team,
    TeamStatus,
)
from padel_league.services import notification_service
from padel_league.services.errors import (
    InvalidStateError,
    NotFoundError,
    ServiceResult,
    ValidationError,
    error_from_db,
)
from padel_league.services.match_service import parse_result
from padel_league.services.matchmaking_service import create_match_with_locking, parse_mode
from padel_league.services.result_service import finalize_match_result
from padel_league.services.team_state import transition_team
from padel_league.services.websocket_manager import NotificationSink
from padel_league.utils.constants import COOLDOWN_DAYS
from padel_league.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

CONCURRENT_UPDATE_MESSAGE = "Dispute was updated by someone else. Please refresh and try again."
TEAM_UPDATED_MESSAGE = "Team was updated by someone else. Please refresh and try again."
MATCH_UPDATED_MESSAGE = "Match was updated by someone else. Please refresh and try again."
HELD_BY_MATCH_MESSAGE = "Team is still held by match {match_id}. Override or delete that match first."

# Admin listings return at most this many rows
ADMIN_LIST_LIMIT = 100


async def holding_match_id(session: AsyncSession, team_id: int) -> Optional[int]:
    """
    Id of the match that keeps the team IN_MATCH, if any.

    That is an open match, or a DISPUTED one whose dispute is still awaiting
    an admin.
    """
    query = (
        select(Match.id)
        .outerjoin(Dispute, Dispute.match_id == Match.id)
        .where(
            or_(Match.team_a_id == team_id, Match.team_b_id == team_id),
            or_(
                Match.status.in_(OPEN_MATCH_STATUSES),
                and_(
                    Match.status == MatchStatus.DISPUTED,
                    Dispute.status.in_(ACTIVE_DISPUTE_STATUSES),
                ),
            ),
        )
        .order_by(Match.id)
        .limit(1)
    )
    return (await session.execute(query)).scalar_one_or_none()


def _parse_resolution(resolution) -> Optional[DisputeResolution]:
    if isinstance(resolution, DisputeResolution):
        return resolution
    try:
        return DisputeResolution(str(resolution).strip().upper())
    except ValueError:
        return None


async def resolve_dispute(
    session: AsyncSession,
    dispute_id: int,
    admin_user_id: int,
    resolution,
    final_score: Optional[str] = None,
    admin_notes: Optional[str] = None,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Close a dispute with an admin decision.

    UPHOLD_ORIGINAL finalizes the submitted result. REVERSE_RESULT inverts it
    first. VOID_MATCH leaves the match DISPUTED as a void record and releases
    both teams to AVAILABLE without touching standings. OTHER only records
    the decision.

    The dispute is closed with a conditional update in the same transaction
    as the match/team changes, so a dispute is resolved at most once.

    Returns:
        ServiceResult with the resolved Dispute
    """
    decision = _parse_resolution(resolution)
    if decision is None:
        return ServiceResult.fail(
            ValidationError(f"Resolution must be one of {', '.join(r.value for r in DisputeResolution)}")
        )

    now = now or utcnow()
    dispute = await session.get(Dispute, dispute_id, populate_existing=True)
    if dispute is None:
        return ServiceResult.fail(NotFoundError("Dispute not found"))
    if dispute.status not in ACTIVE_DISPUTE_STATUSES:
        return ServiceResult.fail(InvalidStateError("Dispute has already been resolved"))

    match = await session.get(Match, dispute.match_id, populate_existing=True)
    if match is None:
        return ServiceResult.fail(NotFoundError("Match not found"))
    if decision != DisputeResolution.OTHER and match.status != MatchStatus.DISPUTED:
        return ServiceResult.fail(InvalidStateError("Match is not disputed"))

    match_id = match.id
    team_ids = (match.team_a_id, match.team_b_id)
    final_result = match.result
    if decision == DisputeResolution.REVERSE_RESULT and final_result is not None:
        final_result = final_result.inverted()
    score = final_score.strip() if final_score and final_score.strip() else match.score

    try:
        closed = await session.execute(
            update(Dispute)
            .where(Dispute.id == dispute_id, Dispute.status.in_(ACTIVE_DISPUTE_STATUSES))
            .values(
                status=DisputeStatus.RESOLVED,
                resolution=decision,
                resolved_by=admin_user_id,
                admin_notes=admin_notes,
                resolved_at=now,
                final_result=final_result if decision != DisputeResolution.VOID_MATCH else None,
                final_score=score if decision != DisputeResolution.VOID_MATCH else None,
            )
            .execution_options(synchronize_session=False)
        )
        if closed.rowcount != 1:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError(CONCURRENT_UPDATE_MESSAGE))

        if decision in (DisputeResolution.UPHOLD_ORIGINAL, DisputeResolution.REVERSE_RESULT):
            if final_result is None:
                await session.rollback()
                return ServiceResult.fail(InvalidStateError("Match has no submitted result"))
            await session.execute(
                update(Match)
                .where(Match.id == match_id, Match.status == MatchStatus.DISPUTED)
                .values(result=final_result, score=score)
                .execution_options(synchronize_session=False)
            )
            # Commits the dispute update together with the result
            outcome = await finalize_match_result(
                session, match_id, from_statuses=[MatchStatus.DISPUTED], now=now
            )
            if not outcome.success:
                await session.rollback()
                return outcome
        elif decision == DisputeResolution.VOID_MATCH:
            for team_id in team_ids:
                released = await transition_team(session, team_id, [TeamStatus.IN_MATCH], TeamStatus.AVAILABLE)
                if not released:
                    logger.warning(f"Voiding match {match_id}: team {team_id} was not IN_MATCH")
            await session.commit()
        else:
            await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error resolving dispute {dispute_id}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, CONCURRENT_UPDATE_MESSAGE))

    dispute = await session.get(Dispute, dispute_id, populate_existing=True)
    logger.info(f"Dispute {dispute_id} on match {match_id} resolved by admin {admin_user_id}: {decision.value}")
    await notification_service.emit(
        notification_service.notify_dispute_resolved, dispute, admin_notes, sink=sink
    )
    return ServiceResult.ok(dispute)


async def force_team_status(
    session: AsyncSession,
    team_id: int,
    status,
    reason: Optional[str] = None,
    admin_user_id: Optional[int] = None,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Administrative override of a team's status. The captain is told why.

    Refused while a match still holds the team: that match has to be
    overridden or deleted first, otherwise the team could be matched twice.
    """
    try:
        new_status = status if isinstance(status, TeamStatus) else TeamStatus(str(status).strip().upper())
    except ValueError:
        return ServiceResult.fail(ValidationError(f"Unknown team status: {status}"))

    if new_status == TeamStatus.IN_MATCH:
        return ServiceResult.fail(ValidationError("IN_MATCH can only be set by creating a match"))

    now = now or utcnow()
    team = await session.get(Team, team_id, populate_existing=True)
    if team is None:
        return ServiceResult.fail(NotFoundError("Team not found"))

    holding = await holding_match_id(session, team_id)
    if holding is not None:
        return ServiceResult.fail(InvalidStateError(HELD_BY_MATCH_MESSAGE.format(match_id=holding)))

    previous = team.status
    values = {}
    if new_status == TeamStatus.COOLDOWN:
        values["cooldown_expires_at"] = now + timedelta(days=COOLDOWN_DAYS)
    if new_status not in (TeamStatus.AVAILABLE, TeamStatus.COOLDOWN):
        values["is_queued"] = False

    try:
        moved = await transition_team(session, team_id, [previous], new_status, **values)
        if not moved:
            await session.rollback()
            return ServiceResult.fail(
                InvalidStateError(TEAM_UPDATED_MESSAGE)
            )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error forcing status of team {team_id}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, "Team was updated concurrently. Please try again."))

    team = await session.get(Team, team_id, populate_existing=True)
    logger.info(
        f"Admin {admin_user_id} forced team {team_id} {previous.value} -> {new_status.value}"
        f"{f': {reason}' if reason else ''}"
    )
    message = f"An admin changed your team status to {new_status.value}."
    if reason:
        message = f"{message} Reason: {reason}"
    await notification_service.emit(
        notification_service.notify_admin_message, team, "Team Status Updated", message, sink=sink
    )
    return ServiceResult.ok(team)


async def toggle_team_active(
    session: AsyncSession,
    team_id: int,
    admin_user_id: Optional[int] = None,
    sink: Optional[NotificationSink] = None,
) -> ServiceResult:
    """Disable a team (INACTIVE) or enable it again (AVAILABLE, or PENDING_PARTNER without a partner)."""
    team = await session.get(Team, team_id, populate_existing=True)
    if team is None:
        return ServiceResult.fail(NotFoundError("Team not found"))

    holding = await holding_match_id(session, team_id)
    if holding is not None:
        return ServiceResult.fail(InvalidStateError(HELD_BY_MATCH_MESSAGE.format(match_id=holding)))

    previous = team.status
    if previous == TeamStatus.INACTIVE:
        new_status = TeamStatus.AVAILABLE if team.has_full_roster else TeamStatus.PENDING_PARTNER
    else:
        new_status = TeamStatus.INACTIVE

    try:
        moved = await transition_team(session, team_id, [previous], new_status, is_queued=False)
        if not moved:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError(TEAM_UPDATED_MESSAGE))
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error toggling team {team_id} active: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, TEAM_UPDATED_MESSAGE))

    team = await session.get(Team, team_id, populate_existing=True)
    enabled = new_status != TeamStatus.INACTIVE
    logger.info(f"Admin {admin_user_id} {'enabled' if enabled else 'disabled'} team {team_id}")
    await notification_service.emit(
        notification_service.notify_admin_message,
        team,
        "Team Enabled" if enabled else "Team Disabled",
        f"An admin has {'enabled' if enabled else 'disabled'} your team.",
        sink=sink,
    )
    return ServiceResult.ok(team)


async def remove_inactive_teams(session: AsyncSession) -> ServiceResult:
    """
    Delete INACTIVE teams that never played.

    Teams with match records are kept so past opponents' history stays
    intact. Returns {"removed": n, "kept": m}.
    """
    try:
        inactive_ids = (
            await session.execute(select(Team.id).where(Team.status == TeamStatus.INACTIVE))
        ).scalars().all()
        rows = []
        if inactive_ids:
            rows = (
                await session.execute(
                    select(Match.team_a_id, Match.team_b_id).where(
                        or_(Match.team_a_id.in_(inactive_ids), Match.team_b_id.in_(inactive_ids))
                    )
                )
            ).all()
        with_history = {team_id for row in rows for team_id in row}
        removable = [team_id for team_id in inactive_ids if team_id not in with_history]

        if removable:
            await session.execute(
                update(Team)
                .where(Team.last_opponent_id.in_(removable))
                .values(last_opponent_id=None)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(Notification)
                .where(Notification.team_id.in_(removable))
                .values(team_id=None)
                .execution_options(synchronize_session=False)
            )
            # Re-checked in the DELETE so a team reactivated since the scan survives
            await session.execute(
                delete(Team)
                .where(Team.id.in_(removable), Team.status == TeamStatus.INACTIVE)
                .execution_options(synchronize_session=False)
            )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error removing inactive teams: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, TEAM_UPDATED_MESSAGE))

    kept = len(inactive_ids) - len(removable)
    logger.info(f"Removed {len(removable)} inactive team(s), kept {kept} with match history")
    return ServiceResult.ok({"removed": len(removable), "kept": kept})


async def force_create_match(
    session: AsyncSession,
    team_a_id: int,
    team_b_id: int,
    mode=MatchMode.COMPETITIVE,
    admin_user_id: Optional[int] = None,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Pair two chosen teams, skipping opponent selection.

    The claim on both teams is the same locked creation captains go through,
    so a team that is already playing (or cooling down, for a competitive
    match) cannot be double-booked. Captains get a MATCH_ASSIGNED notice.
    """
    match_mode = parse_mode(mode)
    if match_mode is None:
        return ServiceResult.fail(ValidationError("Mode must be COMPETITIVE or FRIENDLY"))

    team_a = await session.get(Team, team_a_id, populate_existing=True)
    team_b = await session.get(Team, team_b_id, populate_existing=True)
    if team_a is None or team_b is None:
        return ServiceResult.fail(NotFoundError("One or both teams not found"))

    outcome = await create_match_with_locking(
        session,
        team_a,
        team_b,
        mode=match_mode,
        notification_type=NotificationType.MATCH_ASSIGNED.value,
        sink=sink,
        now=now,
    )
    if outcome.success:
        logger.info(
            f"Admin {admin_user_id} created match {outcome.value['match'].id}: "
            f"team {team_a_id} vs team {team_b_id}"
        )
    return outcome


async def override_match_result(
    session: AsyncSession,
    match_id: int,
    result,
    score: Optional[str] = None,
    reason: Optional[str] = None,
    admin_user_id: Optional[int] = None,
    sink: Optional[NotificationSink] = None,
    now: Optional[datetime] = None,
) -> ServiceResult:
    """
    Record a result on an open match and finalize it immediately.

    `result` is from team A's perspective. Disputed matches go through
    `resolve_dispute` instead.

    Returns:
        ServiceResult with the completed Match
    """
    stored = parse_result(result)
    if stored is None:
        return ServiceResult.fail(ValidationError("Result must be WIN or LOSS"))

    now = now or utcnow()
    match = await session.get(Match, match_id, populate_existing=True)
    if match is None:
        return ServiceResult.fail(NotFoundError("Match not found"))
    if match.status not in OPEN_MATCH_STATUSES:
        return ServiceResult.fail(
            InvalidStateError(f"Cannot override a {match.status.value} match")
        )

    try:
        written = await session.execute(
            update(Match)
            .where(Match.id == match_id, Match.status.in_(OPEN_MATCH_STATUSES))
            .values(
                result=stored,
                score=score.strip() if score and score.strip() else None,
                submitted_by=admin_user_id,
                confirmation_deadline=now,
            )
            .execution_options(synchronize_session=False)
        )
        if written.rowcount != 1:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError(MATCH_UPDATED_MESSAGE))
        # Commits the result together with the finalization
        outcome = await finalize_match_result(
            session, match_id, from_statuses=OPEN_MATCH_STATUSES, now=now
        )
        if not outcome.success:
            await session.rollback()
            return outcome
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error overriding result of match {match_id}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, MATCH_UPDATED_MESSAGE))

    match = outcome.value
    logger.info(f"Admin {admin_user_id} overrode match {match_id}: {stored.value}")
    message = "An admin has recorded the result of your match."
    if reason:
        message = f"{message} Reason: {reason}"
    for team_id in (match.team_a_id, match.team_b_id):
        team = await session.get(Team, team_id, populate_existing=True)
        await notification_service.emit(
            notification_service.notify_admin_message,
            team,
            "Match Result Overridden",
            message,
            match_id=match_id,
            sink=sink,
        )
    return ServiceResult.ok(match)


async def delete_match(
    session: AsyncSession,
    match_id: int,
    admin_user_id: Optional[int] = None,
) -> ServiceResult:
    """
    Delete a match and its dispute.

    If the match still held its teams they are released to AVAILABLE in the
    same transaction. Standings already applied by a completed match stay.
    """
    match = await session.get(Match, match_id, populate_existing=True)
    if match is None:
        return ServiceResult.fail(NotFoundError("Match not found"))

    status = match.status
    team_ids = (match.team_a_id, match.team_b_id)
    dispute = await session.scalar(select(Dispute).where(Dispute.match_id == match_id))
    holds_teams = status in OPEN_MATCH_STATUSES or (
        status == MatchStatus.DISPUTED
        and dispute is not None
        and dispute.status in ACTIVE_DISPUTE_STATUSES
    )

    try:
        await session.execute(
            update(Notification)
            .where(Notification.match_id == match_id)
            .values(match_id=None)
            .execution_options(synchronize_session=False)
        )
        await session.execute(
            delete(Dispute).where(Dispute.match_id == match_id).execution_options(synchronize_session=False)
        )
        removed = await session.execute(
            delete(Match)
            .where(Match.id == match_id, Match.status == status)
            .execution_options(synchronize_session=False)
        )
        if removed.rowcount != 1:
            await session.rollback()
            return ServiceResult.fail(InvalidStateError(MATCH_UPDATED_MESSAGE))
        if holds_teams:
            for team_id in team_ids:
                released = await transition_team(session, team_id, [TeamStatus.IN_MATCH], TeamStatus.AVAILABLE)
                if not released:
                    logger.warning(f"Deleting match {match_id}: team {team_id} was not IN_MATCH")
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Error deleting match {match_id}: {e}", exc_info=True)
        return ServiceResult.fail(error_from_db(e, MATCH_UPDATED_MESSAGE))

    logger.info(f"Admin {admin_user_id} deleted {status.value} match {match_id}")
    return ServiceResult.ok({"match_id": match_id, "released_team_ids": list(team_ids) if holds_teams else []})


def _parse_filter(enum_cls, value, label: str):
    if value is None:
        return None, None
    try:
        return enum_cls(str(value).strip().upper()), None
    except ValueError:
        return None, ServiceResult.fail(ValidationError(f"Unknown {label}: {value}"))


async def list_teams(session: AsyncSession, club_id: Optional[int] = None, status=None) -> ServiceResult:
    """All teams, best first, optionally filtered by club and status."""
    team_status, error = _parse_filter(TeamStatus, status, "team status")
    if error:
        return error
    query = select(Team)
    if club_id is not None:
        query = query.where(Team.club_id == club_id)
    if team_status is not None:
        query = query.where(Team.status == team_status)
    query = query.order_by(Team.points.desc(), Team.id)
    return ServiceResult.ok(list((await session.execute(query)).scalars().all()))


async def list_matches(
    session: AsyncSession,
    club_id: Optional[int] = None,
    status=None,
    limit: int = ADMIN_LIST_LIMIT,
) -> ServiceResult:
    """Newest matches first, optionally filtered by club and status."""
    match_status, error = _parse_filter(MatchStatus, status, "match status")
    if error:
        return error
    query = select(Match)
    if club_id is not None:
        query = query.where(Match.club_id == club_id)
    if match_status is not None:
        query = query.where(Match.status == match_status)
    query = query.order_by(Match.created_at.desc(), Match.id.desc()).limit(limit)
    return ServiceResult.ok(list((await session.execute(query)).scalars().all()))


async def list_disputes(session: AsyncSession, status=None, club_id: Optional[int] = None) -> ServiceResult:
    """Newest disputes first, optionally filtered by status and club."""
    dispute_status, error = _parse_filter(DisputeStatus, status, "dispute status")
    if error:
        return error
    query = select(Dispute)
    if club_id is not None:
        query = query.where(Dispute.club_id == club_id)
    if dispute_status is not None:
        query = query.where(Dispute.status == dispute_status)
    query = query.order_by(Dispute.created_at.desc(), Dispute.id.desc()).limit(ADMIN_LIST_LIMIT)
    return ServiceResult.ok(list((await session.execute(query)).scalars().all()))


async def platform_stats(session: AsyncSession) -> Dict[str, int]:
    """Headline counts for the admin dashboard."""

    async def count(model, *conditions) -> int:
        query = select(func.count()).select_from(model)
        if conditions:
            query = query.where(*conditions)
        return (await session.execute(query)).scalar_one() or 0

    return {
        "total_teams": await count(Team),
        "active_teams": await count(Team, Team.status != TeamStatus.INACTIVE),
        "total_matches": await count(Match),
        "active_matches": await count(Match, Match.status.in_(OPEN_MATCH_STATUSES)),
        "total_disputes": await count(Dispute),
        "pending_disputes": await count(Dispute, Dispute.status.in_(ACTIVE_DISPUTE_STATUSES)),
    }
