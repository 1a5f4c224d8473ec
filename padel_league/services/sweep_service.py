"""
Time-driven sweeps: state transitions that are due because time elapsed.

Each sweep collects candidate ids in one short read, then handles every item
in its own session and transaction. A failing item is logged and skipped, so
one bad row never aborts the batch. Every write is conditioned on the row
still being in the triggering state, which makes a second run of the same
sweep a no-op for anything the first run already handled.

All sweeps return a summary dict; the scheduler only logs it.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional
import logging

from sqlalchemy import and_, func, select

from padel_league.database import db
from padel_league.database.models import (
    Match,
    MatchStatus,
    Notification,
    NotificationType,
    Team,
    TeamStatus,
)
from padel_league.services import matchmaking_service, notification_service
from padel_league.services.errors import InvalidStateError, NoOpponentError
from padel_league.services.result_service import finalize_match_result
from padel_league.services.team_state import transition_team
from padel_league.services.websocket_manager import NotificationSink
from padel_league.utils.constants import INACTIVITY_DAYS
from padel_league.utils.datetime_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)


async def _ids(query) -> List[int]:
    async with db.AsyncSessionLocal() as session:
        result = await session.execute(query)
        return list(result.scalars().all())


async def auto_confirm_matches(
    now: Optional[datetime] = None, sink: Optional[NotificationSink] = None
) -> Dict[str, int]:
    """Finalize every match whose confirmation window has closed."""
    now = now or utcnow()
    match_ids = await _ids(
        select(Match.id)
        .where(
            Match.status == MatchStatus.AWAITING_CONFIRMATION,
            Match.confirmation_deadline <= now,
        )
        .order_by(Match.id)
    )
    logger.info(f"Auto-confirm sweep: {len(match_ids)} match(es) past confirmation deadline")

    confirmed = skipped = failed = 0
    for match_id in match_ids:
        try:
            async with db.AsyncSessionLocal() as session:
                outcome = await finalize_match_result(session, match_id, auto_confirmed=True, now=now)
                if not outcome.success:
                    if isinstance(outcome.error, InvalidStateError):
                        # Confirmed or disputed since the scan
                        skipped += 1
                        logger.info(f"Auto-confirm skipped match {match_id}: {outcome.message}")
                    else:
                        failed += 1
                        logger.error(f"Auto-confirm failed for match {match_id}: {outcome.message}")
                    continue
                match = outcome.value
                team_a = await session.get(Team, match.team_a_id, populate_existing=True)
                team_b = await session.get(Team, match.team_b_id, populate_existing=True)
            confirmed += 1
            logger.info(f"Auto-confirmed match {match_id}")
            await notification_service.emit(
                notification_service.notify_result_confirmed, match, team_a, team_b, True, sink=sink
            )
        except Exception as e:
            failed += 1
            logger.error(f"Auto-confirm failed for match {match_id}: {e}", exc_info=True)

    summary = {"confirmed": confirmed, "skipped": skipped, "failed": failed}
    logger.info(f"Auto-confirm sweep complete: {summary}")
    return summary


async def _try_queued_match(team_id: int, now: datetime, sink: Optional[NotificationSink]) -> bool:
    """One matchmaking attempt for a queued team. True when a match was created."""
    async with db.AsyncSessionLocal() as session:
        outcome = await matchmaking_service.attempt_queued_match(session, team_id, sink=sink, now=now)
    if outcome.success:
        logger.info(f"Queued team {team_id} matched into match {outcome.value['match'].id}")
        return True
    if isinstance(outcome.error, NoOpponentError):
        logger.info(f"Queued team {team_id}: no opponent yet, stays queued")
    else:
        logger.warning(f"Queued matchmaking for team {team_id} failed: {outcome.message}")
    return False


async def expire_cooldowns(
    now: Optional[datetime] = None, sink: Optional[NotificationSink] = None
) -> Dict[str, int]:
    """
    Release teams whose cooldown has elapsed, then matchmake for queued ones.

    The queue flag is only cleared by a successful match creation, so a queued
    team with no opponent today is retried by the next run.
    """
    now = now or utcnow()
    team_ids = await _ids(
        select(Team.id)
        .where(Team.status == TeamStatus.COOLDOWN, Team.cooldown_expires_at <= now)
        .order_by(Team.id)
    )
    logger.info(f"Cooldown sweep: {len(team_ids)} team(s) with expired cooldown")

    expired = matched = failed = 0
    for team_id in team_ids:
        try:
            async with db.AsyncSessionLocal() as session:
                released = await transition_team(
                    session,
                    team_id,
                    [TeamStatus.COOLDOWN],
                    TeamStatus.AVAILABLE,
                    extra_conditions=[Team.cooldown_expires_at <= now],
                )
                if not released:
                    await session.rollback()
                    continue
                await session.commit()
                team = await session.get(Team, team_id, populate_existing=True)

            expired += 1
            logger.info(f"Cooldown expired for team {team_id}")
            await notification_service.emit(notification_service.notify_cooldown_expired, team, sink=sink)

            if team.is_queued and await _try_queued_match(team_id, now, sink):
                matched += 1
        except Exception as e:
            failed += 1
            logger.error(f"Cooldown expiry failed for team {team_id}: {e}", exc_info=True)

    summary = {"expired": expired, "matched": matched, "failed": failed}
    logger.info(f"Cooldown sweep complete: {summary}")
    return summary


async def detect_inactive_teams(
    now: Optional[datetime] = None, sink: Optional[NotificationSink] = None
) -> Dict[str, int]:
    """Mark AVAILABLE/COOLDOWN teams with no completed match in INACTIVITY_DAYS as INACTIVE."""
    now = now or utcnow()
    cutoff = now - timedelta(days=INACTIVITY_DAYS)
    idle_since = func.coalesce(Team.last_match_completed_at, Team.created_at)
    stale = and_(
        Team.status.in_([TeamStatus.AVAILABLE, TeamStatus.COOLDOWN]),
        idle_since <= cutoff,
    )
    team_ids = await _ids(select(Team.id).where(stale).order_by(Team.id))
    logger.info(f"Inactivity sweep: {len(team_ids)} team(s) idle since before {cutoff.isoformat()}")

    deactivated = failed = 0
    for team_id in team_ids:
        try:
            async with db.AsyncSessionLocal() as session:
                moved = await transition_team(
                    session,
                    team_id,
                    [TeamStatus.AVAILABLE, TeamStatus.COOLDOWN],
                    TeamStatus.INACTIVE,
                    extra_conditions=[idle_since <= cutoff],
                    is_queued=False,
                )
                if not moved:
                    await session.rollback()
                    continue
                await session.commit()
                team = await session.get(Team, team_id, populate_existing=True)

            deactivated += 1
            logger.info(f"Team {team_id} marked inactive")
            await notification_service.emit(notification_service.notify_team_inactive, team, sink=sink)
        except Exception as e:
            failed += 1
            logger.error(f"Inactivity check failed for team {team_id}: {e}", exc_info=True)

    summary = {"deactivated": deactivated, "failed": failed}
    logger.info(f"Inactivity sweep complete: {summary}")
    return summary


async def retry_queued_teams(
    now: Optional[datetime] = None, sink: Optional[NotificationSink] = None
) -> Dict[str, int]:
    """Re-attempt matchmaking for every AVAILABLE team still flagged as queued."""
    now = now or utcnow()
    team_ids = await _ids(
        select(Team.id)
        .where(Team.status == TeamStatus.AVAILABLE, Team.is_queued.is_(True))
        .order_by(Team.id)
    )
    logger.info(f"Queued-retry sweep: {len(team_ids)} queued team(s)")

    matched = unmatched = failed = 0
    for team_id in team_ids:
        try:
            if await _try_queued_match(team_id, now, sink):
                matched += 1
            else:
                unmatched += 1
        except Exception as e:
            failed += 1
            logger.error(f"Queued retry failed for team {team_id}: {e}", exc_info=True)

    summary = {"matched": matched, "unmatched": unmatched, "failed": failed}
    logger.info(f"Queued-retry sweep complete: {summary}")
    return summary


async def send_return_reminders(
    now: Optional[datetime] = None, sink: Optional[NotificationSink] = None
) -> Dict[str, int]:
    """Remind UNAVAILABLE teams whose return date is today (UTC)."""
    now = ensure_utc(now or utcnow())
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = day_start + timedelta(days=1)

    async with db.AsyncSessionLocal() as session:
        result = await session.execute(
            select(Team)
            .where(
                Team.status == TeamStatus.UNAVAILABLE,
                Team.unavailable_return_date >= day_start,
                Team.unavailable_return_date < day_end,
            )
            .order_by(Team.id)
        )
        teams = result.scalars().all()
        already_reminded = set(
            (
                await session.execute(
                    select(Notification.team_id).where(
                        Notification.type == NotificationType.UNAVAILABLE_REMINDER.value,
                        Notification.created_at >= day_start,
                    )
                )
            ).scalars().all()
        )
    teams = [team for team in teams if team.id not in already_reminded]
    logger.info(f"Return-reminder sweep: {len(teams)} team(s) due back today")

    reminded = failed = 0
    for team in teams:
        created = await notification_service.emit(
            notification_service.notify_unavailable_reminder, team, sink=sink
        )
        if created:
            reminded += 1
        else:
            failed += 1

    summary = {"reminded": reminded, "failed": failed}
    logger.info(f"Return-reminder sweep complete: {summary}")
    return summary


async def redeliver_notifications(
    now: Optional[datetime] = None, sink: Optional[NotificationSink] = None
) -> Dict[str, int]:
    """Push notifications that were committed but never reached a live connection."""
    async with db.AsyncSessionLocal() as session:
        pending = (
            await session.execute(
                select(func.count()).select_from(Notification).where(Notification.delivered_at.is_(None))
            )
        ).scalar_one()
    if not pending:
        return {"pending": 0, "delivered": 0}

    delivered = await notification_service.deliver_pending_notifications(sink=sink)
    summary = {"pending": pending, "delivered": delivered}
    logger.info(f"Notification redelivery: {summary}")
    return summary
