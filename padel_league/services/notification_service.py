"""
Notification service for managing user notifications.

Notification rows are written inside the caller's transaction and act as a
durable outbox. Delivery to the live sink happens only after commit
(`deliver_pending_notifications`), and anything that fails to deliver is
retried by the redelivery sweep, so delivery is at-least-once and a delivery
failure never rolls back the state change that produced the notification.
"""

from typing import Awaitable, Callable, List, Dict, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_
from padel_league.database import db
from padel_league.database.models import (
    Dispute,
    Match,
    MatchMode,
    MatchResult,
    Notification,
    NotificationType,
    Team,
)
from padel_league.services.websocket_manager import NotificationSink, get_websocket_manager
from padel_league.utils.constants import CONFIRMATION_WINDOW_HOURS, COOLDOWN_DAYS, INACTIVITY_DAYS
from padel_league.utils.datetime_utils import utcnow
import logging

logger = logging.getLogger(__name__)

DASHBOARD_URL = "/dashboard"


def _notification_to_dict(notification: Notification) -> Dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "match_id": notification.match_id,
        "team_id": notification.team_id,
        "action_url": notification.action_url,
        "is_read": notification.is_read,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


async def create_notification(
    session: AsyncSession,
    user_id: int,
    type: str,
    title: str,
    message: str,
    match_id: Optional[int] = None,
    team_id: Optional[int] = None,
    action_url: Optional[str] = None,
) -> Dict:
    """
    Queue a notification for a user inside the current transaction.

    Args:
        session: Database session (only flushed here; the caller commits)
        user_id: ID of the user to notify
        type: Notification type (NotificationType enum value)
        title: Notification title
        message: Notification message text
        match_id: Optional related match
        team_id: Optional related team
        action_url: Optional URL for navigation when notification is clicked

    Returns:
        Dict containing the created notification data

    Raises:
        ValueError: If required fields are missing or invalid
    """
    if not user_id:
        raise ValueError("user_id is required")
    if not type:
        raise ValueError("type is required")
    if not title:
        raise ValueError("title is required")
    if not message:
        raise ValueError("message is required")

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        match_id=match_id,
        team_id=team_id,
        action_url=action_url,
        is_read=False,
    )
    session.add(notification)
    await session.flush()
    await session.refresh(notification)
    return _notification_to_dict(notification)


async def deliver_pending_notifications(
    sink: Optional[NotificationSink] = None,
    notification_ids: Optional[Sequence[int]] = None,
    user_id: Optional[int] = None,
    limit: int = 200,
) -> int:
    """
    Push committed, undelivered notifications to the sink and stamp them.

    Runs in its own session so it can only ever be called after the
    producing transaction committed. A notification whose publish fails or
    reaches no live connection stays undelivered for the next attempt.

    Args:
        sink: Delivery target (defaults to the WebSocket manager)
        notification_ids: Restrict delivery to these notifications
        user_id: Restrict delivery to one recipient
        limit: Maximum notifications to process in one call

    Returns:
        Number of notifications delivered
    """
    sink = sink or get_websocket_manager()
    delivered = 0

    async with db.AsyncSessionLocal() as session:
        query = select(Notification).where(Notification.delivered_at.is_(None))
        if notification_ids is not None:
            if not notification_ids:
                return 0
            query = query.where(Notification.id.in_(list(notification_ids)))
        if user_id is not None:
            query = query.where(Notification.user_id == user_id)
        query = query.order_by(Notification.id).limit(limit)
        pending = (await session.execute(query)).scalars().all()

        for notification in pending:
            try:
                sent = await sink.publish(
                    notification.user_id,
                    {"type": "notification", "notification": _notification_to_dict(notification)},
                )
            except Exception as e:
                logger.warning(
                    f"Failed to publish notification {notification.id} to user {notification.user_id}: {e}"
                )
                continue
            if sent:
                notification.delivered_at = utcnow()
                delivered += 1

        await session.commit()

    return delivered


async def emit(
    notify: Callable[..., Awaitable[List[Dict]]],
    *args,
    sink: Optional[NotificationSink] = None,
    **kwargs,
) -> List[Dict]:
    """
    Fire-and-forget: run a notify_* helper in its own transaction, then deliver.

    Used after a state transition has already committed. Errors are logged and
    swallowed so notification trouble can never undo the transition.
    """
    try:
        async with db.AsyncSessionLocal() as session:
            created = await notify(session, *args, **kwargs)
            await session.commit()
    except Exception as e:
        logger.warning(f"Failed to record {notify.__name__} notification: {e}", exc_info=True)
        return []

    try:
        await deliver_pending_notifications(sink=sink, notification_ids=[n["id"] for n in created])
    except Exception as e:
        logger.warning(f"Failed to deliver {notify.__name__} notification: {e}")
    return created


# ---------------------------------------------------------------------------
# Domain notifications
# ---------------------------------------------------------------------------


async def notify_match_created(
    session: AsyncSession,
    match: Match,
    team_a: Team,
    team_b: Team,
    notification_type: str = NotificationType.MATCH_CREATED.value,
) -> List[Dict]:
    """Tell both captains about a new match (called inside the creating transaction)."""
    if notification_type == NotificationType.MATCH_ASSIGNED.value:
        title, verb = "Match Assigned by Admin", "assigned a match against"
    else:
        title, verb = "Match Found!", "matched with"

    created = []
    for team, opponent in ((team_a, team_b), (team_b, team_a)):
        created.append(
            await create_notification(
                session,
                user_id=team.captain_id,
                type=notification_type,
                title=title,
                message=(
                    f'Your team "{team.name}" has been {verb} "{opponent.name}". '
                    f"Get in touch to schedule your game."
                ),
                match_id=match.id,
                team_id=team.id,
                action_url=DASHBOARD_URL,
            )
        )
    return created


async def notify_result_submitted(
    session: AsyncSession,
    match: Match,
    submitting_team: Team,
    opposing_team: Team,
    reported_result: MatchResult,
) -> List[Dict]:
    """Ask the opposing captain to confirm a submitted result."""
    result_text = "won" if reported_result == MatchResult.WIN else "lost"
    return [
        await create_notification(
            session,
            user_id=opposing_team.captain_id,
            type=NotificationType.RESULT_SUBMITTED.value,
            title="Match Result Submitted",
            message=(
                f"{submitting_team.name} reported they {result_text}. Please confirm within "
                f"{CONFIRMATION_WINDOW_HOURS} hours or the result will stand automatically."
            ),
            match_id=match.id,
            team_id=opposing_team.id,
            action_url=DASHBOARD_URL,
        )
    ]


async def notify_result_confirmed(
    session: AsyncSession,
    match: Match,
    team_a: Team,
    team_b: Team,
    auto_confirmed: bool = False,
) -> List[Dict]:
    """Tell both captains the result is final."""
    if auto_confirmed:
        notification_type = NotificationType.RESULT_AUTO_CONFIRMED.value
        title = "Match Result Auto-Confirmed"
        verb = "auto-confirmed"
    else:
        notification_type = NotificationType.RESULT_CONFIRMED.value
        title = "Match Result Confirmed"
        verb = "confirmed"

    created = []
    for team in (team_a, team_b):
        if match.mode == MatchMode.COMPETITIVE:
            tail = (
                f"Your team now has {team.points} points. "
                f"You're now in a {COOLDOWN_DAYS}-day cooldown period."
            )
        else:
            tail = "You're available for your next game."
        created.append(
            await create_notification(
                session,
                user_id=team.captain_id,
                type=notification_type,
                title=title,
                message=f"Your match result has been {verb}. {tail}",
                match_id=match.id,
                team_id=team.id,
            )
        )
    return created


async def notify_cooldown_expired(session: AsyncSession, team: Team) -> List[Dict]:
    return [
        await create_notification(
            session,
            user_id=team.captain_id,
            type=NotificationType.COOLDOWN_EXPIRED.value,
            title="Cooldown Period Ended",
            message=f'Your team "{team.name}" is now available for matchmaking. Find your next match!',
            team_id=team.id,
            action_url=DASHBOARD_URL,
        )
    ]


async def notify_team_inactive(session: AsyncSession, team: Team) -> List[Dict]:
    return [
        await create_notification(
            session,
            user_id=team.captain_id,
            type=NotificationType.TEAM_INACTIVE.value,
            title="Team Marked Inactive",
            message=(
                f'Your team "{team.name}" has been marked inactive due to {INACTIVITY_DAYS} days '
                f"of inactivity. Contact an admin to reactivate."
            ),
            team_id=team.id,
            action_url=DASHBOARD_URL,
        )
    ]


async def notify_unavailable_reminder(session: AsyncSession, team: Team) -> List[Dict]:
    return [
        await create_notification(
            session,
            user_id=team.captain_id,
            type=NotificationType.UNAVAILABLE_REMINDER.value,
            title="Ready to Return?",
            message=(
                f'Your team "{team.name}" return date has arrived. '
                f"Update your availability status to start playing again."
            ),
            team_id=team.id,
            action_url=DASHBOARD_URL,
        )
    ]


async def notify_dispute_created(
    session: AsyncSession, match: Match, dispute: Dispute, opposing_team: Team
) -> List[Dict]:
    return [
        await create_notification(
            session,
            user_id=opposing_team.captain_id,
            type=NotificationType.DISPUTE_CREATED.value,
            title="Match Result Disputed",
            message="Your opponent disputed the submitted result. An admin will review the match.",
            match_id=match.id,
            team_id=opposing_team.id,
        )
    ]


async def notify_dispute_resolved(
    session: AsyncSession, dispute: Dispute, admin_notes: Optional[str] = None
) -> List[Dict]:
    message = f"Admin has resolved your dispute. Resolution: {dispute.resolution.value}."
    if admin_notes:
        message = f"{message} {admin_notes}"
    return [
        await create_notification(
            session,
            user_id=dispute.disputed_by,
            type=NotificationType.DISPUTE_RESOLVED.value,
            title="Dispute Resolved",
            message=message,
            match_id=dispute.match_id,
        )
    ]


async def notify_admin_message(
    session: AsyncSession, team: Team, title: str, message: str, match_id: Optional[int] = None
) -> List[Dict]:
    return [
        await create_notification(
            session,
            user_id=team.captain_id,
            type=NotificationType.ADMIN_MESSAGE.value,
            title=title,
            message=message,
            match_id=match_id,
            team_id=team.id,
        )
    ]


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


async def get_user_notifications(
    session: AsyncSession,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    unread_only: bool = False
) -> Dict:
    """
    Fetch user notifications with pagination.

    Returns:
        Dict containing:
            - notifications: List of notification dicts (newest first)
            - total_count: Total number of notifications matching the criteria
            - has_more: Boolean indicating if there are more notifications
    """
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read == False)  # noqa: E712

    total_result = await session.execute(select(func.count()).select_from(query.subquery()))
    total_count = total_result.scalar_one() or 0

    query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).offset(offset)
    notifications = (await session.execute(query)).scalars().all()
    notification_dicts = [_notification_to_dict(n) for n in notifications]

    return {
        "notifications": notification_dicts,
        "total_count": total_count,
        "has_more": (offset + len(notification_dicts)) < total_count,
    }


async def get_unread_count(session: AsyncSession, user_id: int) -> int:
    """Get count of unread notifications for a user."""
    result = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(and_(Notification.user_id == user_id, Notification.is_read == False))  # noqa: E712
    )
    return result.scalar_one() or 0


async def mark_as_read(session: AsyncSession, notification_id: int, user_id: int) -> Dict:
    """
    Mark a single notification as read.

    Raises:
        ValueError: If notification not found or doesn't belong to user
    """
    result = await session.execute(
        select(Notification).where(
            and_(Notification.id == notification_id, Notification.user_id == user_id)
        )
    )
    notification = result.scalar_one_or_none()
    if not notification:
        raise ValueError(f"Notification {notification_id} not found")

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        await session.commit()
        await session.refresh(notification)
    return _notification_to_dict(notification)


async def mark_all_as_read(session: AsyncSession, user_id: int) -> int:
    """Mark all of a user's notifications as read. Returns the number updated."""
    result = await session.execute(
        update(Notification)
        .where(and_(Notification.user_id == user_id, Notification.is_read == False))  # noqa: E712
        .values(is_read=True, read_at=utcnow())
    )
    await session.commit()
    return result.rowcount or 0
