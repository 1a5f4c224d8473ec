"""
Conditional team-status primitive.

Every write to Team.status in the application goes through
`transition_team`: the UPDATE only matches while the team is still in one of
the expected statuses, so concurrent writers serialise on the row and the
loser sees zero matched rows instead of overwriting the winner.
"""

from typing import Iterable, Optional
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.database.models import Team, TeamStatus

logger = logging.getLogger(__name__)


async def transition_team(
    session: AsyncSession,
    team_id: int,
    from_statuses: Iterable[TeamStatus],
    to_status: TeamStatus,
    extra_conditions: Optional[list] = None,
    **values,
) -> bool:
    """
    Compare-and-swap a team's status inside the caller's transaction.

    Args:
        session: Database session (the caller owns commit/rollback)
        team_id: Team to update
        from_statuses: Statuses the team must currently be in
        to_status: New status
        extra_conditions: Additional WHERE clauses the row must satisfy
        **values: Other columns to set in the same statement

    Returns:
        True if the row matched and was updated, False otherwise
    """
    from_statuses = list(from_statuses)
    if to_status != TeamStatus.COOLDOWN and "cooldown_expires_at" not in values:
        # cooldown_expires_at is set iff status == COOLDOWN
        values["cooldown_expires_at"] = None

    conditions = [Team.id == team_id, Team.status.in_(from_statuses)]
    if extra_conditions:
        conditions.extend(extra_conditions)

    result = await session.execute(
        update(Team)
        .where(*conditions)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    matched = result.rowcount == 1
    if matched:
        logger.debug(
            f"Team {team_id}: {[s.value for s in from_statuses]} -> {to_status.value}"
        )
    return matched
