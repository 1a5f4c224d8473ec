"""
Matchmaking eligibility rules.

Pure functions with no I/O: safe to call concurrently and from any layer.
A positive answer is only a snapshot; the write paths re-check status at
commit time through the conditional team update.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Collection, Optional, Tuple

from padel_league.database.models import MatchMode, Team, TeamStatus
from padel_league.utils.datetime_utils import days_remaining


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: str


ELIGIBLE = Eligibility(True, "Eligible")


def allowed_statuses(is_friendly: bool) -> Tuple[TeamStatus, ...]:
    """Statuses from which a team may enter a match in the given mode."""
    if is_friendly:
        return (TeamStatus.AVAILABLE, TeamStatus.COOLDOWN)
    return (TeamStatus.AVAILABLE,)


def allowed_statuses_for_mode(mode: MatchMode) -> Tuple[TeamStatus, ...]:
    return allowed_statuses(mode == MatchMode.FRIENDLY)


def is_team_eligible(
    team: Team,
    disputed_team_ids: Collection[int] = (),
    is_friendly: bool = False,
    now: Optional[datetime] = None,
) -> Eligibility:
    """
    Decide whether a team may take part in matchmaking right now.

    Rules are checked in a fixed order and the first failure is reported, so
    the reason is the most useful one to show a captain.

    Args:
        team: Team to evaluate
        disputed_team_ids: Ids of teams involved in an open dispute
        is_friendly: Friendly play ignores cooldown
        now: Reference time for the cooldown message

    Returns:
        Eligibility(eligible, reason)
    """
    if not team.has_full_roster:
        return Eligibility(False, "Partner required")

    if not team.name or not team.name.strip():
        return Eligibility(False, "Team name required")

    if team.status == TeamStatus.IN_MATCH:
        return Eligibility(False, "Already in an active match")

    if team.status == TeamStatus.COOLDOWN and not is_friendly:
        remaining = days_remaining(team.cooldown_expires_at, now)
        return Eligibility(False, f"In cooldown for {remaining} more days")

    if team.status == TeamStatus.UNAVAILABLE:
        return Eligibility(False, "Team marked as unavailable")

    if team.status == TeamStatus.INACTIVE:
        return Eligibility(False, "Team is inactive")

    if team.id in disputed_team_ids:
        return Eligibility(False, "Team has an active dispute")

    if team.status not in allowed_statuses(is_friendly):
        return Eligibility(False, f"Team is currently {team.status.value}")

    return ELIGIBLE
