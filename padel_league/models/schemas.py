"""
Pydantic models for API request/response validation.

Request fields that carry league values (result, resolution, status) are
plain strings: the services validate them so the caller gets the league's
own error message instead of a generic 422.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, model_validator


# Team schemas
class TeamResponse(BaseModel):
    """Team with matchmaking state and standings."""

    model_config = ConfigDict(from_attributes=True)
    id: int
    club_id: int
    name: str
    captain_id: int
    player_2_id: Optional[int] = None
    experience_level: Optional[str] = None
    mode: Optional[str] = None
    squad_size: Optional[str] = None
    status: str
    cooldown_expires_at: Optional[str] = None
    cooldown_days_remaining: int = 0
    unavailable_return_date: Optional[str] = None
    is_queued: bool = False
    points: int = 0
    wins: int = 0
    losses: int = 0
    matches_played: int = 0
    last_match_completed_at: Optional[str] = None


class LeagueTableRow(TeamResponse):
    position: int


class ToggleUnavailableRequest(BaseModel):
    """Optional return date when stepping out."""

    return_date: Optional[datetime] = None


# Match schemas
class MatchResponse(BaseModel):
    """Match as seen by captains."""

    id: int
    club_id: int
    team_a_id: int
    team_b_id: int
    team_a_name: Optional[str] = None
    team_b_name: Optional[str] = None
    status: str
    mode: str
    result: Optional[str] = None
    score: Optional[str] = None
    submitted_by: Optional[int] = None
    confirmation_deadline: Optional[str] = None
    week_cycle: int
    match_deadline: Optional[str] = None
    completed_at: Optional[str] = None
    auto_confirmed: bool = False
    created_at: Optional[str] = None


class FindMatchResponse(BaseModel):
    """Result of a successful matchmaking request."""

    match: MatchResponse
    opponent: TeamResponse


class SubmitResultRequest(BaseModel):
    """Result from the submitting captain's perspective."""

    result: str = Field(..., description="WIN or LOSS")
    score: Optional[str] = Field(None, max_length=100)


class DisputeRequest(BaseModel):
    reason: Optional[str] = None


class DisputeResponse(BaseModel):
    id: int
    match_id: int
    disputed_by: int
    disputing_team_id: int
    reason: str
    status: str
    resolution: Optional[str] = None
    admin_notes: Optional[str] = None
    final_result: Optional[str] = None
    final_score: Optional[str] = None
    resolved_at: Optional[str] = None
    created_at: Optional[str] = None


# Admin schemas
class ResolveDisputeRequest(BaseModel):
    """Admin decision on a dispute."""

    resolution: str
    final_score: Optional[str] = None
    admin_notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_notes_for_other(self):
        """An OTHER decision must say what was decided."""
        if self.resolution.strip().upper() == "OTHER" and not (self.admin_notes or "").strip():
            raise ValueError("admin_notes are required for an OTHER resolution")
        return self


class ForceTeamStatusRequest(BaseModel):
    status: str
    reason: Optional[str] = None


class ForceCreateMatchRequest(BaseModel):
    """Two teams of the same club to pair directly."""

    team_a_id: int
    team_b_id: int
    mode: str = "COMPETITIVE"


class ForceCreateMatchResponse(BaseModel):
    match: MatchResponse
    team_a: TeamResponse
    team_b: TeamResponse


class OverrideMatchResultRequest(BaseModel):
    """Result from team A's perspective."""

    result: str = Field(..., description="WIN or LOSS for team A")
    score: Optional[str] = Field(None, max_length=100)
    reason: Optional[str] = None


class DeleteMatchResponse(BaseModel):
    match_id: int
    released_team_ids: List[int]


class RemoveInactiveTeamsResponse(BaseModel):
    removed: int
    kept: int


class PlatformStatsResponse(BaseModel):
    total_teams: int
    active_teams: int
    total_matches: int
    active_matches: int
    total_disputes: int
    pending_disputes: int


# Notification schemas
class NotificationResponse(BaseModel):
    """Notification response."""

    model_config = ConfigDict(from_attributes=True)
    id: int
    user_id: int
    type: str
    title: str
    message: str
    match_id: Optional[int] = None
    team_id: Optional[int] = None
    action_url: Optional[str] = None
    is_read: bool
    read_at: Optional[str] = None
    created_at: Optional[str] = None


class NotificationListResponse(BaseModel):
    """Paginated notification list response."""

    notifications: List[NotificationResponse]
    total_count: int
    has_more: bool


class UnreadCountResponse(BaseModel):
    """Unread notification count response."""

    count: int
