"""Admin route handlers: disputes, team and match tooling, listings, platform stats."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.api.auth_dependencies import require_admin
from padel_league.api.routes import unwrap
from padel_league.database.db import get_db_session
from padel_league.models.schemas import (
    DeleteMatchResponse,
    DisputeResponse,
    ForceCreateMatchRequest,
    ForceCreateMatchResponse,
    ForceTeamStatusRequest,
    MatchResponse,
    OverrideMatchResultRequest,
    PlatformStatsResponse,
    RemoveInactiveTeamsResponse,
    ResolveDisputeRequest,
    TeamResponse,
)
from padel_league.services import admin_service
from padel_league.services.match_service import dispute_to_dict, match_to_dict
from padel_league.services.team_service import team_to_dict

logger = logging.getLogger(__name__)
router = APIRouter()


@router.put("/api/admin/disputes/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: int,
    payload: ResolveDisputeRequest,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Resolve a dispute.

    Request body:
        {
            "resolution": "UPHOLD_ORIGINAL",  // or REVERSE_RESULT, VOID_MATCH, OTHER
            "final_score": "6-4 6-4",         // Optional
            "admin_notes": "..."              // Required for OTHER
        }
    """
    try:
        dispute = unwrap(
            await admin_service.resolve_dispute(
                session,
                dispute_id,
                admin["id"],
                payload.resolution,
                final_score=payload.final_score,
                admin_notes=payload.admin_notes,
            )
        )
        return dispute_to_dict(dispute)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error resolving dispute {dispute_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error resolving dispute")


@router.put("/api/admin/teams/{team_id}/status", response_model=TeamResponse)
async def force_team_status(
    team_id: int,
    payload: ForceTeamStatusRequest,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Override a team's status (e.g. reactivate an INACTIVE team)."""
    try:
        team = unwrap(
            await admin_service.force_team_status(
                session, team_id, payload.status, reason=payload.reason, admin_user_id=admin["id"]
            )
        )
        return team_to_dict(team)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error forcing status of team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating team status")


@router.get("/api/admin/stats", response_model=PlatformStatsResponse)
async def get_platform_stats(
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await admin_service.platform_stats(session)
    except Exception as e:
        logger.error(f"Error fetching platform stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching platform stats")


@router.get("/api/admin/disputes", response_model=List[DisputeResponse])
async def list_disputes(
    status: Optional[str] = None,
    club_id: Optional[int] = None,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Newest disputes first. Query params: status (PENDING, ...), club_id."""
    try:
        disputes = unwrap(await admin_service.list_disputes(session, status=status, club_id=club_id))
        return [dispute_to_dict(d) for d in disputes]
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing disputes: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching disputes")


@router.get("/api/admin/teams", response_model=List[TeamResponse])
async def list_teams(
    club_id: Optional[int] = None,
    status: Optional[str] = None,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        teams = unwrap(await admin_service.list_teams(session, club_id=club_id, status=status))
        return [team_to_dict(t) for t in teams]
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing teams: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching teams")


@router.post("/api/admin/teams/{team_id}/toggle-active", response_model=TeamResponse)
async def toggle_team_active(
    team_id: int,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Disable a team, or enable a disabled one."""
    try:
        team = unwrap(await admin_service.toggle_team_active(session, team_id, admin_user_id=admin["id"]))
        return team_to_dict(team)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error toggling team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating team")


@router.delete("/api/admin/teams/remove-inactive", response_model=RemoveInactiveTeamsResponse)
async def remove_inactive_teams(
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete INACTIVE teams without match history."""
    try:
        return unwrap(await admin_service.remove_inactive_teams(session))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error removing inactive teams: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error removing inactive teams")


@router.get("/api/admin/matches", response_model=List[MatchResponse])
async def list_matches(
    club_id: Optional[int] = None,
    status: Optional[str] = None,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """The 100 newest matches. Query params: club_id, status."""
    try:
        matches = unwrap(await admin_service.list_matches(session, club_id=club_id, status=status))
        return [match_to_dict(m) for m in matches]
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing matches: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching matches")


@router.post("/api/admin/matches/force-create", response_model=ForceCreateMatchResponse, status_code=201)
async def force_create_match(
    payload: ForceCreateMatchRequest,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Pair two teams directly.

    Request body:
        {
            "team_a_id": 1,
            "team_b_id": 2,
            "mode": "COMPETITIVE"  // or FRIENDLY
        }
    """
    try:
        created = unwrap(
            await admin_service.force_create_match(
                session, payload.team_a_id, payload.team_b_id, mode=payload.mode, admin_user_id=admin["id"]
            )
        )
        return {
            "match": match_to_dict(created["match"], created["team_a"], created["team_b"]),
            "team_a": team_to_dict(created["team_a"]),
            "team_b": team_to_dict(created["team_b"]),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error force creating match: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating match")


@router.put("/api/admin/matches/{match_id}/override", response_model=MatchResponse)
async def override_match_result(
    match_id: int,
    payload: OverrideMatchResultRequest,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Record a result (team A's perspective) on an open match and finalize it."""
    try:
        match = unwrap(
            await admin_service.override_match_result(
                session,
                match_id,
                payload.result,
                score=payload.score,
                reason=payload.reason,
                admin_user_id=admin["id"],
            )
        )
        return match_to_dict(match)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error overriding match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error overriding match result")


@router.delete("/api/admin/matches/{match_id}", response_model=DeleteMatchResponse)
async def delete_match(
    match_id: int,
    admin: dict = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return unwrap(await admin_service.delete_match(session, match_id, admin_user_id=admin["id"]))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error deleting match")
