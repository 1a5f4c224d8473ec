"""Team availability, queueing and league table route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.api.auth_dependencies import require_user
from padel_league.api.routes import unwrap
from padel_league.database.db import get_db_session
from padel_league.models.schemas import LeagueTableRow, TeamResponse, ToggleUnavailableRequest
from padel_league.services import team_service
from padel_league.services.team_service import team_to_dict

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/teams/me", response_model=Optional[TeamResponse])
async def get_my_team(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """The caller's team, or null."""
    try:
        return await team_service.get_my_team(session, user["id"])
    except Exception as e:
        logger.error(f"Error fetching team for user {user['id']}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching team")


@router.post("/api/teams/{team_id}/toggle-unavailable", response_model=TeamResponse)
async def toggle_unavailable(
    team_id: int,
    payload: Optional[ToggleUnavailableRequest] = Body(None),
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Step out of (or back into) the league, with an optional return date."""
    try:
        return_date = payload.return_date if payload else None
        team = unwrap(await team_service.toggle_unavailable(session, team_id, user["id"], return_date))
        return team_to_dict(team)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error toggling availability for team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating availability")


@router.post("/api/teams/{team_id}/queue-next", response_model=TeamResponse)
async def toggle_queue(
    team_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Queue a cooling-down team to be matched automatically when the cooldown ends."""
    try:
        team = unwrap(await team_service.toggle_queue(session, team_id, user["id"]))
        return team_to_dict(team)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error toggling queue for team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating queue")


@router.get("/api/teams/league/{club_id}", response_model=List[LeagueTableRow])
async def get_league_table(
    club_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Club standings."""
    try:
        return await team_service.get_league_table(session, club_id)
    except Exception as e:
        logger.error(f"Error fetching league table for club {club_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching league table")
