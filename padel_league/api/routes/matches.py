"""Matchmaking and match lifecycle route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from padel_league.api.auth_dependencies import require_user
from padel_league.api.routes import MATCHMAKING_RATE_LIMIT, limiter, unwrap
from padel_league.database.db import get_db_session
from padel_league.models.schemas import (
    DisputeRequest,
    DisputeResponse,
    FindMatchResponse,
    MatchResponse,
    SubmitResultRequest,
)
from padel_league.services import match_service, matchmaking_service
from padel_league.services.match_service import dispute_to_dict, match_to_dict
from padel_league.services.team_service import team_to_dict

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/matches/find/{team_id}", response_model=FindMatchResponse)
@limiter.limit(MATCHMAKING_RATE_LIMIT)
async def find_match(
    request: Request,
    team_id: int,
    mode: str = "COMPETITIVE",
    experience: Optional[str] = None,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Find an opponent for the captain's team and create a match.

    Query params:
        mode: COMPETITIVE (default) or FRIENDLY
        experience: Optional band to search from instead of the team's own
    """
    try:
        result = await matchmaking_service.find_opponent_and_create_match(
            session, team_id, user["id"], mode=mode, experience_override=experience
        )
        created = unwrap(result)
        return {
            "match": match_to_dict(created["match"], created["team_a"], created["team_b"]),
            "opponent": team_to_dict(created["team_b"]),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error finding match for team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error finding match")


@router.post("/api/matches/{match_id}/accept", response_model=MatchResponse)
async def accept_match(
    match_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Team B's captain accepts a proposed match."""
    try:
        match = unwrap(await match_service.accept_match(session, match_id, user["id"]))
        return match_to_dict(match)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error accepting match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error accepting match")


@router.post("/api/matches/{match_id}/schedule", response_model=MatchResponse)
async def schedule_match(
    match_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Either captain marks the match as scheduled."""
    try:
        match = unwrap(await match_service.schedule_match(session, match_id, user["id"]))
        return match_to_dict(match)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error scheduling match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error scheduling match")


@router.post("/api/matches/{match_id}/submit", response_model=MatchResponse)
async def submit_result(
    match_id: int,
    payload: SubmitResultRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Submit a result from the caller's perspective.

    Request body:
        {
            "result": "WIN",       // WIN or LOSS, for the caller's team
            "score": "6-4 3-6 7-5" // Optional
        }
    """
    try:
        match = unwrap(
            await match_service.submit_result(
                session, match_id, user["id"], payload.result, score=payload.score
            )
        )
        return match_to_dict(match)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error submitting result for match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting result")


@router.post("/api/matches/{match_id}/confirm", response_model=MatchResponse)
async def confirm_match(
    match_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """The opposing captain confirms the submitted result."""
    try:
        match = unwrap(await match_service.confirm_match(session, match_id, user["id"]))
        return match_to_dict(match)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error confirming match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error confirming match")


@router.post("/api/matches/{match_id}/dispute", response_model=DisputeResponse)
async def dispute_match(
    match_id: int,
    payload: DisputeRequest,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Dispute a submitted result; an admin decides."""
    try:
        dispute = unwrap(
            await match_service.dispute_match(session, match_id, user["id"], payload.reason)
        )
        return dispute_to_dict(dispute)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error disputing match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error disputing match")


@router.get("/api/matches/active", response_model=Optional[MatchResponse])
async def get_active_match(
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """The caller's current unfinished match, or null."""
    try:
        return await match_service.get_active_match(session, user["id"])
    except Exception as e:
        logger.error(f"Error fetching active match: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching active match")


@router.get("/api/matches/history/{team_id}", response_model=List[MatchResponse])
async def get_match_history(
    team_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """The team's ten most recent reported matches."""
    try:
        return await match_service.get_match_history(session, team_id)
    except Exception as e:
        logger.error(f"Error fetching history for team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error fetching match history")
