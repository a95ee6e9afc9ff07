"""Leaderboard API — read a day's snapshot."""

from datetime import date

from fastapi import APIRouter, Depends

from spinearn.api.admin import get_leaderboard_service
from spinearn.schemas.leaderboard import LeaderboardEntryRead
from spinearn.services.leaderboard_service import LeaderboardService

router = APIRouter()


@router.get("/leaderboard/{day}", response_model=list[LeaderboardEntryRead])
async def get_leaderboard(
    day: date,
    svc: LeaderboardService = Depends(get_leaderboard_service),
):
    """Ranked snapshot rows for a day (empty if none was taken)."""
    return await svc.get_snapshot(day)
