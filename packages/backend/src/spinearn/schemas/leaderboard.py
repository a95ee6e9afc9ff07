"""Pydantic schemas for the daily leaderboard."""

import uuid
from datetime import date
from typing import Optional

from pydantic import BaseModel


class LeaderboardEntryRead(BaseModel):
    leaderboard_date: date
    user_id: uuid.UUID
    name: Optional[str]
    profile_picture_url: Optional[str]
    coins: int
    rank: int

    model_config = {"from_attributes": True}


class SnapshotRead(BaseModel):
    leaderboard_date: date
    created: bool
    count: int

    model_config = {"from_attributes": True}
