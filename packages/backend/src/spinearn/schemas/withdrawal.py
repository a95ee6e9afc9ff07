"""Pydantic schemas for withdrawal review."""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

WithdrawalStatus = Literal["pending", "completed", "rejected"]


class WithdrawalDecision(BaseModel):
    """Body for approve / reject. Notes are shown to the player."""
    notes: Optional[str] = Field(None, max_length=500)


class WithdrawalRead(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    coin_amount: int
    esewa_number: str
    status: str
    admin_notes: Optional[str]
    processed_by: Optional[uuid.UUID]
    requested_at: Optional[datetime]
    processed_at: Optional[datetime]

    model_config = {"from_attributes": True}
