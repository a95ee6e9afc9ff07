"""Pydantic schemas for admin messages.

Learn: These schemas define the API contract — what admins send, what
users read back, and how the unread badge is reported.
"""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

MessageType = Literal["info", "success", "warning", "error"]


# ─── Send (admin → platform) ────────────────────────────


class BroadcastCreate(BaseModel):
    """Message for every user."""
    title: str = Field(..., max_length=200)
    message: str
    message_type: MessageType = "info"
    image_url: Optional[str] = None


class DirectMessageCreate(BroadcastCreate):
    """Message for selected users."""
    user_ids: list[uuid.UUID] = Field(..., description="Recipient user UUIDs")


class SendResult(BaseModel):
    recipients: int


# ─── Read (platform → client) ───────────────────────────


class AdminMessageRead(BaseModel):
    id: uuid.UUID
    admin_id: Optional[uuid.UUID]
    user_id: uuid.UUID
    user_name: Optional[str]
    user_email: Optional[str]
    title: str
    message: str
    message_type: str
    image_url: Optional[str]
    read: bool
    sent_at: Optional[datetime]
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}


class UnreadCount(BaseModel):
    count: int = Field(..., ge=0)
    source: Literal["live", "query"] = Field(
        ..., description="live = synchronizer cache, query = direct count"
    )


class MarkAllReadResult(BaseModel):
    updated: int


# ─── Retention (admin) ──────────────────────────────────


class PurgeResult(BaseModel):
    deleted: int
    older_than_days: int
