"""Admin message inbox API — what a signed-in user sees.

Learn: Routes for the user side of admin messages:
- GET /messages → latest messages, newest first
- GET /messages/unread-count → badge value
- POST /messages/:id/read → mark one read
- POST /messages/read-all → mark everything read

Read receipts don't push anything themselves. The UPDATE fires the
admin_messages NOTIFY trigger, and every open /ws/unread tab for this
user re-pulls its count.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from spinearn.auth.dependencies import CurrentIdentity, get_current_user
from spinearn.config import settings
from spinearn.db.engine import get_db
from spinearn.events.store import EventStore
from spinearn.realtime.distributor import UnreadDistributor, get_unread_distributor
from spinearn.schemas.message import AdminMessageRead, MarkAllReadResult, UnreadCount
from spinearn.services.message_service import MessageNotFoundError, MessageService

router = APIRouter()


def get_message_service(db: AsyncSession = Depends(get_db)) -> MessageService:
    return MessageService(db=db, events=EventStore(db))


@router.get("/messages", response_model=list[AdminMessageRead])
async def list_messages(
    limit: int = Query(settings.message_list_limit, ge=1, le=100),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(get_message_service),
):
    """Latest admin messages for the current user."""
    return await svc.list_messages(identity.user_id, limit=limit)


@router.get("/messages/unread-count", response_model=UnreadCount)
async def unread_count(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(get_message_service),
    distributor: UnreadDistributor = Depends(get_unread_distributor),
):
    """Unread badge value.

    Learn: If the user has a live synchronizer (an open /ws/unread tab), its
    cached value is already reconciled with the table, so we skip the query.
    """
    sync = distributor.peek(identity.user_id)
    if sync is not None:
        return UnreadCount(count=sync.count, source="live")
    count = await svc.count_unread(identity.user_id)
    return UnreadCount(count=count, source="query")


@router.post("/messages/read-all", response_model=MarkAllReadResult)
async def mark_all_read(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(get_message_service),
):
    updated = await svc.mark_all_read(identity.user_id)
    return MarkAllReadResult(updated=updated)


@router.post("/messages/{message_id}/read", response_model=AdminMessageRead)
async def mark_read(
    message_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(get_message_service),
):
    try:
        return await svc.mark_read(identity.user_id, str(message_id))
    except MessageNotFoundError:
        raise HTTPException(status_code=404, detail="Message not found")
