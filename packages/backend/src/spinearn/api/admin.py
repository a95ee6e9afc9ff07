"""Admin API — broadcasts, direct messages, leaderboard snapshots,
read-message retention.

Learn: Every route here requires role == "admin" (require_admin is applied
at include_router level). After a successful write we publish to the
Redis admin channel so other admin dashboards see the activity live.
Publishing is best-effort; the write has already committed.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from spinearn.api.messages import get_message_service
from spinearn.auth.dependencies import CurrentIdentity, require_admin
from spinearn.config import settings
from spinearn.db.engine import get_db
from spinearn.events.store import EventStore
from spinearn.events.types import (
    LEADERBOARD_SNAPSHOT_CREATED,
    MESSAGE_BROADCAST,
    MESSAGE_SENT,
    MESSAGES_PURGED,
)
from spinearn.realtime.distributor import UnreadDistributor, get_unread_distributor
from spinearn.realtime.pubsub import ADMIN_SCOPE, publish_event
from spinearn.schemas.leaderboard import SnapshotRead
from spinearn.schemas.message import (
    BroadcastCreate,
    DirectMessageCreate,
    PurgeResult,
    SendResult,
)
from spinearn.services.leaderboard_service import LeaderboardService
from spinearn.services.message_service import MessageService, MessageValidationError

router = APIRouter(prefix="/admin")


def get_leaderboard_service(db: AsyncSession = Depends(get_db)) -> LeaderboardService:
    return LeaderboardService(db=db, events=EventStore(db))


# ─── Messages ────────────────────────────────────────────


@router.post("/messages/broadcast", response_model=SendResult, status_code=201)
async def broadcast_message(
    body: BroadcastCreate,
    admin: CurrentIdentity = Depends(require_admin),
    svc: MessageService = Depends(get_message_service),
):
    """Send a message to every user."""
    try:
        recipients = await svc.broadcast(
            admin_id=admin.user_id,
            title=body.title,
            message=body.message,
            message_type=body.message_type,
            image_url=body.image_url,
        )
    except MessageValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    await publish_event(ADMIN_SCOPE, MESSAGE_BROADCAST, {
        "admin_id": admin.user_id,
        "title": body.title.strip(),
        "recipients": recipients,
    })
    return SendResult(recipients=recipients)


@router.post("/messages", response_model=SendResult, status_code=201)
async def send_message(
    body: DirectMessageCreate,
    admin: CurrentIdentity = Depends(require_admin),
    svc: MessageService = Depends(get_message_service),
):
    """Send a message to selected users."""
    try:
        recipients = await svc.send_to_users(
            admin_id=admin.user_id,
            user_ids=[str(u) for u in body.user_ids],
            title=body.title,
            message=body.message,
            message_type=body.message_type,
            image_url=body.image_url,
        )
    except MessageValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    await publish_event(ADMIN_SCOPE, MESSAGE_SENT, {
        "admin_id": admin.user_id,
        "title": body.title.strip(),
        "recipients": recipients,
    })
    return SendResult(recipients=recipients)


@router.post("/messages/purge-read", response_model=PurgeResult)
async def purge_read_messages(
    older_than_days: int = Query(default=settings.message_retention_days, ge=1),
    svc: MessageService = Depends(get_message_service),
):
    """Delete read messages older than the retention window."""
    deleted = await svc.purge_read(older_than_days)
    if deleted:
        await publish_event(ADMIN_SCOPE, MESSAGES_PURGED, {
            "deleted": deleted,
            "older_than_days": older_than_days,
        })
    return PurgeResult(deleted=deleted, older_than_days=older_than_days)


# ─── Leaderboard ─────────────────────────────────────────


@router.post("/leaderboard/snapshot", response_model=SnapshotRead)
async def snapshot_leaderboard(
    svc: LeaderboardService = Depends(get_leaderboard_service),
):
    """Snapshot today's top users. Idempotent per day."""
    result = await svc.snapshot(limit=settings.leaderboard_size)
    if result.created:
        await publish_event(ADMIN_SCOPE, LEADERBOARD_SNAPSHOT_CREATED, {
            "date": result.leaderboard_date.isoformat(),
            "count": result.count,
        })
    return SnapshotRead(
        leaderboard_date=result.leaderboard_date,
        created=result.created,
        count=result.count,
    )


# ─── Realtime ────────────────────────────────────────────


@router.get("/realtime/stats")
async def realtime_stats(
    distributor: UnreadDistributor = Depends(get_unread_distributor),
):
    """Live synchronizers, consumers, and change-feed subscriptions."""
    return {"connected": distributor.feed.connected, **distributor.stats()}
