"""Event store — append-only audit log of admin actions.

Learn: Every write the admin surface performs (broadcasts, read receipts,
leaderboard snapshots) is also recorded as an immutable event in the same
transaction, so the audit trail never disagrees with the tables.

Events are stamped with the current request_id (bound by
RequestIdMiddleware) so an audit entry can be matched to its log lines.
"""

from datetime import date
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spinearn.db.models import Event


MAINTENANCE_STREAM = "maintenance"


def user_stream(user_id) -> str:
    return f"user:{user_id}"


def leaderboard_stream(day: date) -> str:
    return f"leaderboard:{day.isoformat()}"


class EventStore:
    """Append-only event store backed by PostgreSQL."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict,
        metadata: Optional[dict] = None,
    ) -> Event:
        """Add an event to the session. Caller commits."""
        meta = dict(metadata or {})
        request_id = structlog.contextvars.get_contextvars().get("request_id")
        if request_id:
            meta.setdefault("request_id", request_id)

        event = Event(stream_id=stream_id, type=event_type, data=data, meta=meta)
        self.db.add(event)
        await self.db.flush()
        return event

    async def read_stream(self, stream_id: str, limit: int = 100) -> list[Event]:
        """Oldest-first events for one stream."""
        result = await self.db.execute(
            select(Event)
            .where(Event.stream_id == stream_id)
            .order_by(Event.id)
            .limit(limit)
        )
        return list(result.scalars().all())
