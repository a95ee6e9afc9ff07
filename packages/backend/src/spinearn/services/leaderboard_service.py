"""Daily leaderboard snapshot.

Learn: An external scheduler calls POST /admin/leaderboard/snapshot once a
day (or more; it's idempotent). If any row already exists for today the
call is a no-op, otherwise the top users by coins are copied with their
rank. When two schedulers race past the existence check, the unique
(leaderboard_date, user_id) constraint rejects the loser's insert; that
caller rolls back and reports created=False like any other repeat call.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from spinearn.db.models import DailyLeaderboard, User
from spinearn.events.store import EventStore, leaderboard_stream
from spinearn.events.types import LEADERBOARD_SNAPSHOT_CREATED

logger = structlog.get_logger()


@dataclass
class SnapshotResult:
    leaderboard_date: date
    created: bool
    count: int


class LeaderboardService:
    def __init__(self, db: AsyncSession, events: EventStore):
        self.db = db
        self.events = events

    async def snapshot(
        self, today: Optional[date] = None, limit: int = 20
    ) -> SnapshotResult:
        """Copy today's top users once. Returns created=False if already done."""
        today = today or datetime.now(timezone.utc).date()

        existing = await self.db.execute(
            select(DailyLeaderboard.id)
            .where(DailyLeaderboard.leaderboard_date == today)
            .limit(1)
        )
        if existing.first() is not None:
            return SnapshotResult(leaderboard_date=today, created=False, count=0)

        result = await self.db.execute(
            select(User).order_by(User.coins.desc()).limit(limit)
        )
        top_users = list(result.scalars().all())

        self.db.add_all([
            DailyLeaderboard(
                leaderboard_date=today,
                user_id=u.id,
                name=u.name,
                profile_picture_url=u.profile_picture_url,
                coins=u.coins,
                rank=idx + 1,
            )
            for idx, u in enumerate(top_users)
        ])
        # append() flushes, so the duplicate insert can fail there or at commit
        try:
            await self.events.append(
                stream_id=leaderboard_stream(today),
                event_type=LEADERBOARD_SNAPSHOT_CREATED,
                data={"date": today.isoformat(), "count": len(top_users)},
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("leaderboard.snapshot_race_lost", date=today.isoformat())
            return SnapshotResult(leaderboard_date=today, created=False, count=0)
        return SnapshotResult(leaderboard_date=today, created=True, count=len(top_users))

    async def get_snapshot(self, day: date) -> list[DailyLeaderboard]:
        result = await self.db.execute(
            select(DailyLeaderboard)
            .where(DailyLeaderboard.leaderboard_date == day)
            .order_by(DailyLeaderboard.rank)
        )
        return list(result.scalars().all())
