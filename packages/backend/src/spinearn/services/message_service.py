"""Admin message service — broadcasts, inbox listing, read receipts, retention.

Learn: A message to N users is N rows, each with its own read flag. That
keeps the unread count a plain indexed COUNT(*) and lets the NOTIFY
trigger on admin_messages address exactly the users whose badge changed.
Services never notify clients themselves; the trigger does it for every
writer, including admins editing rows by hand.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from spinearn.db.models import MESSAGE_TYPES, AdminMessage, User
from spinearn.events.store import MAINTENANCE_STREAM, EventStore, user_stream
from spinearn.events.types import (
    MESSAGE_BROADCAST,
    MESSAGE_READ,
    MESSAGE_SENT,
    MESSAGES_ALL_READ,
    MESSAGES_PURGED,
)


# Table the unread count is derived from; the NOTIFY trigger lives on it
UNREAD_TABLE = AdminMessage.__tablename__


class MessageNotFoundError(Exception):
    """Raised when a message does not exist or belongs to another user."""


class MessageValidationError(Exception):
    """Raised when a message is missing its title or body."""


class MessageService:
    """Admin message lifecycle."""

    def __init__(self, db: AsyncSession, events: EventStore):
        self.db = db
        self.events = events

    # ─── Send ─────────────────────────────────────────────

    async def broadcast(
        self,
        *,
        admin_id: str,
        title: str,
        message: str,
        message_type: str = "info",
        image_url: Optional[str] = None,
    ) -> int:
        """Send a message to every user. Returns the number of recipients."""
        title, message = self._validate(title, message, message_type)
        result = await self.db.execute(select(User))
        recipients = list(result.scalars().all())
        if not recipients:
            return 0

        self._add_rows(admin_id, recipients, title, message, message_type, image_url)
        await self.events.append(
            stream_id=user_stream(admin_id),
            event_type=MESSAGE_BROADCAST,
            data={
                "admin_id": admin_id,
                "title": title,
                "message_type": message_type,
                "recipients": len(recipients),
            },
        )
        await self.db.commit()
        return len(recipients)

    async def send_to_users(
        self,
        *,
        admin_id: str,
        user_ids: list[str],
        title: str,
        message: str,
        message_type: str = "info",
        image_url: Optional[str] = None,
    ) -> int:
        """Send a message to selected users. Unknown ids are skipped."""
        title, message = self._validate(title, message, message_type)
        if not user_ids:
            return 0

        q = select(User).where(User.id.in_([uuid.UUID(u) for u in user_ids]))
        result = await self.db.execute(q)
        recipients = list(result.scalars().all())
        if not recipients:
            return 0

        self._add_rows(admin_id, recipients, title, message, message_type, image_url)
        await self.events.append(
            stream_id=user_stream(admin_id),
            event_type=MESSAGE_SENT,
            data={
                "admin_id": admin_id,
                "title": title,
                "message_type": message_type,
                "user_ids": [str(u.id) for u in recipients],
            },
        )
        await self.db.commit()
        return len(recipients)

    # ─── Read side ────────────────────────────────────────

    async def list_messages(self, user_id: str, limit: int = 20) -> list[AdminMessage]:
        """Latest messages for a user, newest first."""
        q = (
            select(AdminMessage)
            .where(AdminMessage.user_id == uuid.UUID(user_id))
            .order_by(AdminMessage.sent_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def count_unread(self, user_id: str) -> int:
        q = (
            select(func.count())
            .select_from(AdminMessage)
            .where(AdminMessage.user_id == uuid.UUID(user_id))
            .where(AdminMessage.read.is_(False))
        )
        result = await self.db.execute(q)
        return int(result.scalar_one())

    # ─── Read receipts ────────────────────────────────────

    async def mark_read(self, user_id: str, message_id: str) -> AdminMessage:
        """Mark one of the user's messages read.

        Learn: Scoped by user_id so a user can't flip someone else's flag;
        a foreign id looks exactly like a missing one.
        """
        msg = await self.db.get(AdminMessage, uuid.UUID(message_id))
        if not msg or str(msg.user_id) != str(user_id):
            raise MessageNotFoundError(f"Message {message_id} not found")

        if not msg.read:
            msg.read = True
            await self.events.append(
                stream_id=user_stream(user_id),
                event_type=MESSAGE_READ,
                data={"message_id": message_id},
            )
            await self.db.commit()
            await self.db.refresh(msg)
        return msg

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every unread message read. Returns how many changed."""
        result = await self.db.execute(
            update(AdminMessage)
            .where(AdminMessage.user_id == uuid.UUID(user_id))
            .where(AdminMessage.read.is_(False))
            .values(read=True)
        )
        updated = result.rowcount or 0
        if updated:
            await self.events.append(
                stream_id=user_stream(user_id),
                event_type=MESSAGES_ALL_READ,
                data={"updated": updated},
            )
        await self.db.commit()
        return updated

    # ─── Retention ────────────────────────────────────────

    async def purge_read(
        self, older_than_days: int, now: Optional[datetime] = None
    ) -> int:
        """Delete read messages created more than `older_than_days` ago.

        Learn: Unread rows are never purged, so the unread count is the same
        before and after. The trigger still fires per deleted row; affected
        badges re-pull and land on the same number.
        """
        if older_than_days < 1:
            raise ValueError("older_than_days must be at least 1")
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=older_than_days)
        result = await self.db.execute(
            delete(AdminMessage)
            .where(AdminMessage.read.is_(True))
            .where(AdminMessage.created_at < cutoff)
            .execution_options(synchronize_session="fetch")
        )
        deleted = result.rowcount or 0
        if deleted:
            await self.events.append(
                stream_id=MAINTENANCE_STREAM,
                event_type=MESSAGES_PURGED,
                data={"deleted": deleted, "cutoff": cutoff.isoformat()},
            )
        await self.db.commit()
        return deleted

    # ─── Helpers ──────────────────────────────────────────

    @staticmethod
    def _validate(title: str, message: str, message_type: str) -> tuple[str, str]:
        title = (title or "").strip()
        message = (message or "").strip()
        if not title or not message:
            raise MessageValidationError("Please fill in both title and message")
        if message_type not in MESSAGE_TYPES:
            raise MessageValidationError(
                f"message_type must be one of {', '.join(MESSAGE_TYPES)}"
            )
        return title, message

    def _add_rows(
        self,
        admin_id: str,
        recipients: list[User],
        title: str,
        message: str,
        message_type: str,
        image_url: Optional[str],
    ) -> None:
        self.db.add_all([
            AdminMessage(
                admin_id=uuid.UUID(admin_id),
                user_id=u.id,
                user_name=u.name,
                user_email=u.email,
                title=title,
                message=message,
                message_type=message_type,
                image_url=image_url,
            )
            for u in recipients
        ])


def make_unread_count_query(session_factory: Callable[[], AsyncSession]):
    """Build the synchronizer's count query on top of a session factory.

    Learn: The synchronizer runs outside any request, so it opens a
    short-lived session per pull instead of borrowing get_db().
    """

    async def count_unread(user_id: str) -> int:
        async with session_factory() as session:
            svc = MessageService(db=session, events=EventStore(session))
            return await svc.count_unread(user_id)

    return count_unread
