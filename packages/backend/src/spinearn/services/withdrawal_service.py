"""Withdrawal review — admins approve or reject pending cash-outs.

Learn: A pending withdrawal is decided exactly once. The row is loaded
with SELECT ... FOR UPDATE, so two admins clicking "approve" at the same
time serialize and the second one sees a non-pending status.

Approval also drops a "Withdrawal Completed" message into the player's
inbox (an admin_messages row). The NOTIFY trigger on that table bumps the
player's live unread badge, same as any other admin message. Payout email
is sent by the dashboard, not here.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spinearn.db.models import WITHDRAWAL_STATUSES, AdminMessage, User, Withdrawal
from spinearn.events.store import EventStore, user_stream
from spinearn.events.types import WITHDRAWAL_APPROVED, WITHDRAWAL_REJECTED

COINS_PER_RUPEE = 10
DEFAULT_APPROVAL_NOTE = "Withdrawal approved and processed"


class WithdrawalNotFoundError(Exception):
    """Raised when a withdrawal id doesn't exist."""


class WithdrawalAlreadyProcessedError(Exception):
    """Raised when deciding a withdrawal that is no longer pending."""


def rupee_amount(coin_amount: int) -> str:
    return f"{coin_amount / COINS_PER_RUPEE:.2f}"


def completion_message(withdrawal) -> tuple[str, str]:
    """Title and body of the inbox message sent on approval."""
    return (
        "💰 Withdrawal Completed!",
        f"Your withdrawal of {withdrawal.coin_amount:,} coins "
        f"(Rs. {rupee_amount(withdrawal.coin_amount)}) has been successfully "
        f"processed to eSewa number {withdrawal.esewa_number}.",
    )


class WithdrawalService:
    def __init__(self, db: AsyncSession, events: EventStore):
        self.db = db
        self.events = events

    async def list_withdrawals(
        self, status: Optional[str] = None, limit: int = 50
    ) -> list[Withdrawal]:
        """Newest first, optionally filtered by status."""
        q = select(Withdrawal).order_by(Withdrawal.requested_at.desc()).limit(limit)
        if status is not None:
            if status not in WITHDRAWAL_STATUSES:
                raise ValueError(f"status must be one of {', '.join(WITHDRAWAL_STATUSES)}")
            q = q.where(Withdrawal.status == status)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def approve(
        self, *, admin_id: str, withdrawal_id: str, notes: Optional[str] = None
    ) -> Withdrawal:
        """Mark a pending withdrawal completed and notify the player."""
        withdrawal = await self._load_pending(withdrawal_id)
        self._decide(withdrawal, "completed", admin_id, notes or DEFAULT_APPROVAL_NOTE)

        user = await self.db.get(User, withdrawal.user_id)
        title, body = completion_message(withdrawal)
        self.db.add(AdminMessage(
            admin_id=uuid.UUID(admin_id),
            user_id=withdrawal.user_id,
            user_name=user.name if user else None,
            user_email=user.email if user else None,
            title=title,
            message=body,
            message_type="success",
        ))

        await self.events.append(
            stream_id=user_stream(withdrawal.user_id),
            event_type=WITHDRAWAL_APPROVED,
            data={
                "withdrawal_id": str(withdrawal.id),
                "coin_amount": withdrawal.coin_amount,
                "admin_id": admin_id,
            },
        )
        await self.db.commit()
        await self.db.refresh(withdrawal)
        return withdrawal

    async def reject(
        self, *, admin_id: str, withdrawal_id: str, notes: Optional[str] = None
    ) -> Withdrawal:
        """Mark a pending withdrawal rejected. The player is not messaged."""
        withdrawal = await self._load_pending(withdrawal_id)
        self._decide(withdrawal, "rejected", admin_id, notes)

        await self.events.append(
            stream_id=user_stream(withdrawal.user_id),
            event_type=WITHDRAWAL_REJECTED,
            data={"withdrawal_id": str(withdrawal.id), "admin_id": admin_id},
        )
        await self.db.commit()
        await self.db.refresh(withdrawal)
        return withdrawal

    # ─── Helpers ──────────────────────────────────────────

    async def _load_pending(self, withdrawal_id: str) -> Withdrawal:
        result = await self.db.execute(
            select(Withdrawal)
            .where(Withdrawal.id == uuid.UUID(str(withdrawal_id)))
            .with_for_update()
        )
        withdrawal = result.scalar_one_or_none()
        if withdrawal is None:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        if withdrawal.status != "pending":
            raise WithdrawalAlreadyProcessedError(
                f"Withdrawal {withdrawal_id} is already {withdrawal.status}"
            )
        return withdrawal

    @staticmethod
    def _decide(withdrawal, status: str, admin_id: str, notes: Optional[str]) -> None:
        withdrawal.status = status
        withdrawal.admin_notes = notes
        withdrawal.processed_by = uuid.UUID(admin_id)
        withdrawal.processed_at = datetime.now(timezone.utc)
