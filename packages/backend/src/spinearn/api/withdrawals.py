"""Withdrawal review API (admin only).

Learn: Routes:
- GET /admin/withdrawals?status=pending → review queue, newest first
- POST /admin/withdrawals/:id/approve → completed + inbox message
- POST /admin/withdrawals/:id/reject → rejected

A withdrawal is decided once: a second decision gets 409.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from spinearn.auth.dependencies import CurrentIdentity, require_admin
from spinearn.db.engine import get_db
from spinearn.events.store import EventStore
from spinearn.events.types import WITHDRAWAL_APPROVED, WITHDRAWAL_REJECTED
from spinearn.realtime.pubsub import ADMIN_SCOPE, publish_event
from spinearn.schemas.withdrawal import WithdrawalDecision, WithdrawalRead, WithdrawalStatus
from spinearn.services.withdrawal_service import (
    WithdrawalAlreadyProcessedError,
    WithdrawalNotFoundError,
    WithdrawalService,
)

router = APIRouter(prefix="/admin/withdrawals")


def get_withdrawal_service(db: AsyncSession = Depends(get_db)) -> WithdrawalService:
    return WithdrawalService(db=db, events=EventStore(db))


@router.get("", response_model=list[WithdrawalRead])
async def list_withdrawals(
    status: Optional[WithdrawalStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    svc: WithdrawalService = Depends(get_withdrawal_service),
):
    return await svc.list_withdrawals(status=status, limit=limit)


@router.post("/{withdrawal_id}/approve", response_model=WithdrawalRead)
async def approve_withdrawal(
    withdrawal_id: uuid.UUID,
    body: Optional[WithdrawalDecision] = None,
    admin: CurrentIdentity = Depends(require_admin),
    svc: WithdrawalService = Depends(get_withdrawal_service),
):
    """Mark a pending withdrawal completed and message the player."""
    withdrawal = await _decide(svc.approve, withdrawal_id, body, admin)
    await publish_event(ADMIN_SCOPE, WITHDRAWAL_APPROVED, {
        "withdrawal_id": str(withdrawal.id),
        "user_id": str(withdrawal.user_id),
        "coin_amount": withdrawal.coin_amount,
        "admin_id": admin.user_id,
    })
    return withdrawal


@router.post("/{withdrawal_id}/reject", response_model=WithdrawalRead)
async def reject_withdrawal(
    withdrawal_id: uuid.UUID,
    body: Optional[WithdrawalDecision] = None,
    admin: CurrentIdentity = Depends(require_admin),
    svc: WithdrawalService = Depends(get_withdrawal_service),
):
    """Mark a pending withdrawal rejected."""
    withdrawal = await _decide(svc.reject, withdrawal_id, body, admin)
    await publish_event(ADMIN_SCOPE, WITHDRAWAL_REJECTED, {
        "withdrawal_id": str(withdrawal.id),
        "user_id": str(withdrawal.user_id),
        "admin_id": admin.user_id,
    })
    return withdrawal


async def _decide(action, withdrawal_id: uuid.UUID, body, admin: CurrentIdentity):
    try:
        return await action(
            admin_id=admin.user_id,
            withdrawal_id=str(withdrawal_id),
            notes=body.notes if body else None,
        )
    except WithdrawalNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except WithdrawalAlreadyProcessedError as e:
        raise HTTPException(status_code=409, detail=str(e))
