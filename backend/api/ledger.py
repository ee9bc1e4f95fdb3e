"""
School ledger API

Balance and coin history per school, plus admin corrections.
"""

import logging

from fastapi import Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_active_user
from backend.core.api_version import create_versioned_router
from backend.core.exceptions import ForbiddenError
from backend.db.database import get_db
from backend.db.models import User
from backend.services.authorization_guard import Action, can_perform
from backend.services.ledger_service import LedgerService
from backend.services.tenancy import require_school_access

logger = logging.getLogger(__name__)
router = create_versioned_router(prefix="/schools", tags=["Ledger"])


class AdjustRequest(BaseModel):
    coins: int = Field(..., description="Signed coin delta; may not drive the balance negative")
    description: str = Field(..., min_length=1, max_length=500)


@router.get("/{school_id}/ledger")
def get_ledger(
    school_id: int,
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Balance and transaction history, newest first"""
    if not can_perform(current_user.role, Action.VIEW_LEDGER):
        raise ForbiddenError("Ledger access denied")
    require_school_access(current_user, school_id)
    return LedgerService(db).get_statement(school_id, limit=limit)


@router.post("/{school_id}/ledger/adjust")
def adjust_ledger(
    school_id: int,
    request: AdjustRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    if not can_perform(current_user.role, Action.ADJUST_LEDGER):
        raise ForbiddenError("Only admins can adjust balances")
    ledger = LedgerService(db)
    tx = ledger.adjust(school_id, request.coins, f"admin:{current_user.id}: {request.description}")
    logger.info(f"Admin {current_user.id} adjusted school {school_id} by {request.coins}", extra={"school_id": school_id, "user_id": current_user.id})
    return {"transaction": tx.to_dict(), "balance": ledger.get_balance(school_id)}


@router.post("/{school_id}/ledger/reconcile")
def reconcile_ledger(
    school_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    """Compare the cached balance with the transaction log and repair drift"""
    if not can_perform(current_user.role, Action.ADJUST_LEDGER):
        raise ForbiddenError("Only admins can reconcile balances")
    return LedgerService(db).reconcile(school_id)
