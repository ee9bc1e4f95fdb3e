"""
Admin dashboard API
"""

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_admin_user
from backend.core.api_version import create_versioned_router
from backend.db.database import get_db
from backend.db.models import User
from backend.services.ledger_service import LedgerService
from backend.services.workflow_service import get_workflow_service

router = create_versioned_router(prefix="/admin", tags=["Admin"])


@router.get("/credits")
def credit_analytics(
    recent: int = Query(20, ge=1, le=200),
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    """Coin totals, per-school balances and recent transactions"""
    return LedgerService(db).credit_analytics(recent_limit=recent)


@router.get("/overview")
def overview(
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
):
    return get_workflow_service().admin_overview(db)
