"""
Ledger maintenance tasks
"""
import logging
from typing import Any, Dict

from backend.core.exceptions import ConflictError
from backend.db.models import School
from backend.services.ledger_service import LedgerService
from backend.tasks.celery_app import celery_app
from backend.tasks.db_session_manager import get_celery_db_session

logger = logging.getLogger(__name__)


def reconcile_balances(session_factory=None) -> Dict[str, Any]:
    summary = {"checked": 0, "repaired": 0, "conflicts": 0}
    with get_celery_db_session(session_factory) as db:
        ledger = LedgerService(db)
        for (school_id,) in db.query(School.id).order_by(School.id).all():
            summary["checked"] += 1
            try:
                result = ledger.reconcile(school_id)
            except ConflictError:
                # balance moved while we looked; the next mutation recomputes it anyway
                summary["conflicts"] += 1
                continue
            if result["repaired"]:
                summary["repaired"] += 1
    return summary


@celery_app.task(name="backend.tasks.ledger_tasks.reconcile_all_balances")
def reconcile_all_balances() -> Dict[str, Any]:
    summary = reconcile_balances()
    logger.info(f"Ledger reconciliation: {summary}")
    return summary
