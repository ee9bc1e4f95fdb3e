"""
Ledger Service
Per-school coin balances backed by an append-only transaction log.

Every mutation recomputes the balance from SUM(credit_transactions.coins) and
writes the materialized School.coins with a compare-and-set on
School.ledger_version. Mutations for one school are also serialized inside the
process with a keyed lock.
"""

import logging
from typing import Dict, Any, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from backend.core.config import get_settings
from backend.core.exceptions import ConflictError, InsufficientFundsError, NotFoundError, ValidationError
from backend.core.locks import KeyedLock
from backend.core.observability import LEDGER_REPAIRS
from backend.db.models import CreditTransaction, School, TransactionType

logger = logging.getLogger(__name__)

_school_locks = KeyedLock()

PUBLISH_DESCRIPTION = "publish:{blog_id}"
REFUND_DESCRIPTION = "refund:{blog_id}"
REWARD_DESCRIPTION = "reward:{blog_id}"


class LedgerService:
    """
    Executes signed coin deltas supplied by callers. Knows nothing about
    publish cost or reward amounts.
    """

    def __init__(self, db: Session, max_retries: Optional[int] = None):
        self.db = db
        self.max_retries = max_retries or get_settings().ledger_cas_retries

    def debit(
        self,
        school_id: int,
        amount: int,
        description: str,
        related_blog_id: Optional[int] = None,
        commit: bool = True,
    ) -> CreditTransaction:
        """
        Append a usage transaction of -amount.

        Raises:
            InsufficientFundsError: balance - amount would be negative; nothing is appended
            ConflictError: the balance kept changing underneath us
        """
        self._require_positive(amount)
        return self._append(school_id, TransactionType.USAGE, -amount, description, related_blog_id, commit)

    def credit(
        self,
        school_id: int,
        amount: int,
        description: str,
        related_blog_id: Optional[int] = None,
        tx_type: TransactionType = TransactionType.REWARD,
        commit: bool = True,
    ) -> CreditTransaction:
        """Append a positive transaction (reward by default)"""
        self._require_positive(amount)
        if tx_type == TransactionType.USAGE:
            raise ValidationError("usage transactions are always debits")
        return self._append(school_id, tx_type, amount, description, related_blog_id, commit)

    def purchase(self, school_id: int, coins: int, description: str) -> CreditTransaction:
        return self.credit(school_id, coins, description, tx_type=TransactionType.PURCHASE)

    def adjust(self, school_id: int, coins: int, description: str) -> CreditTransaction:
        """Admin correction; may be negative but never below zero"""
        if not isinstance(coins, int) or isinstance(coins, bool) or coins == 0:
            raise ValidationError("adjustment must be a non-zero integer")
        return self._append(school_id, TransactionType.ADJUSTMENT, coins, description, None, True)

    def get_balance(self, school_id: int) -> int:
        """Authoritative balance computed from the transaction log"""
        return int(
            self.db.query(func.coalesce(func.sum(CreditTransaction.coins), 0))
            .filter(CreditTransaction.school_id == school_id)
            .scalar()
        )

    def get_statement(self, school_id: int, limit: int = 100) -> Dict[str, Any]:
        school = self.db.get(School, school_id)
        if school is None:
            raise NotFoundError(f"School {school_id} not found")

        transactions = (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.school_id == school_id)
            .order_by(CreditTransaction.id.desc())
            .limit(limit)
            .all()
        )
        return {
            "school_id": school_id,
            "balance": self.get_balance(school_id),
            "transactions": [tx.to_dict() for tx in transactions],
        }

    def count_transactions(self, school_id: int, description: str, tx_type: TransactionType) -> int:
        return (
            self.db.query(func.count(CreditTransaction.id))
            .filter(
                CreditTransaction.school_id == school_id,
                CreditTransaction.description == description,
                CreditTransaction.type == tx_type.value,
            )
            .scalar()
        )

    def outstanding_publish_debits(self, school_id: int, blog_id: int) -> int:
        """Publish debits for a blog that were neither refunded nor turned into a publication"""
        debits = self.count_transactions(school_id, PUBLISH_DESCRIPTION.format(blog_id=blog_id), TransactionType.USAGE)
        refunds = self.count_transactions(school_id, REFUND_DESCRIPTION.format(blog_id=blog_id), TransactionType.ADJUSTMENT)
        rewards = self.count_transactions(school_id, REWARD_DESCRIPTION.format(blog_id=blog_id), TransactionType.REWARD)
        return max(0, debits - refunds - rewards)

    def reconcile(self, school_id: int) -> Dict[str, Any]:
        """Verify the materialized balance against the log and repair drift"""
        with _school_locks.hold(school_id):
            school = self.db.get(School, school_id, populate_existing=True)
            if school is None:
                raise NotFoundError(f"School {school_id} not found")
            log_balance = self.get_balance(school_id)
            cached = school.coins
            repaired = False
            if cached != log_balance:
                logger.error(
                    f"Ledger drift for school {school_id}: cached={cached} log={log_balance}",
                    extra={"school_id": school_id},
                )
                if not self._cas_write(school, log_balance):
                    self.db.rollback()
                    raise ConflictError(f"Balance of school {school_id} changed during reconciliation")
                self.db.commit()
                repaired = True
                LEDGER_REPAIRS.inc()
            return {"school_id": school_id, "cached": cached, "balance": log_balance, "repaired": repaired}

    def credit_analytics(self, recent_limit: int = 20) -> Dict[str, Any]:
        """System-wide coin movement for the admin dashboard"""
        totals = dict(
            self.db.query(CreditTransaction.type, func.coalesce(func.sum(CreditTransaction.coins), 0))
            .group_by(CreditTransaction.type)
            .all()
        )
        schools = self.db.query(School).order_by(School.coins.desc(), School.id).all()
        recent = (
            self.db.query(CreditTransaction)
            .order_by(CreditTransaction.id.desc())
            .limit(recent_limit)
            .all()
        )
        return {
            "stats": {
                "total_coins": sum(s.coins for s in schools),
                "total_schools": len(schools),
                "total_purchased": int(totals.get(TransactionType.PURCHASE.value, 0)),
                "total_used": -int(totals.get(TransactionType.USAGE.value, 0)),
                "total_rewarded": int(totals.get(TransactionType.REWARD.value, 0)),
                "total_adjusted": int(totals.get(TransactionType.ADJUSTMENT.value, 0)),
            },
            "schools": [s.to_dict() for s in schools],
            "recent_transactions": [tx.to_dict() for tx in recent],
        }

    # Internals

    @staticmethod
    def _require_positive(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError(f"amount must be a positive integer, got {amount!r}")

    def _cas_write(self, school: School, new_balance: int) -> bool:
        result = self.db.execute(
            update(School)
            .where(School.id == school.id, School.ledger_version == school.ledger_version)
            .values(coins=new_balance, ledger_version=School.ledger_version + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(school)
        return result.rowcount == 1

    def _append(
        self,
        school_id: int,
        tx_type: TransactionType,
        delta: int,
        description: str,
        related_blog_id: Optional[int],
        commit: bool,
    ) -> CreditTransaction:
        with _school_locks.hold(school_id):
            for attempt in range(1, self.max_retries + 1):
                school = self.db.get(School, school_id, populate_existing=True)
                if school is None:
                    raise NotFoundError(f"School {school_id} not found")

                balance = self.get_balance(school_id)
                if school.coins != balance:
                    logger.warning(
                        f"Cached balance {school.coins} for school {school_id} differs from log {balance}; using log",
                        extra={"school_id": school_id},
                    )

                new_balance = balance + delta
                if new_balance < 0:
                    if commit:
                        self.db.rollback()
                    raise InsufficientFundsError(school_id, balance, -delta)

                if not self._cas_write(school, new_balance):
                    if not commit:
                        # Caller owns the surrounding transaction; cannot roll back for it
                        raise ConflictError(f"Balance of school {school_id} changed concurrently")
                    self.db.rollback()
                    logger.info(f"Ledger CAS miss for school {school_id} (attempt {attempt}/{self.max_retries})")
                    continue

                tx = CreditTransaction(
                    school_id=school_id,
                    type=tx_type.value,
                    coins=delta,
                    description=description,
                    related_blog_id=related_blog_id,
                )
                self.db.add(tx)
                if commit:
                    try:
                        self.db.commit()
                    except Exception:
                        self.db.rollback()
                        raise
                    self.db.refresh(tx)
                else:
                    self.db.flush()

                logger.info(
                    f"Ledger {tx_type.value} {delta:+d} for school {school_id}: {balance} -> {new_balance} ({description})",
                    extra={"school_id": school_id, "blog_id": related_blog_id},
                )
                return tx

        raise ConflictError(f"Could not update balance of school {school_id} after {self.max_retries} attempts")
