"""
Payment Service - coin purchases

Schools buy coins through Razorpay: the engine creates an order, the browser
checkout completes it, and the signed payment is verified here before the
coins are credited as a purchase transaction. Verifying the same order twice
credits it once.
"""
import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.core.config import get_settings
from backend.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    PaymentVerificationError,
    ValidationError,
    WorkflowError,
)
from backend.core.http_client import HTTPClient, get_http_client
from backend.db.models import PaymentOrder, TransactionType, User
from backend.services.authorization_guard import Action, can_perform
from backend.services.ledger_service import LedgerService
from backend.services.tenancy import require_school_access

logger = logging.getLogger(__name__)

RAZORPAY_ORDERS_URL = "https://api.razorpay.com/v1/orders"
MAX_PACKS_PER_ORDER = 20


class PaymentProviderError(WorkflowError):
    code = "payment_provider_error"
    http_status = 502


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class PaymentService:

    def __init__(self, db: Session, http: Optional[HTTPClient] = None):
        self.db = db
        self.settings = get_settings()
        self.http = http or get_http_client()

    async def create_order(self, acting_user: User, packs: int = 1) -> Dict[str, Any]:
        """Create a provider order for coin packs"""
        if not can_perform(acting_user.role, Action.PURCHASE_COINS):
            raise ForbiddenError("Only school accounts can buy coins")
        require_school_access(acting_user, acting_user.school_id)
        if not isinstance(packs, int) or not 1 <= packs <= MAX_PACKS_PER_ORDER:
            raise ValidationError(f"packs must be between 1 and {MAX_PACKS_PER_ORDER}")
        if not self.settings.razorpay_key_id or not self.settings.razorpay_key_secret:
            raise PaymentProviderError("Payment provider is not configured")

        coins = packs * self.settings.coins_per_purchase
        amount_paise = coins * self.settings.paise_per_coin
        receipt = f"sc-{acting_user.school_id}-{uuid.uuid4().hex[:12]}"

        try:
            response = await self.http.post(
                RAZORPAY_ORDERS_URL,
                auth=(self.settings.razorpay_key_id, self.settings.razorpay_key_secret),
                json={"amount": amount_paise, "currency": "INR", "receipt": receipt, "notes": {"coins": coins}},
            )
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"Payment provider unreachable: {e}")
        if response.status_code >= 400:
            logger.error(f"Razorpay order creation failed: {response.status_code} {response.text[:300]}")
            raise PaymentProviderError(f"Payment provider rejected the order ({response.status_code})")

        provider_order_id = response.json().get("id")
        if not provider_order_id:
            raise PaymentProviderError("Payment provider did not return an order id")

        order = PaymentOrder(
            school_id=acting_user.school_id,
            provider_order_id=provider_order_id,
            amount_paise=amount_paise,
            coins=coins,
            status="created",
            created_by=acting_user.id,
        )
        try:
            self.db.add(order)
            self.db.commit()
            self.db.refresh(order)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Created payment order {provider_order_id} for school {acting_user.school_id}", extra={"school_id": acting_user.school_id})
        return {
            "order_id": provider_order_id,
            "amount": amount_paise,
            "currency": "INR",
            "coins": coins,
            "key_id": self.settings.razorpay_key_id,
        }

    def verify_payment(self, acting_user: User, order_id: str, payment_id: str, signature: str) -> Dict[str, Any]:
        """
        Verify the checkout signature and credit the purchased coins.

        Raises:
            PaymentVerificationError: signature does not match
        """
        order = self.db.query(PaymentOrder).filter(PaymentOrder.provider_order_id == order_id).first()
        if order is None:
            raise NotFoundError(f"Payment order {order_id} not found")
        require_school_access(acting_user, order.school_id)

        expected = compute_signature(order_id, payment_id, self.settings.razorpay_key_secret)
        if not signature or not hmac.compare_digest(expected, signature):
            logger.warning(f"Invalid payment signature for order {order_id}", extra={"school_id": order.school_id})
            raise PaymentVerificationError("Payment signature verification failed")

        ledger = LedgerService(self.db)
        if order.status == "paid":
            return {"order_id": order_id, "credited": 0, "balance": ledger.get_balance(order.school_id)}

        try:
            result = self.db.execute(
                update(PaymentOrder)
                .where(PaymentOrder.id == order.id, PaymentOrder.status == "created")
                .values(status="paid", provider_payment_id=payment_id, paid_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Another request verified this order first
                self.db.rollback()
                return {"order_id": order_id, "credited": 0, "balance": ledger.get_balance(order.school_id)}

            ledger.credit(
                order.school_id,
                order.coins,
                f"purchase:{order_id}",
                tx_type=TransactionType.PURCHASE,
                commit=False,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        balance = ledger.get_balance(order.school_id)
        logger.info(f"Credited {order.coins} coins to school {order.school_id} for order {order_id}", extra={"school_id": order.school_id})
        return {"order_id": order_id, "credited": order.coins, "balance": balance}
