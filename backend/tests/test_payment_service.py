"""
Tests for coin purchases through Razorpay
"""

import httpx
import pytest

from backend.core.exceptions import ForbiddenError, NotFoundError, PaymentVerificationError, ValidationError
from backend.db.models import CreditTransaction, PaymentOrder
from backend.services.ledger_service import LedgerService
from backend.services.payment_service import PaymentProviderError, PaymentService, compute_signature


class FakeProvider:
    """Records order requests and answers with a canned response"""

    def __init__(self, status_code=200, payload=None, error=None):
        self.status_code = status_code
        self.payload = payload if payload is not None else {"id": "order_123"}
        self.error = error
        self.calls = []

    async def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json=self.payload, request=httpx.Request("POST", url))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def payments(test_db, provider):
    return PaymentService(test_db, http=provider)


async def _order(payments, user, packs=1):
    return await payments.create_order(user, packs)


class TestCreateOrder:

    @pytest.mark.asyncio
    async def test_order_for_one_pack(self, payments, provider, test_db, school_user, school_a):
        order = await _order(payments, school_user)

        assert order == {"order_id": "order_123", "amount": 9900, "currency": "INR", "coins": 99, "key_id": "rzp_test_key"}
        url, kwargs = provider.calls[0]
        assert kwargs["auth"] == ("rzp_test_key", "rzp_test_secret")
        assert kwargs["json"]["amount"] == 9900
        stored = test_db.query(PaymentOrder).one()
        assert stored.school_id == school_a.id
        assert stored.status == "created"
        assert stored.coins == 99

    @pytest.mark.asyncio
    async def test_multiple_packs(self, payments, school_user):
        order = await _order(payments, school_user, packs=3)
        assert order["coins"] == 297
        assert order["amount"] == 29700

    @pytest.mark.asyncio
    @pytest.mark.parametrize("packs", [0, 21, "2"])
    async def test_pack_count_validated(self, payments, provider, school_user, packs):
        with pytest.raises(ValidationError):
            await _order(payments, school_user, packs=packs)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_only_school_accounts_buy(self, payments, writer_user, admin_user):
        with pytest.raises(ForbiddenError):
            await _order(payments, writer_user)
        with pytest.raises(ForbiddenError):
            await _order(payments, admin_user)

    @pytest.mark.asyncio
    async def test_provider_rejection(self, test_db, school_user):
        payments = PaymentService(test_db, http=FakeProvider(status_code=500, payload={"error": "boom"}))
        with pytest.raises(PaymentProviderError):
            await _order(payments, school_user)
        assert test_db.query(PaymentOrder).count() == 0

    @pytest.mark.asyncio
    async def test_provider_unreachable(self, test_db, school_user):
        payments = PaymentService(test_db, http=FakeProvider(error=httpx.ConnectError("refused")))
        with pytest.raises(PaymentProviderError):
            await _order(payments, school_user)


class TestVerifyPayment:

    @pytest.mark.asyncio
    async def test_valid_signature_credits_once(self, payments, test_db, school_user, school_a):
        await _order(payments, school_user)
        signature = compute_signature("order_123", "pay_1", "rzp_test_secret")

        first = payments.verify_payment(school_user, "order_123", "pay_1", signature)
        second = payments.verify_payment(school_user, "order_123", "pay_1", signature)

        assert first == {"order_id": "order_123", "credited": 99, "balance": 99}
        assert second == {"order_id": "order_123", "credited": 0, "balance": 99}
        assert LedgerService(test_db).get_balance(school_a.id) == 99
        purchases = test_db.query(CreditTransaction).filter_by(school_id=school_a.id).all()
        assert [(tx.type, tx.coins, tx.description) for tx in purchases] == [("purchase", 99, "purchase:order_123")]
        stored = test_db.query(PaymentOrder).one()
        assert stored.status == "paid"
        assert stored.provider_payment_id == "pay_1"

    @pytest.mark.asyncio
    async def test_invalid_signature(self, payments, test_db, school_user, school_a):
        await _order(payments, school_user)

        with pytest.raises(PaymentVerificationError):
            payments.verify_payment(school_user, "order_123", "pay_1", "forged")
        with pytest.raises(PaymentVerificationError):
            payments.verify_payment(school_user, "order_123", "pay_1", "")

        assert LedgerService(test_db).get_balance(school_a.id) == 0

    @pytest.mark.asyncio
    async def test_other_school_cannot_verify(self, payments, school_user, other_school_user):
        await _order(payments, school_user)
        signature = compute_signature("order_123", "pay_1", "rzp_test_secret")

        with pytest.raises(ForbiddenError):
            payments.verify_payment(other_school_user, "order_123", "pay_1", signature)

    def test_unknown_order(self, payments, school_user):
        with pytest.raises(NotFoundError):
            payments.verify_payment(school_user, "order_missing", "pay_1", "sig")
