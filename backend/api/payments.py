"""
Payments API

Razorpay order creation and checkout verification for coin packs.
"""

from fastapi import Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_active_user
from backend.core.api_version import create_versioned_router
from backend.core.http_client import get_http_client
from backend.db.database import get_db
from backend.db.models import User
from backend.services.payment_service import PaymentService

router = create_versioned_router(prefix="/payments", tags=["Payments"])


class CreateOrderRequest(BaseModel):
    packs: int = Field(1, ge=1, description="Number of coin packs to buy")


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


def get_payment_http():
    return get_http_client()


@router.post("/orders")
async def create_order(
    request: CreateOrderRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    http=Depends(get_payment_http),
):
    return await PaymentService(db, http=http).create_order(current_user, packs=request.packs)


@router.post("/verify")
def verify_payment(
    request: VerifyPaymentRequest,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    return PaymentService(db).verify_payment(
        current_user,
        order_id=request.razorpay_order_id,
        payment_id=request.razorpay_payment_id,
        signature=request.razorpay_signature,
    )
