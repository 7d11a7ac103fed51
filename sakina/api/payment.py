import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.payment import PaymentPurpose
from sakina.models.user import User
from sakina.schemas.payment import CreateOrderRequest, VerifyPaymentRequest, PaymentResponse
from sakina.services.payment_service import PaymentService
from sakina.utils.dependencies import get_current_user
from sakina.utils.responses import success_response, paginate

router = APIRouter(prefix=f"{settings.API_PREFIX}/payments", tags=["Payments"])
logger = logging.getLogger(__name__)


@router.post("/orders")
async def create_order(
    body: CreateOrderRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Open a payment order for a subscription, renewal or package change.
    The client completes checkout with the returned order id and key.
    """
    order = PaymentService.create_subscription_order(
        db, current_user, body.package_id,
        purpose=PaymentPurpose(body.purpose),
        coupon_code=body.coupon_code,
    )
    return success_response(order, "Order created")


@router.post("/verify")
async def verify_payment(
    body: VerifyPaymentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = PaymentService.verify_subscription_payment(
        db, current_user, body.order_id, body.payment_id, body.signature,
    )
    return success_response(
        {
            "payment": PaymentResponse.model_validate(result["payment"]).model_dump(),
            "subscription_id": result["subscription_id"],
        },
        "Payment verified",
    )


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    """Gateway webhook. The raw body is needed for signature verification."""
    body = (await request.body()).decode("utf-8")
    event = PaymentService.handle_webhook(db, body, x_razorpay_signature)
    return success_response({"event": event}, "Webhook processed")


@router.get("/history")
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = PaymentService.payment_history(db, current_user.id, page, limit)
    return success_response(paginate(
        [PaymentResponse.model_validate(p).model_dump() for p in items], total, page, limit
    ))
