from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class CreateOrderRequest(BaseModel):
    package_id: int
    purpose: str = Field(default="subscribe", pattern="^(subscribe|renew|upgrade)$")
    coupon_code: Optional[str] = Field(default=None, max_length=20)


class VerifyPaymentRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: Optional[str] = None


class RefundRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=500)


class PaymentResponse(BaseModel):
    id: int
    user_id: int
    package_id: int
    subscription_id: Optional[int] = None
    coupon_id: Optional[int] = None
    amount: float
    discount_amount: Optional[float] = 0
    currency: str
    purpose: str
    status: str
    order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    refund_id: Optional[str] = None
    refunded_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
