from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime
from sakina.database import Base
import enum


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentPurpose(str, enum.Enum):
    SUBSCRIBE = "subscribe"
    RENEW = "renew"
    UPGRADE = "upgrade"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=True)

    amount = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    discount_amount = Column(Numeric(10, 2, asdecimal=False), default=0)
    currency = Column(String, default="SAR")
    purpose = Column(
        Enum(PaymentPurpose, values_callable=lambda x: [e.value for e in x]),
        default=PaymentPurpose.SUBSCRIBE,
    )
    status = Column(
        Enum(PaymentStatus, values_callable=lambda x: [e.value for e in x]),
        default=PaymentStatus.PENDING,
        index=True,
    )

    # Gateway references
    order_id = Column(String, unique=True, nullable=True)
    gateway_payment_id = Column(String, unique=True, nullable=True)
    refund_id = Column(String, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    refund_reason = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="payments")
    package = relationship("Package")

    def mark_as_completed(self, gateway_payment_id: str):
        self.status = PaymentStatus.COMPLETED
        self.gateway_payment_id = gateway_payment_id
        self.completed_at = datetime.utcnow()

    def mark_as_failed(self, reason: str):
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason

    def mark_as_refunded(self, refund_id: str, reason: str):
        """Mark payment as refunded."""
        self.status = PaymentStatus.REFUNDED
        self.refund_id = refund_id
        self.refund_reason = reason
        self.refunded_at = datetime.utcnow()
