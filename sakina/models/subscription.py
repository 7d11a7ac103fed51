from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, Boolean, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Optional
from sakina.database import Base
import math
import enum


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_status_end_date", "status", "end_date"),
        # At most one row per user may carry the stored "active" status
        Index(
            "uq_subscriptions_user_active",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False)

    status = Column(
        Enum(SubscriptionStatus, values_callable=lambda x: [e.value for e in x]),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
    )
    start_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    end_date = Column(DateTime, nullable=False, index=True)
    auto_renew = Column(Boolean, default=True)
    payment_method = Column(String, nullable=True)
    cancellation_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    package = relationship("Package", back_populates="subscriptions")

    # ============================================
    # DERIVED STATE
    # ============================================
    # Expiry is computed from the clock on every read; the stored status is
    # only promoted to EXPIRED by the periodic sweep.

    def is_active_at(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.status == SubscriptionStatus.ACTIVE and self.end_date > now

    @property
    def is_active(self) -> bool:
        return self.is_active_at()

    def days_remaining_at(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        if not self.is_active_at(now):
            return 0
        seconds = (self.end_date - now).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    @property
    def days_remaining(self) -> int:
        return self.days_remaining_at()

    def effective_status(self, now: Optional[datetime] = None) -> SubscriptionStatus:
        now = now or datetime.utcnow()
        if self.status == SubscriptionStatus.ACTIVE and self.end_date <= now:
            return SubscriptionStatus.EXPIRED
        return self.status

    @property
    def is_cancelled(self) -> bool:
        """Cancellation only stops renewal; access continues until end_date"""
        return self.cancellation_date is not None
