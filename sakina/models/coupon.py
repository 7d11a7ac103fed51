from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, Numeric, JSON
from datetime import datetime
from typing import Optional
from sakina.database import Base
import enum


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, index=True, nullable=False)
    discount_type = Column(
        Enum(DiscountType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    discount_value = Column(Numeric(10, 2, asdecimal=False), nullable=False)

    # None means unlimited uses
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, default=0, nullable=False)

    valid_from = Column(DateTime, default=datetime.utcnow, nullable=False)
    valid_until = Column(DateTime, nullable=False, index=True)
    is_active = Column(Boolean, default=True, index=True)

    # Empty list means applicable to every package
    applicable_packages = Column(JSON, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """active, inside [valid_from, valid_until) and under the usage cap"""
        now = now or datetime.utcnow()

        if not self.is_active:
            return False

        if now < self.valid_from or now >= self.valid_until:
            return False

        if self.max_uses is not None and (self.used_count or 0) >= self.max_uses:
            return False

        return True

    def is_applicable_to(self, package_id: Optional[int]) -> bool:
        if package_id is None or not self.applicable_packages:
            return True
        return int(package_id) in {int(p) for p in self.applicable_packages}

    def calculate_discount(self, amount: float, now: Optional[datetime] = None) -> float:
        """Discount for ``amount``; always within [0, amount]"""
        if amount <= 0 or not self.is_valid(now):
            return 0.0

        value = float(self.discount_value or 0)
        if self.discount_type == DiscountType.PERCENTAGE:
            discount = amount * value / 100
        else:
            discount = value

        discount = max(0.0, min(discount, amount))
        return min(round(discount, 2), amount)
