from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime
from sakina.models.coupon import normalize_code


# ============================================
# PACKAGES
# ============================================

class PackageResponse(BaseModel):
    id: int
    name: str
    name_en: Optional[str] = None
    type: str
    price: float
    effective_price: float
    price_formatted: str
    currency: str
    period_type: str
    period_count: int
    duration_in_days: int
    discount_percentage: int = 0
    features: List[str] = []
    is_active: bool
    display_order: int = 0

    class Config:
        from_attributes = True


class PackageCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    name_en: Optional[str] = None
    type: str = Field(pattern="^(basic|standard|premium)$")
    price: float = Field(ge=0)
    currency: str = "SAR"
    period_type: str = Field(pattern="^(month|year)$")
    period_count: int = Field(default=1, ge=1)
    duration_in_days: int = Field(ge=1)
    discount_percentage: int = Field(default=0, ge=0, le=100)
    features: List[str] = []
    display_order: int = 0


class PackageUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    name_en: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None
    period_type: Optional[str] = Field(default=None, pattern="^(month|year)$")
    period_count: Optional[int] = Field(default=None, ge=1)
    duration_in_days: Optional[int] = Field(default=None, ge=1)
    discount_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None


# ============================================
# COUPONS
# ============================================

class CouponCreate(BaseModel):
    code: str = Field(min_length=3, max_length=20)
    discount_type: str = Field(pattern="^(percentage|fixed)$")
    discount_value: float = Field(gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: datetime
    applicable_packages: List[int] = []

    @field_validator("code")
    @classmethod
    def normalize(cls, v: str) -> str:
        return normalize_code(v)

    @model_validator(mode="after")
    def check_value_and_window(self):
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.valid_from and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class CouponUpdate(BaseModel):
    discount_value: Optional[float] = Field(default=None, gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    applicable_packages: Optional[List[int]] = None


class CouponResponse(BaseModel):
    id: int
    code: str
    discount_type: str
    discount_value: float
    max_uses: Optional[int] = None
    used_count: int
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    applicable_packages: List[int] = []
    created_at: datetime

    class Config:
        from_attributes = True


class ValidateCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=20)
    package_id: Optional[int] = None


# ============================================
# SUBSCRIPTIONS
# ============================================

class SubscribeRequest(BaseModel):
    package_id: int
    coupon_code: Optional[str] = Field(default=None, max_length=20)
    payment_method: Optional[str] = None
    auto_renew: bool = True


class RenewRequest(BaseModel):
    package_id: Optional[int] = None


class ExtendSubscriptionRequest(BaseModel):
    new_end_date: datetime


class UpgradeRequest(BaseModel):
    package_id: int


class SubscriptionResponse(BaseModel):
    id: int
    user_id: int
    package_id: int
    status: str
    start_date: datetime
    end_date: datetime
    auto_renew: bool
    payment_method: Optional[str] = None
    cancellation_date: Optional[datetime] = None
    is_active: bool
    days_remaining: int
    package: Optional[PackageResponse] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProrationResponse(BaseModel):
    days_remaining: int
    old_price_per_day: float
    new_price_per_day: float
    remaining_credit: float
    credit_days: int
    proration_amount: float
