from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, Numeric, JSON
from sqlalchemy.orm import relationship
from dateutil.relativedelta import relativedelta
from datetime import datetime
from sakina.database import Base
import enum


class PackageType(str, enum.Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


class PeriodType(str, enum.Enum):
    MONTH = "month"
    YEAR = "year"


CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "SAR": "ر.س",
    "AED": "د.إ",
}


class Package(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    name_en = Column(String, nullable=True)
    type = Column(
        Enum(PackageType, values_callable=lambda x: [e.value for e in x]),
        unique=True,
        nullable=False,
    )

    price = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    currency = Column(String, default="SAR")
    period_type = Column(
        Enum(PeriodType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    period_count = Column(Integer, default=1, nullable=False)
    duration_in_days = Column(Integer, nullable=False)
    discount_percentage = Column(Integer, default=0)
    features = Column(JSON, default=list)

    # Packages are never deleted, only deactivated
    is_active = Column(Boolean, default=True, index=True)
    display_order = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    subscriptions = relationship("Subscription", back_populates="package")

    @property
    def effective_price(self) -> float:
        """Price after the package-level discount"""
        price = float(self.price or 0)
        if self.discount_percentage:
            return round(price * (1 - self.discount_percentage / 100), 2)
        return price

    @property
    def price_formatted(self) -> str:
        price = float(self.price or 0)
        formatted = str(int(price)) if price % 1 == 0 else f"{price:.2f}"
        return f"{formatted}{CURRENCY_SYMBOLS.get(self.currency, self.currency)}"

    @property
    def period_days(self) -> int:
        """Nominal period length used for per-day pricing (30-day month, 365-day year)"""
        count = self.period_count or 1
        if self.period_type == PeriodType.YEAR:
            return count * 365
        return count * 30

    def add_period(self, start: datetime, periods: int = 1) -> datetime:
        """Calendar arithmetic: months and years clamp to the end of the target month"""
        count = (self.period_count or 1) * periods
        if self.period_type == PeriodType.YEAR:
            return start + relativedelta(years=count)
        return start + relativedelta(months=count)

    @property
    def tier_rank(self) -> int:
        return TIER_RANKS.get(_enum_value(self.type), 0)


def _enum_value(value) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value or "")


TIER_RANKS = {
    "free": 0,
    PackageType.BASIC.value: 1,
    PackageType.STANDARD.value: 2,
    PackageType.PREMIUM.value: 3,
}
