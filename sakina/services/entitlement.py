"""
Content entitlement.

``has_access`` is a pure predicate over a subscription snapshot. It is
evaluated on every streaming URL and full program read, never cached.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sakina.models.package import Package, TIER_RANKS
from sakina.models.track import ContentAccess
from sakina.models.user import User


@dataclass(frozen=True)
class SubscriptionSnapshot:
    status: str
    end_date: Optional[datetime]
    package_tier: Optional[str]


def _value(x) -> Optional[str]:
    if x is None:
        return None
    return getattr(x, "value", x)


def tier_rank(tier) -> int:
    """free=0 < basic=1 < standard=2 < premium=3; unknown tiers rank lowest"""
    return TIER_RANKS.get(_value(tier), 0)


def has_access(snapshot: Optional[SubscriptionSnapshot], content_access, now: Optional[datetime] = None) -> bool:
    required = _value(content_access) or ContentAccess.FREE.value
    if required == ContentAccess.FREE.value:
        return True
    if required not in TIER_RANKS:
        return False

    if snapshot is None or snapshot.end_date is None:
        return False

    now = now or datetime.utcnow()
    if _value(snapshot.status) != "active" or now >= snapshot.end_date:
        return False

    return tier_rank(snapshot.package_tier) >= tier_rank(required)


def build_snapshot(user: User, package: Optional[Package]) -> SubscriptionSnapshot:
    """Snapshot from the user's denormalized subscription columns"""
    return SubscriptionSnapshot(
        status=user.subscription_status or "expired",
        end_date=user.subscription_end_date,
        package_tier=_value(package.type) if package is not None else None,
    )
