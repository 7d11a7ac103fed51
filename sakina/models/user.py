from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from typing import Optional
from sakina.database import Base
import enum


class AuthProvider(str, enum.Enum):
    EMAIL = "email"
    PHONE = "phone"
    GOOGLE = "google"


class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=True)
    phone = Column(String, unique=True, index=True, nullable=True)
    name = Column(String, nullable=True)
    hashed_password = Column(String, nullable=True)  # Nullable for OAuth users
    auth_provider = Column(
        Enum(AuthProvider, values_callable=lambda x: [e.value for e in x]),
        default=AuthProvider.EMAIL,
    )
    google_id = Column(String, unique=True, nullable=True)
    avatar_url = Column(String, nullable=True)

    is_verified = Column(Boolean, default=False)
    role = Column(
        Enum(Role, values_callable=lambda x: [e.value for e in x]),
        default=Role.USER,
        nullable=False,
    )

    # Ban state - lifted automatically once banned_until has passed
    is_banned = Column(Boolean, default=False)
    banned_until = Column(DateTime, nullable=True)
    ban_reason = Column(String, nullable=True)

    # Notification preferences
    notify_new_content = Column(Boolean, default=True)
    notify_achievements = Column(Boolean, default=True)
    notify_reminders = Column(Boolean, default=True)
    notify_subscription = Column(Boolean, default=True)
    reminder_hour = Column(Integer, default=8)
    fcm_tokens = Column(JSON, default=list)

    # Derived by the analytics job, see analytics_service.update_user_listening_patterns
    listening_patterns = Column(JSON, nullable=True)

    # ============================================
    # SUBSCRIPTION SNAPSHOT
    # ============================================
    # Denormalized copy of the authoritative Subscription row for fast reads.
    # Written only through subscription_service.sync_user_snapshot.
    subscription_package_id = Column(Integer, nullable=True)
    subscription_status = Column(String, default="expired")
    subscription_start_date = Column(DateTime, nullable=True)
    subscription_end_date = Column(DateTime, nullable=True)
    subscription_auto_renew = Column(Boolean, default=False)

    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    # ============================================
    # HELPER METHODS
    # ============================================

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_currently_banned(self, now: Optional[datetime] = None) -> bool:
        """
        Check ban state, lifting an expired temporary ban in place.
        The caller is responsible for committing the change.
        """
        if not self.is_banned:
            return False

        now = now or datetime.utcnow()
        if self.banned_until is not None and self.banned_until <= now:
            self.is_banned = False
            self.banned_until = None
            self.ban_reason = None
            return False

        return True

    def wants_notification(self, notification_type: str) -> bool:
        """Per-type notification preference; system messages are always delivered"""
        preference_map = {
            "new_content": self.notify_new_content,
            "achievement": self.notify_achievements,
            "reminder": self.notify_reminders,
            "subscription": self.notify_subscription,
        }
        value = preference_map.get(notification_type, True)
        return True if value is None else bool(value)

    @property
    def subscription_snapshot(self) -> dict:
        return {
            "package_id": self.subscription_package_id,
            "status": self.subscription_status or "expired",
            "start_date": self.subscription_start_date,
            "end_date": self.subscription_end_date,
            "auto_renew": bool(self.subscription_auto_renew),
        }
