from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class SubscriptionSnapshot(BaseModel):
    package_id: Optional[int] = None
    status: str = "expired"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    auto_renew: bool = False


class UserResponse(BaseModel):
    id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    auth_provider: str
    role: str
    is_verified: bool
    notify_new_content: bool
    notify_achievements: bool
    notify_reminders: bool
    notify_subscription: bool
    reminder_hour: Optional[int] = None
    subscription_snapshot: SubscriptionSnapshot
    created_at: datetime

    class Config:
        from_attributes = True


class AdminUserResponse(UserResponse):
    is_banned: bool
    banned_until: Optional[datetime] = None
    ban_reason: Optional[str] = None
    deleted_at: Optional[datetime] = None


class UserProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    avatar_url: Optional[str] = None


class NotificationPreferencesUpdate(BaseModel):
    notify_new_content: Optional[bool] = None
    notify_achievements: Optional[bool] = None
    notify_reminders: Optional[bool] = None
    notify_subscription: Optional[bool] = None
    reminder_hour: Optional[int] = Field(default=None, ge=0, le=23)


class FcmTokenRequest(BaseModel):
    token: str = Field(min_length=10)


class BanRequest(BaseModel):
    reason: Optional[str] = None
    banned_until: Optional[datetime] = None


class RoleUpdate(BaseModel):
    role: str = Field(pattern="^(user|admin)$")
