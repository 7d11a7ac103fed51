import logging
from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.user import User
from sakina.schemas.user import UserResponse, UserProfileUpdate, NotificationPreferencesUpdate, FcmTokenRequest
from sakina.utils.dependencies import get_current_user
from sakina.utils.responses import success_response

router = APIRouter(prefix=f"{settings.API_PREFIX}/users", tags=["Users"])
logger = logging.getLogger(__name__)


def _user(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump()


@router.get("/me")
async def get_profile(current_user: User = Depends(get_current_user)):
    return success_response(_user(current_user))


@router.put("/me")
async def update_profile(
    body: UserProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(current_user, field, value)
    db.commit()
    db.refresh(current_user)
    return success_response(_user(current_user), "Profile updated")


@router.put("/me/preferences")
async def update_preferences(
    body: NotificationPreferencesUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Per-type notification opt-outs and the daily reminder hour (UTC)"""
    for field, value in body.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(current_user, field, value)
    db.commit()
    db.refresh(current_user)
    return success_response(_user(current_user), "Preferences updated")


@router.post("/me/fcm-tokens")
async def register_fcm_token(
    body: FcmTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tokens = list(current_user.fcm_tokens or [])
    if body.token not in tokens:
        # Reassign so the JSON column is flagged dirty
        current_user.fcm_tokens = tokens + [body.token]
        db.commit()
    return success_response({"token_count": len(current_user.fcm_tokens or [])}, "Device registered")


@router.delete("/me/fcm-tokens")
async def remove_fcm_token(
    body: FcmTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    tokens = list(current_user.fcm_tokens or [])
    if body.token in tokens:
        current_user.fcm_tokens = [t for t in tokens if t != body.token]
        db.commit()
    return success_response({"token_count": len(current_user.fcm_tokens or [])}, "Device removed")


@router.delete("/me")
async def delete_account(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Soft delete. Subscriptions and payments are kept for accounting."""
    current_user.deleted_at = datetime.utcnow()
    current_user.fcm_tokens = []
    db.commit()
    logger.info(f"🗑️ User {current_user.id} deleted their account")
    return success_response(None, "Account deleted")
