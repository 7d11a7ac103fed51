from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sakina.config import settings
from sakina.database import get_db
from sakina.models.user import User
from sakina.schemas.notification import NotificationResponse
from sakina.services.notification_service import NotificationService
from sakina.utils.dependencies import get_current_user
from sakina.utils.responses import success_response, paginate

router = APIRouter(prefix=f"{settings.API_PREFIX}/notifications", tags=["Notifications"])


@router.get("")
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = NotificationService.list_notifications(db, current_user.id, page, limit, unread_only)
    data = paginate([NotificationResponse.model_validate(n).model_dump() for n in items], total, page, limit)
    data["unread_count"] = NotificationService.unread_count(db, current_user.id)
    return success_response(data)


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return success_response({"unread_count": NotificationService.unread_count(db, current_user.id)})


@router.put("/read-all")
async def mark_all_as_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updated = NotificationService.mark_all_as_read(db, current_user.id)
    return success_response({"updated": updated}, "All notifications marked as read")


@router.put("/{notification_id}/read")
async def mark_as_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = NotificationService.mark_as_read(db, current_user.id, notification_id)
    return success_response(NotificationResponse.model_validate(notification).model_dump(), "Notification marked as read")


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    NotificationService.delete_notification(db, current_user.id, notification_id)
    return success_response(None, "Notification deleted")
