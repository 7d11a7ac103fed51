import logging
from datetime import datetime, timedelta
from typing import Optional, List, Tuple
import redis
from sqlalchemy import select
from sqlalchemy.orm import Session
from sakina.exceptions import NotFoundError
from sakina.models.listening_session import ListeningSession
from sakina.models.notification import Notification, NotificationType
from sakina.models.user import User
from sakina.services.push_service import get_push_service
from sakina.utils.redis_client import get_redis

logger = logging.getLogger(__name__)

UNREAD_CACHE_PREFIX = "notification:unread:"
UNREAD_CACHE_TTL = 300


class NotificationService:

    @staticmethod
    def create_notification(
        db: Session,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict] = None,
        icon: Optional[str] = None,
        image_url: Optional[str] = None,
        send_push: bool = True,
    ) -> Optional[Notification]:
        """
        Persist an in-app notification and attempt push delivery.

        Returns None when the user is gone or has opted out of this type.
        Push failures never propagate.
        """
        user = db.query(User).filter(User.id == user_id).first()
        if not user or user.is_deleted:
            logger.warning(f"User not found for notification: {user_id}")
            return None

        notification_type = NotificationType(type)
        if not user.wants_notification(notification_type.value):
            logger.info(f"Notification skipped due to user preferences: user={user_id} type={notification_type.value}")
            return None

        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            icon=icon,
            image_url=image_url,
            data=data or {},
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)

        NotificationService._clear_unread_cache(user_id)
        logger.info(f"🔔 Notification created: user={user_id} type={notification_type.value} title={title!r}")

        if send_push and user.fcm_tokens:
            NotificationService._push(db, user, title, message, data)

        return notification

    @staticmethod
    def notify_safely(db: Session, user_id: int, type: NotificationType, title: str, message: str, **kwargs) -> Optional[Notification]:
        """
        Notification as a side effect of an already committed write: any
        failure is logged and swallowed so the parent operation still succeeds.
        """
        try:
            return NotificationService.create_notification(db, user_id, type, title, message, **kwargs)
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to create notification for user {user_id}: {e}", exc_info=True)
            return None

    @staticmethod
    def create_bulk_notifications(
        db: Session,
        user_ids: List[int],
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict] = None,
        send_push: bool = True,
    ) -> int:
        users = db.query(User).filter(User.id.in_(user_ids), User.deleted_at.is_(None)).all()
        notification_type = NotificationType(type)
        recipients = [u for u in users if u.wants_notification(notification_type.value)]

        if not recipients:
            logger.info("No users to send notifications to")
            return 0

        for user in recipients:
            db.add(Notification(
                user_id=user.id,
                type=notification_type,
                title=title,
                message=message,
                data=data or {},
            ))
        db.commit()

        for user in recipients:
            NotificationService._clear_unread_cache(user.id)
            if send_push and user.fcm_tokens:
                NotificationService._push(db, user, title, message, data)

        logger.info(f"🔔 Bulk notification sent to {len(recipients)} users: {title!r}")
        return len(recipients)

    @staticmethod
    def _push(db: Session, user: User, title: str, message: str, data: Optional[dict]):
        try:
            result = get_push_service().send_to_tokens(list(user.fcm_tokens or []), title, message, data)
            if result.invalid_tokens:
                dead = set(result.invalid_tokens)
                user.fcm_tokens = [t for t in (user.fcm_tokens or []) if t not in dead]
                db.commit()
                logger.info(f"🧹 Removed {len(dead)} dead FCM tokens for user {user.id}")
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Push delivery failed for user {user.id}: {e}", exc_info=True)

    # ============================================
    # INBOX
    # ============================================

    @staticmethod
    def list_notifications(
        db: Session,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
    ) -> Tuple[List[Notification], int]:
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)

        total = query.count()
        items = query.order_by(Notification.created_at.desc(), Notification.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(db: Session, user_id: int) -> int:
        client = get_redis()
        key = f"{UNREAD_CACHE_PREFIX}{user_id}"
        if client is not None:
            try:
                cached = client.get(key)
                if cached is not None:
                    return int(cached)
            except (redis.RedisError, ValueError) as e:
                logger.warning(f"⚠️ Unread count cache read failed: {e}")

        count = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False
        ).count()

        if client is not None:
            try:
                client.setex(key, UNREAD_CACHE_TTL, count)
            except redis.RedisError as e:
                logger.warning(f"⚠️ Unread count cache write failed: {e}")
        return count

    @staticmethod
    def _get_owned(db: Session, user_id: int, notification_id: int) -> Notification:
        notification = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()
        if not notification:
            raise NotFoundError("Notification not found")
        return notification

    @staticmethod
    def mark_as_read(db: Session, user_id: int, notification_id: int) -> Notification:
        notification = NotificationService._get_owned(db, user_id, notification_id)
        notification.mark_as_read()
        db.commit()
        NotificationService._clear_unread_cache(user_id)
        return notification

    @staticmethod
    def mark_all_as_read(db: Session, user_id: int) -> int:
        now = datetime.utcnow()
        updated = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False
        ).update({"is_read": True, "read_at": now}, synchronize_session=False)
        db.commit()
        NotificationService._clear_unread_cache(user_id)
        return updated

    @staticmethod
    def delete_notification(db: Session, user_id: int, notification_id: int):
        notification = NotificationService._get_owned(db, user_id, notification_id)
        db.delete(notification)
        db.commit()
        NotificationService._clear_unread_cache(user_id)

    @staticmethod
    def cleanup_old_notifications(db: Session, days: int = 90, now: Optional[datetime] = None) -> int:
        """Delete read notifications older than ``days``"""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=days)
        deleted = db.query(Notification).filter(
            Notification.is_read == True,
            Notification.created_at < cutoff
        ).delete(synchronize_session=False)
        db.commit()
        logger.info(f"🧹 Deleted {deleted} old notifications")
        return deleted

    @staticmethod
    def send_daily_reminders(db: Session, now: Optional[datetime] = None) -> int:
        """
        Meditation reminder for users whose reminder_hour (UTC) is the current
        hour and who have not listened yet today. Run hourly.
        """
        now = now or datetime.utcnow()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        listened_today = select(ListeningSession.user_id).where(
            ListeningSession.start_time >= day_start
        )
        users = db.query(User.id).filter(
            User.deleted_at.is_(None),
            User.notify_reminders == True,
            User.reminder_hour == now.hour,
            ~User.id.in_(listened_today),
        ).all()

        sent = 0
        for (user_id,) in users:
            notification = NotificationService.notify_safely(
                db, user_id, NotificationType.REMINDER,
                "Time to meditate",
                "Take a few minutes for yourself today",
                icon="🧘",
            )
            if notification:
                sent += 1

        logger.info(f"🧘 Sent {sent} daily reminders for hour {now.hour}")
        return sent

    @staticmethod
    def _clear_unread_cache(user_id: int):
        client = get_redis()
        if client is None:
            return
        try:
            client.delete(f"{UNREAD_CACHE_PREFIX}{user_id}")
        except redis.RedisError as e:
            logger.warning(f"⚠️ Redis delete error: {e}")
