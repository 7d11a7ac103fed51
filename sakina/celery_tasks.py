"""
Periodic sweeps. Each task opens its own session and delegates to the
service layer; the schedule lives in ``celery_app.conf.beat_schedule``.
"""

from sakina.celery_app import celery_app
from sakina.config import settings
from sakina.database import SessionLocal
from sakina.services.analytics_service import AnalyticsService
from sakina.services.notification_service import NotificationService
from sakina.services.payment_service import get_payment_gateway
from sakina.services.session_service import SessionService
from sakina.services.subscription_service import SubscriptionService
# Register every mapped class so relationships resolve in the worker
from sakina.models import (  # noqa: F401
    user, package, coupon, subscription, payment, category, track, program,
    user_program, custom_program, listening_session, notification, favorite,
)
import logging

logger = logging.getLogger(__name__)


def _run(job_name: str, job):
    db_session = SessionLocal()
    try:
        logger.info(f"⚙️ Running {job_name}")
        result = job(db_session)
        logger.info(f"✅ {job_name} finished: {result}")
        return result
    except Exception as e:
        db_session.rollback()
        logger.error(f"❌ {job_name} failed: {e}", exc_info=True)
        raise
    finally:
        db_session.close()


@celery_app.task(name="cleanup_abandoned_sessions")
def cleanup_abandoned_sessions_task():
    return _run("cleanup_abandoned_sessions", lambda db: {
        "closed": SessionService.cleanup_abandoned_sessions(db, settings.ABANDONED_SESSION_HOURS)
    })


@celery_app.task(name="process_auto_renewals")
def process_auto_renewals_task():
    return _run("process_auto_renewals", lambda db: SubscriptionService.process_auto_renewals(db, get_payment_gateway()))


@celery_app.task(name="expire_subscriptions")
def expire_subscriptions_task():
    return _run("expire_subscriptions", lambda db: {"expired": SubscriptionService.expire_subscriptions(db)})


@celery_app.task(name="send_expiration_reminders")
def send_expiration_reminders_task():
    return _run("send_expiration_reminders", lambda db: {
        "sent": SubscriptionService.send_expiration_reminders(db, settings.EXPIRY_REMINDER_DAYS)
    })


@celery_app.task(name="update_listening_patterns")
def update_listening_patterns_task():
    return _run("update_listening_patterns", lambda db: {"updated": AnalyticsService.update_active_users_patterns(db)})


@celery_app.task(name="send_daily_reminders")
def send_daily_reminders_task():
    return _run("send_daily_reminders", lambda db: {"sent": NotificationService.send_daily_reminders(db)})


@celery_app.task(name="cleanup_old_notifications")
def cleanup_old_notifications_task():
    return _run("cleanup_old_notifications", lambda db: {
        "deleted": NotificationService.cleanup_old_notifications(db, settings.NOTIFICATION_RETENTION_DAYS)
    })
