from celery import Celery
from celery.schedules import crontab
from sakina.config import settings

celery_app = Celery(
    "sakina_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=['sakina.celery_tasks']
)

# Configuration
celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,  # One task at a time per worker

    # Sweeps are idempotent; a failed run is picked up by the next schedule
    task_max_retries=0,
)

celery_app.conf.beat_schedule = {
    "cleanup-abandoned-sessions": {
        "task": "cleanup_abandoned_sessions",
        "schedule": crontab(minute=0),
    },
    "expire-subscriptions": {
        "task": "expire_subscriptions",
        "schedule": crontab(hour=0, minute=0),
    },
    "process-auto-renewals": {
        "task": "process_auto_renewals",
        "schedule": crontab(hour=1, minute=0),
    },
    "update-listening-patterns": {
        "task": "update_listening_patterns",
        "schedule": crontab(hour=3, minute=0),
    },
    "send-expiration-reminders": {
        "task": "send_expiration_reminders",
        "schedule": crontab(hour=9, minute=0),
    },
    "send-daily-reminders": {
        "task": "send_daily_reminders",
        "schedule": crontab(minute=5),
    },
    "cleanup-old-notifications": {
        "task": "cleanup_old_notifications",
        "schedule": crontab(hour=2, minute=0, day_of_week=0),
    },
}
