from celery import Celery
from celery.schedules import crontab
from .config import settings


def _crontab(expression: str) -> crontab:
    minute, hour, day_of_month, month_of_year, day_of_week = expression.split()
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


celery_app = Celery(
    "bikemanager_reminders",
    broker=settings.REDIS_URL,
    backend=None,
)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_ignore_result=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_default_queue=settings.QUEUE_NAME,
    # Unacked messages, including ETAs past this window, are redelivered; countdowns stay under half of it
    broker_transport_options={"visibility_timeout": settings.VISIBILITY_TIMEOUT_SECONDS},
    timezone=settings.TIMEZONE,
    enable_utc=True,
    include=["bikemanager.reminders.tasks"],
)

# Celery Beat schedule for the periodic reminder scan
celery_app.conf.beat_schedule = {
    "scan-maintenance-reminders": {
        "task": "reminders.scan_maintenance",
        "schedule": _crontab(settings.CRON),
    },
}
