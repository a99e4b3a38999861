from celery import Celery
from celery.schedules import crontab
from invest_backend.core.config import settings

# Initialize Celery app
celery_app = Celery(
    "investment_platform",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "invest_backend.tasks.accrual_tasks"
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour
    task_soft_time_limit=1800,  # 30 minutes
    worker_max_tasks_per_child=200,
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,
    result_expires=86400,  # 1 day
)

# Configure Celery Beat schedule
celery_app.conf.beat_schedule = {
    "run-daily-accrual": {
        "task": "invest_backend.tasks.accrual_tasks.run_daily_accrual",
        "schedule": crontab(hour=0, minute=5),
    },
    "complete-matured-purchases": {
        "task": "invest_backend.tasks.accrual_tasks.complete_matured_purchases",
        "schedule": crontab(hour=0, minute=15),
    },
}
