from celery import Celery
from celery.schedules import crontab
from app.core.config import settings

celery_app = Celery(
    "catalog",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.cache_tasks"]
)

# Celery Configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=120,        # Hard limit (2 min)
    task_soft_time_limit=90,    # Soft limit

    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,  # 1 hour

    # Publishing must not stall a request when the broker is down.
    broker_connection_timeout=2,
    task_publish_retry=False,
)

celery_app.conf.task_routes = {
    "app.tasks.cache_tasks.*": {"queue": "cache"},
}

celery_app.conf.beat_schedule = {
    # Every 5 days at midnight
    "monitor-cache-memory": {
        "task": "app.tasks.cache_tasks.monitor_cache_memory",
        "schedule": crontab(minute=0, hour=0, day_of_month="*/5"),
    },
}
