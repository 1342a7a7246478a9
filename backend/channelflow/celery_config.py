from celery import Celery

from channelflow.config import get_settings

settings = get_settings()

celery_app = Celery(
    "channelflow_tasks",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["channelflow.tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    result_expires=settings.TICK_INTERVAL_SECONDS * 10,
    broker_connection_retry_on_startup=True,
)
