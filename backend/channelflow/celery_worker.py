import logging

from celery.signals import worker_process_init

from channelflow.celery_config import celery_app
from channelflow.config import get_settings

# Entry point for the Celery worker and beat:
#   celery -A channelflow.celery_worker.celery worker --loglevel=info
#   celery -A channelflow.celery_worker.celery beat --loglevel=info
import channelflow.schedule  # noqa: F401  registers the periodic tasks

logger = logging.getLogger(__name__)


@worker_process_init.connect
def on_worker_init(**kwargs):
    """
    Check the channel configuration when a worker process starts, so a bad
    deployment fails before the first task instead of on every dispatch.
    Database connections are opened per task, inside the task's event loop.
    """
    logger.info("Celery worker process initializing...")
    try:
        get_settings().validate_channels()
    except Exception as e:
        logger.error(f"Invalid channel configuration for Celery worker: {e}", exc_info=True)
        raise
    logger.info("Celery worker process ready.")


celery = celery_app
