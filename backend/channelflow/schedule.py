import logging

from channelflow.celery_config import celery_app, settings
from channelflow.tasks import tick_campaigns_task

logger = logging.getLogger(__name__)


@celery_app.on_after_configure.connect
def setup_periodic_tasks(sender, **kwargs):
    logger.info("Setting up periodic tasks...")

    # Dispatch due campaign steps, every minute by default
    sender.add_periodic_task(
        settings.TICK_INTERVAL_SECONDS,
        tick_campaigns_task.s(),
        name="tick-campaigns",
    )

    logger.info(f"Periodic tasks configured successfully (tick every {settings.TICK_INTERVAL_SECONDS}s)")
