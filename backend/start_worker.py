#!/usr/bin/env python3
"""
Starts the Celery worker (and optionally beat) if none is running.
"""

import logging
import os
import subprocess
import sys
import time

# Add the backend directory to the Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from channelflow.celery_config import celery_app  # noqa: E402
from channelflow.config import get_settings  # noqa: E402

logger = logging.getLogger(__name__)


def check_celery_worker():
    """Check if a Celery worker is running"""
    try:
        active_workers = celery_app.control.inspect().active()
        if active_workers:
            logger.info(f"Celery worker is running: {', '.join(active_workers)}")
            return True
        logger.warning("No active Celery workers found")
        return False
    except Exception as e:
        logger.error(f"Failed to check Celery worker status: {e}")
        return False


def start_celery_worker(with_beat: bool):
    """Start the Celery worker, embedding beat when requested"""
    settings = get_settings()
    settings.validate_channels()

    cmd = [
        "celery",
        "-A", "channelflow.celery_worker.celery",
        "worker",
        "--loglevel=info",
        f"--concurrency={settings.MAX_CONCURRENCY}",
    ]
    if with_beat:
        cmd.append("--beat")

    logger.info(f"Running command: {' '.join(cmd)}")
    process = subprocess.Popen(cmd, cwd=os.path.dirname(os.path.abspath(__file__)))
    logger.info(f"Celery worker started with PID: {process.pid}")
    return process


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info("=== CELERY WORKER CHECK ===")
    if check_celery_worker():
        logger.info("Worker is already running, no action needed")
        return

    try:
        process = start_celery_worker(with_beat="--beat" in sys.argv)
    except Exception as e:
        logger.error(f"Failed to start worker: {e}")
        sys.exit(1)

    logger.info("Press Ctrl+C to stop the worker")
    try:
        while True:
            time.sleep(1)
            if process.poll() is not None:
                logger.error("Worker process died unexpectedly")
                sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Stopping worker...")
        process.terminate()
        process.wait()
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
