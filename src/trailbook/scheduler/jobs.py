"""
APScheduler jobs.

  - nightly_detection: cron at settings.detection_hour (UTC), runs an
    interactive trip detection through the Telegram prompter
  - gps_liveness: interval job while a recorder is attached, refreshes its
    GPS status from time since the last accepted fix

The scheduler runs inside the same process as the bot (wired in __main__)
and shares the bot's TripDetectionService, so a nightly run and /detect
never overlap.
"""
import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from trailbook.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(detection) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        detection: The TripDetectionService the bot's /detect command uses.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _nightly_detection,
        trigger="cron",
        hour=settings.detection_hour,
        minute=0,
        id="nightly_detection",
        replace_existing=True,
        kwargs={"detection": detection},
    )

    return scheduler


def add_liveness_job(scheduler: AsyncIOScheduler, recorder) -> None:
    """Poll ``recorder.check_liveness()`` every liveness_check_interval_seconds."""
    settings = get_settings()
    scheduler.add_job(
        _gps_liveness,
        trigger="interval",
        seconds=settings.liveness_check_interval_seconds,
        id="gps_liveness",
        replace_existing=True,
        kwargs={"recorder": recorder},
    )


def _gps_liveness(recorder) -> None:
    logger.debug("GPS status: %s", recorder.check_liveness().value)


async def _nightly_detection(detection) -> None:
    """
    Nightly job: propose trips for items recorded since the last run.

    Skipped while another detection run is in progress. Never raises, so one
    failed run does not take the scheduler down.
    """
    if detection.running:
        logger.info("Detection already running; skipping nightly run")
        return

    logger.info("Nightly detection starting at %s", datetime.utcnow().isoformat())
    try:
        report = await detection.run_detection()
        logger.info("Nightly detection created %d trips", len(report.created))
    except Exception as exc:
        logger.error("Nightly detection failed: %s", exc)
