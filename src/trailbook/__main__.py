"""
Main entrypoint: starts Telegram bot + APScheduler in one process.

FastAPI runs separately under uvicorn.

Usage:
    python -m trailbook             # starts bot + scheduler
    uvicorn trailbook.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_bot() -> None:
    from trailbook.bot.app import build_bot_app
    from trailbook.config import get_settings
    from trailbook.db.engine import get_engine
    from trailbook.scheduler.jobs import add_liveness_job, build_scheduler

    settings = get_settings()
    if not settings.telegram_bot_token:
        logger.error("TELEGRAM_BOT_TOKEN is not set.")
        sys.exit(1)

    engine = get_engine()

    # Bot
    app = build_bot_app(
        token=settings.telegram_bot_token,
        engine=engine,
        settings=settings,
        owner_chat_id=settings.telegram_allowed_user_id,
    )
    if app.bot_data["prompter"] is None:
        logger.info("TELEGRAM_ALLOWED_USER_ID not set — trip questions disabled.")

    # Scheduler
    scheduler = build_scheduler(app.bot_data["detection"])
    add_liveness_job(scheduler, app.bot_data["recorder"])
    scheduler.start()
    logger.info(
        "Scheduler started (nightly trip detection at %02d:00 UTC)",
        settings.detection_hour,
    )

    logger.info("Starting Telegram bot...")
    async with app:
        await app.start()
        await app.updater.start_polling(drop_pending_updates=True)
        logger.info("Bot is running. Press Ctrl+C to stop.")

        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down...")
        finally:
            await app.updater.stop()
            await app.stop()
            scheduler.shutdown()
            logger.info("Goodbye.")


if __name__ == "__main__":
    asyncio.run(_run_bot())
