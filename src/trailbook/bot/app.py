"""
Telegram bot application factory.

Builds and configures the python-telegram-bot Application with all
handlers registered, the prompter the trip engine asks questions through,
and the recorder fed by the owner's live location.
"""
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from trailbook.bot.handlers import (
    error_handler,
    handle_activities,
    handle_clear_rejections,
    handle_detect,
    handle_home,
    handle_trips,
)
from trailbook.bot.prompter import CALLBACK_PATTERN, TelegramPrompter
from trailbook.bot.tracking import (
    handle_discard,
    handle_location,
    handle_pause,
    handle_resume,
    handle_status,
    handle_stop,
    handle_track,
    make_alert_notifier,
)
from trailbook.tracking.location import QueueLocationService
from trailbook.tracking.profiles import TrackingTuning
from trailbook.tracking.recorder import TrackRecorder
from trailbook.trips.detection import TripDetectionService
from trailbook.trips.service import TripService
from trailbook.trips.store import TripStore


def build_bot_app(
    token: str,
    engine,
    settings,
    owner_chat_id: int = None,
) -> Application:
    """
    Build and return the PTB Application.

    Args:
        token: Telegram bot token.
        engine: SQLAlchemy engine (SQLModel).
        settings: trailbook Settings (user id, heuristics, prompt timeout).
        owner_chat_id: Telegram chat that receives questions and error reports.

    Returns:
        Configured Application (not yet started).
    """
    app = Application.builder().token(token).build()

    store = TripStore(engine)
    prompter = None
    if owner_chat_id:
        prompter = TelegramPrompter(app.bot, owner_chat_id, timeout=settings.prompt_timeout_seconds)

    location = QueueLocationService()
    recorder = TrackRecorder(
        location,
        store,
        user_id=settings.user_id,
        tuning=TrackingTuning.from_settings(settings),
        on_alert=make_alert_notifier(prompter),
    )

    # Store shared resources in bot_data so handlers can access them
    app.bot_data["engine"] = engine
    app.bot_data["store"] = store
    app.bot_data["prompter"] = prompter
    app.bot_data["location"] = location
    app.bot_data["recorder"] = recorder
    app.bot_data["trips"] = TripService.from_settings(store, prompter, settings)
    app.bot_data["detection"] = TripDetectionService.from_settings(store, prompter, settings)
    app.bot_data["owner_chat_id"] = owner_chat_id

    # Only the owner may drive the bot
    owner_only = filters.Chat(chat_id=owner_chat_id) if owner_chat_id else filters.ALL

    commands = {
        "trips": handle_trips,
        "activities": handle_activities,
        "detect": handle_detect,
        "clearrejections": handle_clear_rejections,
        "home": handle_home,
        "track": handle_track,
        "pause": handle_pause,
        "resume": handle_resume,
        "status": handle_status,
        "stop": handle_stop,
        "discard": handle_discard,
    }
    for name, callback in commands.items():
        app.add_handler(CommandHandler(name, callback, filters=owner_only))

    # Live location arrives as edited messages; MessageHandler sees both kinds
    app.add_handler(MessageHandler(filters.LOCATION & owner_only, handle_location))

    if prompter is not None:
        app.add_handler(CallbackQueryHandler(prompter.handle_callback, pattern=CALLBACK_PATTERN))

    # Global error handler: sends tracebacks to the owner via Telegram
    app.add_error_handler(error_handler)

    return app
