"""
Recording activities from a Telegram live location.

The owner shares a live location with the bot; every update arrives as a
(possibly edited) location message and is pushed into the QueueLocationService
the TrackRecorder is watching. Commands drive the recorder:

  /track <type>   /pause   /resume   /stop [name]   /discard   /status

Bot data keys (set in build_bot_app):
  context.bot_data["location"] — QueueLocationService
  context.bot_data["recorder"] — TrackRecorder
  context.bot_data["trips"]    — TripService (suggests a trip after /stop)
"""
import asyncio
import logging

from telegram import Update
from telegram.ext import ContextTypes

from trailbook.errors import InvalidInputError, TrailbookError, user_message
from trailbook.models.activity import ActivityType
from trailbook.tracking.fixes import LocationFix
from trailbook.tracking.signal import SignalAlert
from trailbook.trips.items import track_activity

logger = logging.getLogger(__name__)

ALERT_MESSAGES = {
    SignalAlert.POOR_SIGNAL: "GPS signal is weak, distance may be under-counted for a while.",
    SignalAlert.SIGNAL_RESTORED: "GPS signal is back.",
}


def _error_text(exc: TrailbookError) -> str:
    """Input errors explain themselves; everything else gets its category message."""
    return str(exc) if isinstance(exc, InvalidInputError) else user_message(exc)


def fix_from_message(message) -> LocationFix:
    """LocationFix from a Telegram message carrying a (live) location."""
    loc = message.location
    sent_at = message.edit_date or message.date
    return LocationFix(
        latitude=loc.latitude,
        longitude=loc.longitude,
        timestamp_ms=int(sent_at.timestamp() * 1000),
        accuracy_m=loc.horizontal_accuracy,
    )


def make_alert_notifier(prompter):
    """on_alert callback for TrackRecorder that forwards signal alerts to the chat."""

    def notify(alert: SignalAlert) -> None:
        if prompter is not None:
            asyncio.get_running_loop().create_task(prompter.notify(ALERT_MESSAGES[alert]))

    return notify


async def handle_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Location / live-location update: feed the recorder's location channel."""
    message = update.effective_message
    if message is None or message.location is None:
        return
    context.bot_data["location"].push(fix_from_message(message))


async def handle_track(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /track <type> — start recording. Share a live location to feed it.
    """
    parts = (update.message.text or "").strip().split()
    kinds = ", ".join(t.value for t in ActivityType)
    if len(parts) < 2:
        await update.message.reply_text(f"Usage: /track <type>  ({kinds})")
        return

    await update.message.reply_text(
        f"Starting {parts[1]}... share your live location with me if you haven't yet."
    )
    # start() waits for a first fix, which arrives as another update
    asyncio.create_task(_start_background(update, context.bot_data["recorder"], parts[1]))


async def _start_background(update: Update, recorder, activity_type: str) -> None:
    try:
        await recorder.start(activity_type)
    except TrailbookError as exc:
        await update.message.reply_text(_error_text(exc))
        return
    await update.message.reply_text(f"Tracking {recorder.session.activity_type.value}. /pause or /stop when done.")


async def handle_pause(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/pause — pause recording; paused time does not count."""
    try:
        await context.bot_data["recorder"].pause()
    except TrailbookError as exc:
        await update.message.reply_text(_error_text(exc))
        return
    await update.message.reply_text("Paused. /resume to continue.")


async def handle_resume(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/resume — continue after /pause."""
    try:
        await context.bot_data["recorder"].resume()
    except TrailbookError as exc:
        await update.message.reply_text(_error_text(exc))
        return
    await update.message.reply_text("Resumed.")


async def handle_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/status — live distance, duration, speed and GPS status."""
    recorder = context.bot_data["recorder"]
    if recorder.session is None:
        await update.message.reply_text("Not recording. /track <type> to start.")
        return
    minutes, seconds = divmod(recorder.current_duration_s, 60)
    await update.message.reply_text(
        f"{recorder.state.value}: {recorder.current_distance_m / 1000:.2f} km in "
        f"{minutes}:{seconds:02d}, {recorder.current_speed_kmh:.1f} km/h, "
        f"GPS {recorder.gps_status.value}"
    )


async def handle_stop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /stop [name] — finish and save the activity, then offer to add it to a trip.
    """
    recorder = context.bot_data["recorder"]
    name = (update.message.text or "").partition(" ")[2].strip()
    try:
        activity = await recorder.stop(name=name)
    except TrailbookError as exc:
        await update.message.reply_text(_error_text(exc))
        return

    await update.message.reply_text(
        f"Saved “{activity.name}”: {activity.distance_meters / 1000:.2f} km, "
        f"{activity.duration_seconds // 60} min."
    )
    if activity.id is not None:
        asyncio.create_task(_suggest_trip_background(context.bot_data["trips"], activity))


async def _suggest_trip_background(service, activity) -> None:
    try:
        await service.suggest_trip(track_activity(activity))
    except TrailbookError as exc:
        logger.error("Trip suggestion for activity %s failed: %s", activity.id, exc)
        if service.prompter is not None:
            await service.prompter.notify(user_message(exc))


async def handle_discard(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/discard — drop the current recording without saving."""
    await context.bot_data["recorder"].discard()
    await update.message.reply_text("Recording discarded.")
