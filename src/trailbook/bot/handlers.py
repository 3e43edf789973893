"""
Telegram bot command handlers.

All handlers receive (update, context) from python-telegram-bot.
Bot data keys (set in build_bot_app):
  context.bot_data["store"]         — TripStore
  context.bot_data["trips"]         — TripService
  context.bot_data["detection"]     — TripDetectionService
  context.bot_data["owner_chat_id"] — chat that receives error reports
"""
import asyncio
import logging
import traceback

from telegram import Update
from telegram.ext import ContextTypes

from trailbook.errors import InvalidInputError, TrailbookError, user_message
from trailbook.trips.clustering import format_day
from trailbook.trips.items import TripSnapshot

logger = logging.getLogger(__name__)

_TELEGRAM_MAX_LEN = 4096
_ACTIVITY_LIMIT = 10


async def _reply_long(update: Update, text: str) -> None:
    """Send text, splitting into ≤4096-char chunks if needed."""
    for i in range(0, len(text), _TELEGRAM_MAX_LEN):
        await update.message.reply_text(text[i : i + _TELEGRAM_MAX_LEN])


def _format_trip(snapshot: TripSnapshot) -> str:
    trip = snapshot.trip
    line = f"• {trip.name} ({format_day(trip.start_date)} – {format_day(trip.end_date)}), {len(snapshot.items)} items"
    if trip.auto_generated:
        line += " [auto]"
    if trip.dates_locked:
        line += " [locked]"
    return line


async def handle_trips(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /trips — list the user's own trips and trips shared with them.
    """
    service = context.bot_data["trips"]
    mine = service.my_trips()
    shared = service.shared_trips()

    if not mine and not shared:
        await update.message.reply_text("No trips yet. Run /detect to look for some.")
        return

    lines = []
    if mine:
        lines.append("Your trips:")
        lines.extend(_format_trip(s) for s in mine)
    if shared:
        if lines:
            lines.append("")
        lines.append("Shared with you:")
        lines.extend(_format_trip(s) for s in shared)
    await _reply_long(update, "\n".join(lines))


async def handle_activities(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /activities — the most recent activities.
    """
    service = context.bot_data["trips"]
    store = context.bot_data["store"]
    activities = store.list_activities(service.user_id, limit=_ACTIVITY_LIMIT)

    if not activities:
        await update.message.reply_text("No activities recorded yet.")
        return

    lines = []
    for a in activities:
        km = a.distance_meters / 1000.0
        minutes = a.duration_seconds // 60
        lines.append(f"#{a.id} {format_day(a.activity_date)} {a.activity_type}: {a.name}, {km:.2f} km, {minutes} min")
    await _reply_long(update, "\n".join(lines))


async def handle_detect(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /detect — look for unorganized trips in the background and ask about each.
    """
    detection = context.bot_data["detection"]
    if detection.running:
        await update.message.reply_text("Already looking for trips, answer the open questions first.")
        return
    await update.message.reply_text("Looking for trips in your recent activities and places...")
    # Answers arrive as callback queries, which this handler would otherwise block
    asyncio.create_task(_run_detection_background(detection))


async def _run_detection_background(detection) -> None:
    try:
        await detection.run_detection()
    except Exception as exc:
        logger.exception("Detection run failed: %s", exc)
        if detection.prompter is not None:
            await detection.prompter.notify(user_message(exc))


async def handle_clear_rejections(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /clearrejections [item_id ...] — allow declined items to be suggested again.
    """
    service = context.bot_data["trips"]
    parts = (update.message.text or "").strip().split()[1:]
    try:
        item_ids = [int(p) for p in parts] or None
    except ValueError:
        await update.message.reply_text("Usage: /clearrejections [item_id ...]")
        return

    try:
        cleared = service.clear_rejections(item_ids=item_ids)
    except TrailbookError as exc:
        await update.message.reply_text(user_message(exc))
        return
    await update.message.reply_text(f"Cleared {cleared} declined suggestion(s).")


async def handle_home(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /home <lat> <lon> [radius_km] — set the home area that never counts as a trip.
    """
    service = context.bot_data["trips"]
    store = context.bot_data["store"]
    parts = (update.message.text or "").strip().split()[1:]
    try:
        lat, lon = float(parts[0]), float(parts[1])
        radius = float(parts[2]) if len(parts) > 2 else None
    except (IndexError, ValueError):
        await update.message.reply_text("Usage: /home <lat> <lon> [radius_km]")
        return
    if not (-90 <= lat <= 90 and -180 <= lon <= 180) or (radius is not None and radius <= 0):
        await update.message.reply_text(user_message(InvalidInputError()))
        return

    store.save_home(service.user_id, lat, lon, radius)
    radius_text = f"{radius:g} km" if radius else "the default radius"
    await update.message.reply_text(f"Home set. Items within {radius_text} won't be suggested as trips.")


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Global PTB error handler — logs the exception and notifies the owner."""
    logger.exception("Unhandled exception", exc_info=context.error)

    chat_id = context.bot_data.get("owner_chat_id")
    if not chat_id:
        return

    if isinstance(context.error, TrailbookError):
        await context.bot.send_message(chat_id=chat_id, text=user_message(context.error))
        return

    tb = "".join(traceback.format_exception(type(context.error), context.error, context.error.__traceback__))
    # Telegram message limit is 4096 chars
    short_tb = tb[-3000:] if len(tb) > 3000 else tb
    await context.bot.send_message(
        chat_id=chat_id,
        text=f"⚠️ {user_message(context.error)}\n<pre>{short_tb}</pre>",
        parse_mode="HTML",
    )
