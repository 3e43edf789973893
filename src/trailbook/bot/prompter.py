"""
TelegramPrompter — asks the owner questions with inline keyboards.

Each question is sent as a message whose buttons carry callback data
"tp:<token>:<option key>". The asking coroutine waits on a future keyed by
<token>; handle_callback (registered as a CallbackQueryHandler) resolves it.
A question left unanswered for ``timeout`` seconds resolves to its default:
None for choose(), False for confirm().

The asking coroutine must not run inside a handler that blocks update
processing, or the answer can never arrive: start it with
asyncio.create_task (see handle_detect).
"""
import asyncio
import logging
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import ContextTypes

logger = logging.getLogger(__name__)

CALLBACK_PREFIX = "tp"
CALLBACK_PATTERN = rf"^{CALLBACK_PREFIX}:"

Option = Tuple[str, str]  # (key, button label)


class TelegramPrompter:
    def __init__(self, bot, chat_id: int, timeout: Optional[float] = 3600.0):
        """
        Args:
            bot: telegram.Bot (or AsyncMock in tests).
            chat_id: Chat the questions are sent to.
            timeout: Seconds to wait for an answer; None waits forever.
        """
        self.bot = bot
        self.chat_id = chat_id
        self.timeout = timeout
        self._pending: Dict[str, asyncio.Future] = {}
        self._labels: Dict[str, Dict[str, str]] = {}

    async def choose(self, title: str, message: str, options: Sequence[Option]) -> Optional[str]:
        """Ask a multiple-choice question; returns the chosen key or None."""
        token = uuid.uuid4().hex[:8]
        keyboard = InlineKeyboardMarkup([
            [InlineKeyboardButton(label, callback_data=f"{CALLBACK_PREFIX}:{token}:{key}")]
            for key, label in options
        ])
        future = asyncio.get_running_loop().create_future()
        self._pending[token] = future
        self._labels[token] = dict(options)
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=f"{title}\n\n{message}",
                reply_markup=keyboard,
            )
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.info("Question %r timed out", title)
            return None
        finally:
            self._pending.pop(token, None)
            self._labels.pop(token, None)

    async def confirm(self, title: str, message: str) -> bool:
        choice = await self.choose(title, message, [("yes", "Yes"), ("no", "No")])
        return choice == "yes"

    async def notify(self, message: str) -> None:
        await self.bot.send_message(chat_id=self.chat_id, text=message)

    @property
    def pending(self) -> List[str]:
        return list(self._pending)

    async def handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """CallbackQueryHandler: deliver a button press to the waiting question."""
        query = update.callback_query
        await query.answer()

        try:
            _, token, key = (query.data or "").split(":", 2)
        except ValueError:
            logger.warning("Malformed callback data: %r", query.data)
            return

        future = self._pending.get(token)
        if future is None or future.done():
            await query.edit_message_reply_markup(reply_markup=None)
            return

        label = self._labels.get(token, {}).get(key, key)
        future.set_result(key)
        await query.edit_message_text(f"{query.message.text}\n\n→ {label}")
