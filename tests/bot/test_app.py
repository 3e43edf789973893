"""Tests for the bot application factory wiring."""
from telegram.ext import CallbackQueryHandler, CommandHandler, MessageHandler

from trailbook.bot.app import build_bot_app
from trailbook.bot.prompter import TelegramPrompter
from trailbook.config import Settings
from trailbook.tracking.recorder import TrackingState

TOKEN = "123456:TEST-token"


def registered(app):
    return app.handlers[0]


class TestBuildBotApp:
    def test_registers_commands(self, engine):
        app = build_bot_app(TOKEN, engine, Settings(), owner_chat_id=7)
        commands = set()
        for handler in registered(app):
            if isinstance(handler, CommandHandler):
                commands |= set(handler.commands)
        assert commands == {
            "trips", "activities", "detect", "clearrejections", "home",
            "track", "pause", "resume", "status", "stop", "discard",
        }

    def test_location_and_callback_handlers(self, engine):
        app = build_bot_app(TOKEN, engine, Settings(), owner_chat_id=7)
        kinds = [type(h) for h in registered(app)]
        assert MessageHandler in kinds
        assert CallbackQueryHandler in kinds

    def test_bot_data(self, engine):
        settings = Settings(user_id="me", prompt_timeout_seconds=60.0)
        app = build_bot_app(TOKEN, engine, settings, owner_chat_id=7)

        prompter = app.bot_data["prompter"]
        assert isinstance(prompter, TelegramPrompter)
        assert (prompter.chat_id, prompter.timeout) == (7, 60.0)
        assert app.bot_data["trips"].user_id == "me"
        assert app.bot_data["detection"].prompter is prompter
        assert app.bot_data["recorder"].state is TrackingState.IDLE

    def test_without_owner_no_prompter(self, engine):
        app = build_bot_app(TOKEN, engine, Settings())
        assert app.bot_data["prompter"] is None
        assert CallbackQueryHandler not in [type(h) for h in registered(app)]
