"""
Sleep Record Telegram Bot - Main Bot File
Records bedtimes and wake-ups from chat messages and serves sleep statistics
"""

import asyncio
import functools
import logging
from datetime import datetime
from typing import Optional

from telegram import Update
from telegram.ext import Application, CommandHandler, MessageHandler, filters, ContextTypes
from telegram.error import TimedOut, NetworkError
from decouple import config, UndefinedValueError

from shared.config import database
from shared.config.settings import ConfigurationError, SleepConfig
from telegram_bot.bot.command_handlers import start_command, help_command
from telegram_bot.bot.utilities import send_message_with_retry
from telegram_bot.coordinator.handlers.message_router import MessageRouter
from telegram_bot.coordinator.response_formatter import ResponseFormatter
from telegram_bot.core.sleep_state_machine import SleepStateMachine
from telegram_bot.core.stats_engine import StatsEngine
from telegram_bot.core.user_locks import UserLockRegistry

logger = logging.getLogger(__name__)


class SleepBot:
    """Main bot class that connects Telegram updates to the sleep router."""

    def __init__(self, router: MessageRouter, settings: SleepConfig):
        self.router = router
        self.settings = settings
        self.formatter = ResponseFormatter()

    async def route_text(self, user_id, text: str, display_name: Optional[str] = None,
                         now: Optional[datetime] = None) -> Optional[str]:
        """Run the (blocking) router off the event loop and format its result."""
        now = now or datetime.now(self.settings.timezone)
        loop = asyncio.get_running_loop()
        route = await loop.run_in_executor(
            None,
            functools.partial(self.router.route, user_id, text, now, display_name)
        )
        return self.formatter.format_route_result(route)

    async def handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle plain text and sleep commands; silently ignore anything else."""
        if not update.message or not update.message.text or not update.effective_user:
            return

        user = update.effective_user
        reply = await self.route_text(user.id, update.message.text, user.full_name)
        if reply is None:
            return

        try:
            await send_message_with_retry(update.message.reply_text, reply)
        except (TimedOut, NetworkError) as e:
            logger.error(f"Failed to reply to user {user.id}: {e}")

    async def error_handler(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Log errors raised by handlers."""
        logger.error(f"Exception while handling an update: {context.error}", exc_info=context.error)


def build_bot(settings: SleepConfig) -> SleepBot:
    """Wire storage, state machine, stats engine and router together."""
    if not database.init_database(settings.database_url, settings.db_timeout_seconds):
        raise RuntimeError("Sleep database could not be initialized")
    database.create_tables()

    session_factory = database.get_session_factory()
    state_machine = SleepStateMachine(session_factory, settings, UserLockRegistry())
    stats_engine = StatsEngine(session_factory, settings)
    return SleepBot(MessageRouter(state_machine, stats_engine, settings), settings)


def main():
    """Start the bot."""
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=logging.INFO
    )
    # Reduce httpx logging noise (only show warnings and errors)
    logging.getLogger('httpx').setLevel(logging.WARNING)

    try:
        token = config('TELEGRAM_BOT_TOKEN')
    except UndefinedValueError:
        logger.error("TELEGRAM_BOT_TOKEN not found in environment or .env file")
        return

    try:
        settings = SleepConfig.from_env()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise SystemExit(1)

    bot = build_bot(settings)

    application = (
        Application.builder()
        .token(token)
        .connect_timeout(30.0)
        .read_timeout(30.0)
        .write_timeout(30.0)
        .pool_timeout(30.0)
        .build()
    )

    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler(["help", "sleephelp"], help_command))
    application.add_handler(CommandHandler(["sleeprank", "mysleep"], bot.handle_message))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, bot.handle_message))
    application.add_error_handler(bot.error_handler)

    logger.info("Sleep record bot started, polling for updates")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == '__main__':
    main()
