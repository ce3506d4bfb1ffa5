"""
Command Handlers - Handles bot commands like /start, /sleephelp
"""

import logging
from telegram import Update
from telegram.error import TimedOut, NetworkError
from telegram.ext import ContextTypes
from telegram_bot.bot.utilities import send_message_with_retry
from telegram_bot.coordinator.response_formatter import HELP_TEXT

logger = logging.getLogger(__name__)

WELCOME_TEXT = """
🌙 Welcome to Sleep Record Bot 🌙

Say good night when you go to bed and good morning when you wake up.
I'll keep track of how long you sleep and who sleeps the most.

Send /sleephelp to see everything I understand.
""".strip()


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Send a message when the command /start is issued."""
    try:
        await send_message_with_retry(update.message.reply_text, WELCOME_TEXT)
    except (TimedOut, NetworkError) as e:
        logger.error(f"Failed to send welcome message after retries: {e}")


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Send a message when the command /sleephelp or /help is issued."""
    try:
        await send_message_with_retry(update.message.reply_text, HELP_TEXT)
    except (TimedOut, NetworkError) as e:
        logger.error(f"Failed to send help message: {e}")
