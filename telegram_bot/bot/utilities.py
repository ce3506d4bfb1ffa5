"""
Bot Utilities - Reply helpers with retry on transient Telegram errors
"""

import asyncio
import logging
from telegram.error import TimedOut, NetworkError, RetryAfter

logger = logging.getLogger(__name__)


async def send_message_with_retry(send_func, text: str, max_retries: int = 3, **kwargs):
    """Send a reply, backing off on timeouts and network errors."""
    attempt = 0
    while True:
        try:
            return await send_func(text, **kwargs)
        except RetryAfter as e:
            # Rate limits don't count against the retry budget
            wait_time = e.retry_after
            wait_seconds = wait_time.total_seconds() if hasattr(wait_time, 'total_seconds') else float(wait_time)
            logger.warning(f"Rate limited, waiting {wait_seconds}s before retry...")
            await asyncio.sleep(wait_seconds)
        except (TimedOut, NetworkError) as e:
            attempt += 1
            if attempt >= max_retries:
                logger.error(f"Failed to send reply after {max_retries} attempts: {e}")
                raise
            wait_time = 2 ** (attempt - 1)  # 1s, 2s, 4s
            logger.warning(f"Send failed: {e}, retrying in {wait_time}s... (attempt {attempt}/{max_retries})")
            await asyncio.sleep(wait_time)
