"""
Message Router - Routes chat messages to the sleep state machine or stats engine.

This handler is lightweight and only routes messages, no business logic.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from shared.config.settings import SleepConfig
from telegram_bot.core.intents import Intent, build_intent_table, classify
from telegram_bot.core.sleep_state_machine import SleepOutcome, SleepStateMachine
from telegram_bot.core.stats_engine import StatsEngine, WindowKind
from telegram_bot.core.time_span import local_hour

logger = logging.getLogger(__name__)

TOP_PATTERN = re.compile(r'-top(?:\s+|=)?(\S+)?', re.IGNORECASE)

DAY_TOKENS = ('日', '天', 'today', 'daily', 'day')
MONTH_TOKENS = ('月', 'month')


class ValidationError(ValueError):
    """Raised when a command argument cannot be parsed."""


@dataclass
class RouteResult:
    """What the router did with a message."""
    intent: Intent
    payload: Optional[Any] = None

    @property
    def handled(self) -> bool:
        return self.intent != Intent.NONE


def parse_window_kind(text: str) -> WindowKind:
    """Day / month tokens pick those windows; anything else is a week."""
    content = text.lower()
    if any(token in content for token in DAY_TOKENS):
        return WindowKind.DAY
    if any(token in content for token in MONTH_TOKENS):
        return WindowKind.MONTH
    return WindowKind.WEEK


def parse_top(text: str) -> Optional[int]:
    """
    Read an optional ``-top N`` argument.

    Returns None when absent; raises ValidationError when N is not an integer.
    """
    match = TOP_PATTERN.search(text)
    if not match:
        return None
    value = match.group(1)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"-top expects a number, got {value!r}")


class MessageRouter:
    """Routes text messages through the intent table."""

    def __init__(self, state_machine: SleepStateMachine, stats_engine: StatsEngine, settings: SleepConfig):
        """
        Initialize message router.

        Args:
            state_machine: Sleep session state machine
            stats_engine: Read-only statistics engine
            settings: Validated sleep configuration
        """
        self.state_machine = state_machine
        self.stats_engine = stats_engine
        self.settings = settings
        self.table = build_intent_table(settings)

    def route(self, user_id, text: str, now: Optional[datetime] = None,
              display_name: Optional[str] = None) -> RouteResult:
        """
        Classify a message and run the first matching handler.

        Args:
            user_id: Stable user id resolved by the host
            text: Raw message text
            now: Current time, defaults to the configured timezone's clock
            display_name: Optional name shown on leaderboards

        Returns:
            RouteResult with the intent and the handler's structured result
        """
        if not text or user_id is None:
            return RouteResult(Intent.NONE)

        now = now or datetime.now(self.settings.timezone)
        intent = classify(self.table, text, local_hour(now, self.settings.timezone))

        if intent == Intent.SLEEP_START:
            result = self.state_machine.handle_sleep_start(user_id, text, now, display_name)
            if result.outcome != SleepOutcome.NOT_APPLICABLE:
                return RouteResult(intent, result)
        elif intent == Intent.SLEEP_END:
            result = self.state_machine.handle_sleep_end(user_id, text, now)
            if result.outcome != SleepOutcome.NOT_APPLICABLE:
                return RouteResult(intent, result)
        elif intent == Intent.RANK_QUERY:
            return RouteResult(intent, self._handle_rank(text, now))
        elif intent == Intent.HISTORY_QUERY:
            return RouteResult(intent, self.stats_engine.personal_history(user_id, now=now))
        elif intent == Intent.HELP:
            return RouteResult(intent)

        return RouteResult(Intent.NONE)

    def _handle_rank(self, text: str, now: datetime):
        """Parse leaderboard arguments, falling back to defaults on bad input."""
        try:
            top = parse_top(text)
        except ValidationError as e:
            logger.info(f"Ignoring bad leaderboard argument: {e}")
            top = None

        return self.stats_engine.leaderboard(
            parse_window_kind(text),
            top=self.stats_engine.clamp_top(top),
            now=now
        )
