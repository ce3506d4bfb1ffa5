"""
Response Formatter - Formats sleep results for Telegram.

Converts structured state machine and stats results into chat messages.
"""

from typing import Optional
import logging

from telegram_bot.core.intents import Intent
from telegram_bot.core.sleep_state_machine import SleepOutcome, SleepResult
from telegram_bot.core.stats_engine import (
    BedtimeVerdict, HistoryResult, LeaderboardResult, StatsStatus, WindowKind
)
from telegram_bot.core.time_span import format_minutes
from telegram_bot.coordinator.handlers.message_router import RouteResult

logger = logging.getLogger(__name__)

HELP_TEXT = """
📋 Sleep Record Guide

1. Going to bed: send "good night" / "晚安" / "睡觉" / "睡了" / "休息" / "我要睡了"
2. Waking up: send "good morning" / "早安" / "早上好" / "早" / "我醒了" / "起床了"
3. Leaderboard: send "sleep rank" / "睡眠排行榜" (add today / week / month, and -top N)
4. My records: send "my sleep" / "我的睡眠" / "睡眠记录" / "我睡了多久"
5. Help: send "sleep.help" or /sleephelp
""".strip()

RANK_TITLES = {
    WindowKind.DAY: "🏆 {date} sleep leaderboard (TOP{top}):",
    WindowKind.WEEK: "🏆 This week's sleep leaderboard (TOP{top}):",
    WindowKind.MONTH: "🏆 This month's sleep leaderboard (TOP{top}):",
}

VERDICT_TEXT = {
    BedtimeVerdict.REGULAR: "✅ Your schedule is regular, keep it up!",
    BedtimeVerdict.LATE: "⚠️ You often go to bed late, try to rest earlier~",
    BedtimeVerdict.STAY_UP: "❌ You've been staying up a lot lately, take care of yourself!",
}

STORAGE_ERROR_TEXT = "⚠️ Sleep records are unavailable right now. Please try again later."


class ResponseFormatter:
    """
    Formats sleep results into Telegram messages.

    Responsibilities:
    - Convert state machine results to text
    - Convert history and leaderboard results to text
    - Map storage failures to a generic retry message
    """

    @staticmethod
    def format_route_result(route: RouteResult) -> Optional[str]:
        """
        Format whatever the router produced.

        Returns:
            Message text, or None when the message was not for us
        """
        if route.intent == Intent.NONE:
            return None
        if route.intent == Intent.HELP:
            return HELP_TEXT
        if route.intent in (Intent.SLEEP_START, Intent.SLEEP_END):
            return ResponseFormatter.format_sleep_result(route.payload)
        if route.intent == Intent.RANK_QUERY:
            return ResponseFormatter.format_leaderboard(route.payload)
        if route.intent == Intent.HISTORY_QUERY:
            return ResponseFormatter.format_history(route.payload)

        logger.warning(f"No formatter for intent {route.intent}")
        return None

    @staticmethod
    def format_sleep_result(result: SleepResult) -> Optional[str]:
        """Format a sleep-start or sleep-end result."""
        if result.outcome == SleepOutcome.CREATED:
            if result.escalated:
                return f"😱 You've said good night {result.evening_count} times without a good morning! Go to sleep~"
            return f"🌙 Good night! Bedtime recorded at {result.sleep_at:%H:%M}"

        if result.outcome == SleepOutcome.REPEAT:
            return f"⚠️ You already recorded your bedtime today: {result.sleep_at:%H:%M}"

        if result.outcome == SleepOutcome.CLOSED:
            return (
                f"☀️ Good morning! You slept {format_minutes(result.duration_minutes)} "
                f"({result.sleep_at:%H:%M} → {result.wake_at:%H:%M})"
            )

        if result.outcome == SleepOutcome.NO_OPEN_SESSION:
            return "❌ No bedtime found for you~ Say \"good night\" before you sleep"

        if result.outcome == SleepOutcome.STORAGE_ERROR:
            return STORAGE_ERROR_TEXT

        return None

    @staticmethod
    def format_leaderboard(result: LeaderboardResult) -> str:
        """Format a leaderboard result."""
        if result.status == StatsStatus.STORAGE_ERROR:
            return STORAGE_ERROR_TEXT
        if result.status == StatsStatus.EMPTY:
            return "⚠️ Not enough sleep data for a leaderboard yet~"

        lines = [RANK_TITLES[result.window_kind].format(date=result.end_date.isoformat(), top=result.top)]
        for entry in result.entries:
            line = f"{entry.rank}. {entry.name} - total {format_minutes(entry.total_minutes)}"
            if entry.average_minutes is not None:
                line += f" (avg {format_minutes(int(entry.average_minutes))})"
            lines.append(line)
        return "\n".join(lines)

    @staticmethod
    def format_history(result: HistoryResult) -> str:
        """Format a personal history result."""
        if result.status == StatsStatus.STORAGE_ERROR:
            return STORAGE_ERROR_TEXT
        if result.status == StatsStatus.EMPTY:
            return "❌ You have no sleep records yet~ Start tracking tonight!"

        lines = [f"📊 Your sleep over the last {result.window_days} days:"]
        for entry in result.entries:
            wake = entry.wake_time.strftime('%H:%M') if entry.wake_time else 'not recorded'
            duration = format_minutes(entry.duration_minutes) if entry.duration_minutes is not None else 'incomplete'
            lines.append(
                f"{entry.day:%m-%d}: asleep {entry.sleep_time:%H:%M} → awake {wake} ({duration})"
            )

        if result.completed_count:
            lines.append(
                f"📈 Average sleep {format_minutes(result.average_minutes)} "
                f"over {result.completed_count} records"
            )
            if result.verdict is not None:
                lines.append(VERDICT_TEXT[result.verdict])
        return "\n".join(lines)
