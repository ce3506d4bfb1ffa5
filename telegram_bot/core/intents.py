"""
Intents - Keyword table used to classify inbound chat messages.

Classification is data: an ordered list of rules, each a set of keywords
plus an optional hour window. The first rule that matches wins.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from shared.config.settings import SleepConfig
from telegram_bot.core.time_span import is_in_window


class Intent(str, Enum):
    SLEEP_START = 'sleep_start'
    SLEEP_END = 'sleep_end'
    RANK_QUERY = 'rank_query'
    HISTORY_QUERY = 'history_query'
    HELP = 'help'
    NONE = 'none'


SLEEP_START_KEYWORDS = (
    '睡觉', '晚安', '睡了', '休息', '我要睡了',
    'good night', 'goodnight', 'going to sleep', 'off to bed',
)
SLEEP_END_KEYWORDS = (
    '早安', '早上好', '早', '我醒了', '起床了',
    'good morning', 'i woke up', "i'm awake", 'im awake',
)
RANK_KEYWORDS = (
    '睡眠排行榜', '作息排行榜', '谁最能睡',
    'sleep rank', 'sleep leaderboard', '/sleeprank',
)
HISTORY_KEYWORDS = (
    '我的睡眠', '睡眠记录', '我睡了多久',
    'my sleep', 'sleep history', '/mysleep',
)
HELP_KEYWORDS = ('sleep.help', 'sleep help', '/sleephelp')


@dataclass(frozen=True)
class IntentRule:
    """One row of the classification table."""
    intent: Intent
    keywords: Tuple[str, ...]
    window: Optional[Tuple[int, int]] = None

    def matches(self, text: str, hour: int) -> bool:
        if not matches_keywords(text, self.keywords):
            return False
        return self.window is None or is_in_window(hour, self.window)


def matches_keywords(text: Optional[str], keywords: Iterable[str]) -> bool:
    """Case-insensitive substring match against any keyword."""
    if not text:
        return False
    content = text.strip().lower()
    return any(keyword in content for keyword in keywords)


def build_intent_table(settings: SleepConfig) -> List[IntentRule]:
    """The fixed evaluation order: sleep-start, sleep-end, rank, history, help."""
    return [
        IntentRule(Intent.SLEEP_START, SLEEP_START_KEYWORDS, tuple(settings.evening_span)),
        IntentRule(Intent.SLEEP_END, SLEEP_END_KEYWORDS, tuple(settings.morning_span)),
        IntentRule(Intent.RANK_QUERY, RANK_KEYWORDS),
        IntentRule(Intent.HISTORY_QUERY, HISTORY_KEYWORDS),
        IntentRule(Intent.HELP, HELP_KEYWORDS),
    ]


def classify(table: List[IntentRule], text: str, hour: int) -> Intent:
    """Return the intent of the first matching rule, or Intent.NONE."""
    for rule in table:
        if rule.matches(text, hour):
            return rule.intent
    return Intent.NONE
