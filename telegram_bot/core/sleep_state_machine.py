"""
Sleep State Machine - Turns goodnight / good morning messages into session changes.

Per user the states are NONE (no open session) and OPEN (one session with no
wake time). A sleep-start opens a session, a wake-up closes it. Each
transition runs under the user's lock and inside a single transaction, so a
session change and its aggregate change are never seen half-applied.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy.orm import sessionmaker

from shared.config.database import StorageError, session_scope
from shared.config.settings import SleepConfig
from shared.data import crud
from telegram_bot.core.intents import SLEEP_END_KEYWORDS, SLEEP_START_KEYWORDS, matches_keywords
from telegram_bot.core.time_span import (
    duration_minutes, from_storage, is_in_window, local_day, local_hour, localize, to_storage
)
from telegram_bot.core.user_locks import UserLockRegistry

logger = logging.getLogger(__name__)


class SleepOutcome(str, Enum):
    NOT_APPLICABLE = 'not_applicable'
    CREATED = 'created'
    REPEAT = 'repeat'
    CLOSED = 'closed'
    NO_OPEN_SESSION = 'no_open_session'
    STORAGE_ERROR = 'storage_error'


@dataclass
class SleepResult:
    """Outcome of a sleep-start or sleep-end message."""
    outcome: SleepOutcome
    user_id: Optional[str] = None
    session_id: Optional[int] = None
    sleep_at: Optional[datetime] = None
    wake_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    evening_count: int = 0
    escalated: bool = False


class SleepStateMachine:
    """Opens and closes sleep sessions for users."""

    def __init__(self, session_factory: sessionmaker, settings: SleepConfig,
                 locks: Optional[UserLockRegistry] = None):
        self.session_factory = session_factory
        self.settings = settings
        self.locks = locks or UserLockRegistry()
        self.tz = settings.timezone

    def handle_sleep_start(self, user_id, message_text: str, now: datetime,
                           display_name: Optional[str] = None) -> SleepResult:
        """
        Record a goodnight message.

        Returns NOT_APPLICABLE when the text or the hour does not fit,
        REPEAT when a session already opened today, otherwise CREATED.
        """
        if not matches_keywords(message_text, SLEEP_START_KEYWORDS):
            return SleepResult(SleepOutcome.NOT_APPLICABLE)
        now = localize(now, self.tz)
        if not is_in_window(local_hour(now, self.tz), self.settings.evening_span):
            return SleepResult(SleepOutcome.NOT_APPLICABLE)

        user_id = str(user_id)
        today = local_day(now, self.tz)

        try:
            with self.locks.hold(user_id):
                with session_scope(self.session_factory, f"sleep start for user {user_id}") as db:
                    user = crud.get_or_create_user(db, user_id, display_name)

                    open_record = crud.get_open_record(db, user_id)
                    if open_record is not None and open_record.day == today:
                        logger.info(f"User {user_id} repeated goodnight, keeping record {open_record.id}")
                        return SleepResult(
                            SleepOutcome.REPEAT,
                            user_id=user_id,
                            session_id=open_record.id,
                            sleep_at=from_storage(open_record.sleep_at, self.tz),
                            evening_count=user.evening_count or 0,
                        )
                    if open_record is not None:
                        crud.abandon_sleep_record(db, open_record)
                        crud.clear_open_session(db, user)

                    record = crud.create_sleep_record(db, user_id, to_storage(now), today)

                    user.evening_count = (user.evening_count or 0) + 1
                    user.open_session_id = record.id
                    evening_count = user.evening_count
        except StorageError:
            return SleepResult(SleepOutcome.STORAGE_ERROR, user_id=user_id)

        logger.info(f"User {user_id} went to sleep at {now.isoformat()} (goodnight #{evening_count})")
        return SleepResult(
            SleepOutcome.CREATED,
            user_id=user_id,
            session_id=record.id,
            sleep_at=now,
            evening_count=evening_count,
            escalated=evening_count >= self.settings.many_evening_threshold,
        )

    def handle_sleep_end(self, user_id, message_text: str, now: datetime) -> SleepResult:
        """
        Record a wake-up message.

        Returns NOT_APPLICABLE when the text or the hour does not fit,
        NO_OPEN_SESSION when there is nothing to close, otherwise CLOSED.
        """
        if not matches_keywords(message_text, SLEEP_END_KEYWORDS):
            return SleepResult(SleepOutcome.NOT_APPLICABLE)
        now = localize(now, self.tz)
        if not is_in_window(local_hour(now, self.tz), self.settings.morning_span):
            return SleepResult(SleepOutcome.NOT_APPLICABLE)

        user_id = str(user_id)

        try:
            with self.locks.hold(user_id):
                with session_scope(self.session_factory, f"sleep end for user {user_id}") as db:
                    user = crud.get_user(db, user_id)
                    if user is None or user.open_session_id is None:
                        return SleepResult(SleepOutcome.NO_OPEN_SESSION, user_id=user_id)

                    record = crud.get_sleep_record(db, user.open_session_id)
                    if record is None or record.user_id != user_id or not record.is_open:
                        logger.warning(
                            f"User {user_id} points at stale sleep record {user.open_session_id}, clearing it"
                        )
                        crud.clear_open_session(db, user)
                        return SleepResult(SleepOutcome.NO_OPEN_SESSION, user_id=user_id)

                    wake_at = to_storage(now)
                    duration = duration_minutes(record.sleep_at, wake_at)
                    crud.close_sleep_record(db, record, wake_at, duration)

                    user.sleep_total_minutes = (user.sleep_total_minutes or 0) + duration
                    user.sleep_count = (user.sleep_count or 0) + 1
                    user.evening_count = 0
                    user.open_session_id = None
                    sleep_at = record.sleep_at
                    session_id = record.id
        except StorageError:
            return SleepResult(SleepOutcome.STORAGE_ERROR, user_id=user_id)

        logger.info(f"User {user_id} woke up after {duration} minutes (record {session_id})")
        return SleepResult(
            SleepOutcome.CLOSED,
            user_id=user_id,
            session_id=session_id,
            sleep_at=from_storage(sleep_at, self.tz),
            wake_at=now,
            duration_minutes=duration,
        )
