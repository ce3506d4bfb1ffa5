"""
Stats Engine - Personal sleep history and sleep leaderboards.

Everything here is read-only: closed sessions are aggregated on the fly and
nothing is written back.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import sessionmaker

from shared.config.database import StorageError, session_scope
from shared.config.settings import SleepConfig
from shared.data import crud
from telegram_bot.core.time_span import from_storage, local_day

logger = logging.getLogger(__name__)


class StatsStatus(str, Enum):
    OK = 'ok'
    EMPTY = 'empty'
    STORAGE_ERROR = 'storage_error'


class WindowKind(str, Enum):
    DAY = 'day'
    WEEK = 'week'
    MONTH = 'month'


class BedtimeVerdict(str, Enum):
    REGULAR = 'regular'
    LATE = 'late'
    STAY_UP = 'stay_up'


@dataclass
class HistoryEntry:
    day: date
    sleep_time: time
    wake_time: Optional[time]
    duration_minutes: Optional[int]


@dataclass
class HistoryResult:
    status: StatsStatus
    user_id: str
    window_days: int
    entries: List[HistoryEntry] = field(default_factory=list)
    average_minutes: Optional[int] = None
    completed_count: int = 0
    verdict: Optional[BedtimeVerdict] = None


@dataclass
class LeaderboardEntry:
    rank: int
    user_id: str
    name: str
    total_minutes: int
    count: int
    average_minutes: Optional[float] = None


@dataclass
class LeaderboardResult:
    status: StatsStatus
    window_kind: WindowKind
    start_date: date
    end_date: date
    top: int
    entries: List[LeaderboardEntry] = field(default_factory=list)


@dataclass
class ReconciliationReport:
    status: StatsStatus
    user_id: str
    stored_total_minutes: int = 0
    computed_total_minutes: int = 0
    stored_count: int = 0
    computed_count: int = 0
    open_sessions: int = 0

    @property
    def consistent(self) -> bool:
        return (self.status == StatsStatus.OK
                and self.stored_total_minutes == self.computed_total_minutes
                and self.stored_count == self.computed_count
                and self.open_sessions <= 1)


def resolve_window(window_kind: WindowKind, today: date) -> Tuple[date, date]:
    """Map a leaderboard window to its inclusive [start, end] date range."""
    if window_kind == WindowKind.DAY:
        return today, today
    if window_kind == WindowKind.MONTH:
        return today - relativedelta(months=1), today
    return today - timedelta(days=7), today


def display_label(user_id: str, name: Optional[str] = None) -> str:
    """Stored name, or a label built from the last four characters of the id."""
    if name:
        return name
    return f"User{str(user_id)[-4:]}"


def user_id_sort_key(user_id: str) -> Tuple[int, object]:
    """Numeric ids order by value, so "9" comes before "10"; other ids follow as text."""
    try:
        return 0, int(user_id)
    except ValueError:
        return 1, user_id


def bedtime_verdict(sleep_times: List[time]) -> Optional[BedtimeVerdict]:
    """
    Judge the mean bedtime. Times before noon count as past midnight,
    so 01:30 weighs as 25.5.
    """
    if not sleep_times:
        return None
    hours = []
    for value in sleep_times:
        hour = value.hour + value.minute / 60
        if hour < 12:
            hour += 24
        hours.append(hour)
    average = sum(hours) / len(hours)
    if average < 22:
        return BedtimeVerdict.REGULAR
    if average < 24:
        return BedtimeVerdict.LATE
    return BedtimeVerdict.STAY_UP


class StatsEngine:
    """Computes sleep statistics from stored sessions."""

    def __init__(self, session_factory: sessionmaker, settings: SleepConfig):
        self.session_factory = session_factory
        self.settings = settings
        self.tz = settings.timezone

    def _today(self, now: Optional[datetime]) -> date:
        return local_day(now or datetime.now(self.tz), self.tz)

    def clamp_top(self, top: Optional[int]) -> int:
        if top is None:
            return self.settings.rank_default_top
        return max(1, min(int(top), self.settings.rank_max_top))

    def personal_history(self, user_id, window_days: Optional[int] = None,
                         now: Optional[datetime] = None) -> HistoryResult:
        """
        A user's sessions over the last ``window_days`` days, newest first.

        Wake time and duration are None for sessions that were never closed.
        The average only counts completed sessions.
        """
        user_id = str(user_id)
        if window_days is None:
            window_days = self.settings.history_days
        today = self._today(now)

        try:
            with session_scope(self.session_factory, f"history query for user {user_id}") as db:
                records = crud.get_user_records(db, user_id, today - timedelta(days=window_days), today)
        except StorageError:
            return HistoryResult(StatsStatus.STORAGE_ERROR, user_id, window_days)

        if not records:
            return HistoryResult(StatsStatus.EMPTY, user_id, window_days)

        entries = []
        total = 0
        completed = 0
        for record in records:
            sleep_at = from_storage(record.sleep_at, self.tz)
            wake_at = from_storage(record.wake_at, self.tz)
            entries.append(HistoryEntry(
                day=record.day,
                sleep_time=sleep_at.time().replace(second=0, microsecond=0),
                wake_time=wake_at.time().replace(second=0, microsecond=0) if wake_at else None,
                duration_minutes=record.duration_minutes,
            ))
            if record.duration_minutes is not None:
                total += record.duration_minutes
                completed += 1

        result = HistoryResult(StatsStatus.OK, user_id, window_days, entries=entries, completed_count=completed)
        if completed:
            result.average_minutes = round(total / completed)
            result.verdict = bedtime_verdict([entry.sleep_time for entry in entries])
        return result

    def leaderboard(self, window_kind: WindowKind = WindowKind.WEEK, top: Optional[int] = None,
                    show_average: Optional[bool] = None, now: Optional[datetime] = None) -> LeaderboardResult:
        """
        Rank users by total sleep over a day / week / month window.

        Only closed sessions count. Ties on total go to the smaller user id.
        """
        window_kind = WindowKind(window_kind)
        top = self.clamp_top(top)
        if show_average is None:
            show_average = self.settings.rank_show_average
        start_date, end_date = resolve_window(window_kind, self._today(now))

        try:
            with session_scope(self.session_factory, f"{window_kind.value} leaderboard query") as db:
                records = crud.get_closed_records(db, start_date, end_date)
                users = crud.get_users_by_ids(db, sorted({record.user_id for record in records}))
        except StorageError:
            return LeaderboardResult(StatsStatus.STORAGE_ERROR, window_kind, start_date, end_date, top)

        if not records:
            return LeaderboardResult(StatsStatus.EMPTY, window_kind, start_date, end_date, top)

        names: Dict[str, Optional[str]] = {user.user_id: user.display_name for user in users}
        totals: Dict[str, int] = defaultdict(int)
        counts: Dict[str, int] = defaultdict(int)
        for record in records:
            totals[record.user_id] += record.duration_minutes
            counts[record.user_id] += 1

        ranked = sorted(totals, key=lambda uid: (-totals[uid], user_id_sort_key(uid)))[:top]
        entries = [
            LeaderboardEntry(
                rank=position,
                user_id=uid,
                name=display_label(uid, names.get(uid)),
                total_minutes=totals[uid],
                count=counts[uid],
                average_minutes=totals[uid] / counts[uid] if show_average else None,
            )
            for position, uid in enumerate(ranked, start=1)
        ]
        return LeaderboardResult(StatsStatus.OK, window_kind, start_date, end_date, top, entries=entries)

    def reconcile(self, user_id) -> ReconciliationReport:
        """Compare a user's running totals with a fresh sum over closed sessions."""
        user_id = str(user_id)
        try:
            with session_scope(self.session_factory, f"reconciliation for user {user_id}") as db:
                user = crud.get_user(db, user_id)
                computed_total, computed_count = crud.sum_closed_durations(db, user_id)
                open_sessions = crud.count_open_records(db, user_id)
        except StorageError:
            return ReconciliationReport(StatsStatus.STORAGE_ERROR, user_id)

        report = ReconciliationReport(
            status=StatsStatus.OK,
            user_id=user_id,
            stored_total_minutes=user.sleep_total_minutes if user else 0,
            computed_total_minutes=computed_total,
            stored_count=user.sleep_count if user else 0,
            computed_count=computed_count,
            open_sessions=open_sessions,
        )
        if not report.consistent:
            logger.warning(f"Sleep totals drifted for user {user_id}: {report}")
        return report
