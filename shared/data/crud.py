"""
CRUD Operations - Database operations for sleep users and sleep records
Functions only flush; the caller's session_scope owns the commit so that a
record change and its aggregate change land in one transaction.
"""

import logging
from datetime import date, datetime
from typing import Optional, List, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import func, desc
from shared.data.models import SleepUser, SleepRecord

logger = logging.getLogger(__name__)


# Sleep User Operations
def get_user(db: Session, user_id: str) -> Optional[SleepUser]:
    """Get the aggregate row for a user."""
    return db.get(SleepUser, user_id)


def get_or_create_user(db: Session, user_id: str, display_name: Optional[str] = None) -> SleepUser:
    """Get the aggregate row for a user, creating it with zero totals on first contact."""
    user = get_user(db, user_id)
    if user is None:
        user = SleepUser(
            user_id=user_id,
            display_name=display_name,
            sleep_total_minutes=0,
            sleep_count=0,
            evening_count=0,
            open_session_id=None
        )
        db.add(user)
        db.flush()
        logger.info(f"✓ Created sleep user record for {user_id}")
    elif display_name and user.display_name != display_name:
        user.display_name = display_name
    return user


def get_users_by_ids(db: Session, user_ids: List[str]) -> List[SleepUser]:
    """Get aggregate rows for several users."""
    if not user_ids:
        return []
    return db.query(SleepUser).filter(SleepUser.user_id.in_(user_ids)).all()


def clear_open_session(db: Session, user: SleepUser) -> None:
    """Drop the open-session pointer on a user aggregate."""
    user.open_session_id = None
    db.flush()


# Sleep Record Operations
def create_sleep_record(db: Session, user_id: str, sleep_at: datetime, day: date) -> SleepRecord:
    """Create an open sleep record. ``sleep_at`` must already be naive UTC."""
    record = SleepRecord(
        user_id=user_id,
        sleep_at=sleep_at,
        wake_at=None,
        duration_minutes=None,
        day=day,
        abandoned=False
    )
    db.add(record)
    db.flush()
    logger.info(f"✓ Created sleep record {record.id} for user {user_id} ({day})")
    return record


def get_sleep_record(db: Session, record_id: int) -> Optional[SleepRecord]:
    """Get a sleep record by id."""
    return db.get(SleepRecord, record_id)


def get_open_record(db: Session, user_id: str) -> Optional[SleepRecord]:
    """Get the user's open record, if any."""
    return db.query(SleepRecord).filter(
        SleepRecord.user_id == user_id,
        SleepRecord.wake_at.is_(None),
        SleepRecord.abandoned.is_(False)
    ).order_by(desc(SleepRecord.id)).first()


def close_sleep_record(db: Session, record: SleepRecord, wake_at: datetime, duration: int) -> SleepRecord:
    """Set wake time and duration together."""
    record.wake_at = wake_at
    record.duration_minutes = duration
    db.flush()
    return record


def abandon_sleep_record(db: Session, record: SleepRecord) -> SleepRecord:
    """Mark an open record that was never closed as superseded."""
    record.abandoned = True
    db.flush()
    logger.warning(f"Abandoned unclosed sleep record {record.id} for user {record.user_id} ({record.day})")
    return record


def get_user_records(db: Session, user_id: str, start_day: date, end_day: date) -> List[SleepRecord]:
    """Get a user's records with ``day`` in [start_day, end_day], newest day first."""
    return db.query(SleepRecord).filter(
        SleepRecord.user_id == user_id,
        SleepRecord.day >= start_day,
        SleepRecord.day <= end_day
    ).order_by(desc(SleepRecord.day), desc(SleepRecord.sleep_at)).all()


def get_closed_records(db: Session, start_day: date, end_day: date) -> List[SleepRecord]:
    """Get every closed record with ``day`` in [start_day, end_day]."""
    return db.query(SleepRecord).filter(
        SleepRecord.duration_minutes.isnot(None),
        SleepRecord.day >= start_day,
        SleepRecord.day <= end_day
    ).all()


def count_open_records(db: Session, user_id: str) -> int:
    """Count a user's open records (0 or 1 when the store is healthy)."""
    return db.query(func.count(SleepRecord.id)).filter(
        SleepRecord.user_id == user_id,
        SleepRecord.wake_at.is_(None),
        SleepRecord.abandoned.is_(False)
    ).scalar()


def sum_closed_durations(db: Session, user_id: str) -> Tuple[int, int]:
    """Recompute (total minutes, session count) over a user's closed records."""
    total, count = db.query(
        func.coalesce(func.sum(SleepRecord.duration_minutes), 0),
        func.count(SleepRecord.id)
    ).filter(
        SleepRecord.user_id == user_id,
        SleepRecord.duration_minutes.isnot(None)
    ).one()
    return int(total), int(count)
