"""
Database Models - SQLAlchemy models for sleep tracking
A per-user aggregate row plus an append-only history of sleep sessions
"""

from sqlalchemy import Column, Integer, String, DateTime, Date, Boolean, Index, text
from sqlalchemy.sql import func
from shared.config.database import Base


class SleepUser(Base):
    """
    Per-user aggregate - running totals and the pointer to the open session.
    The open-session pointer lives here so it survives restarts.
    """
    __tablename__ = 'sleep_users'

    # Externally supplied stable id (platform user id as text)
    user_id = Column(String(64), primary_key=True)

    display_name = Column(String(255), nullable=True)

    # Running totals over closed sessions
    sleep_total_minutes = Column(Integer, nullable=False, default=0)
    sleep_count = Column(Integer, nullable=False, default=0)

    # Goodnights since the last wake-up, drives the escalation message
    evening_count = Column(Integer, nullable=False, default=0)

    # Currently open sleep_records.id, at most one
    open_session_id = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return (f"<SleepUser(user_id='{self.user_id}', total={self.sleep_total_minutes}, "
                f"count={self.sleep_count}, open={self.open_session_id})>")


class SleepRecord(Base):
    """
    Sleep session - one row per sleep-start event, closed at most once.
    Instants are naive UTC; ``day`` is the local date the session opened.
    """
    __tablename__ = 'sleep_records'

    # Primary key, never reused
    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(String(64), nullable=False)

    sleep_at = Column(DateTime, nullable=False)
    wake_at = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    day = Column(Date, nullable=False)

    # Superseded by a later sleep-start without ever being closed
    abandoned = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    # Indexes for performance
    __table_args__ = (
        Index('idx_sleep_record_user', user_id),
        Index('idx_sleep_record_day', day),
        Index('idx_sleep_record_user_day', user_id, day),
        Index(
            'uq_sleep_record_open_per_user',
            user_id,
            unique=True,
            sqlite_where=text('wake_at IS NULL AND abandoned = 0'),
            postgresql_where=text('wake_at IS NULL AND NOT abandoned'),
        ),
        {'sqlite_autoincrement': True},
    )

    @property
    def is_open(self) -> bool:
        return self.wake_at is None and not self.abandoned

    def __repr__(self):
        return (f"<SleepRecord(id={self.id}, user_id='{self.user_id}', day={self.day}, "
                f"duration={self.duration_minutes})>")
