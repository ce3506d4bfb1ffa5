from datetime import datetime, timezone
from pathlib import Path

import pytest

from shared.config.database import create_db_engine, create_session_factory, create_tables
from shared.config.settings import SleepConfig
from telegram_bot.coordinator.handlers.message_router import MessageRouter
from telegram_bot.core.sleep_state_machine import SleepStateMachine
from telegram_bot.core.stats_engine import StatsEngine


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> SleepConfig:
    return SleepConfig(
        morning_span=(6, 12),
        evening_span=(21, 3),
        many_evening_threshold=3,
        rank_default_top=10,
        rank_max_top=50,
        history_days=7,
        timezone_name="UTC",
    )


@pytest.fixture
def db_engine(tmp_path: Path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'sleep-record.db'}", timeout_seconds=30)
    assert create_tables(engine) is True
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def state_machine(session_factory, settings) -> SleepStateMachine:
    return SleepStateMachine(session_factory, settings)


@pytest.fixture
def stats_engine(session_factory, settings) -> StatsEngine:
    return StatsEngine(session_factory, settings)


@pytest.fixture
def router(state_machine, stats_engine, settings) -> MessageRouter:
    return MessageRouter(state_machine, stats_engine, settings)
