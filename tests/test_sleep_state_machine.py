import threading
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import OperationalError

from conftest import utc
from shared.config.database import session_scope
from shared.data import crud
from shared.config.settings import SleepConfig
from shared.data.models import SleepRecord, SleepUser
from telegram_bot.core.sleep_state_machine import SleepOutcome, SleepStateMachine
from telegram_bot.core.time_span import duration_minutes


def _user(session_factory, user_id: str) -> SleepUser:
    with session_scope(session_factory) as db:
        return crud.get_user(db, user_id)


def _records(session_factory, user_id: str):
    with session_scope(session_factory) as db:
        return db.query(SleepRecord).filter(SleepRecord.user_id == user_id).order_by(SleepRecord.id).all()


def test_sleep_start_then_repeat_on_same_day(state_machine, session_factory) -> None:
    created = state_machine.handle_sleep_start("U", "Good night everyone", utc(2024, 1, 1, 23, 0))

    assert created.outcome == SleepOutcome.CREATED
    assert created.sleep_at == utc(2024, 1, 1, 23, 0)
    assert created.evening_count == 1
    assert created.escalated is False

    repeat = state_machine.handle_sleep_start("U", "晚安", utc(2024, 1, 1, 23, 30))

    assert repeat.outcome == SleepOutcome.REPEAT
    assert repeat.sleep_at == utc(2024, 1, 1, 23, 0)
    assert repeat.session_id == created.session_id

    records = _records(session_factory, "U")
    assert len(records) == 1
    assert records[0].wake_at is None
    assert records[0].duration_minutes is None
    assert records[0].day == date(2024, 1, 1)

    user = _user(session_factory, "U")
    assert user.open_session_id == created.session_id
    assert user.sleep_total_minutes == 0
    assert user.sleep_count == 0


def test_sleep_end_closes_the_open_session(state_machine, session_factory) -> None:
    created = state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, 0))

    closed = state_machine.handle_sleep_end("U", "Good morning!", utc(2024, 1, 2, 7, 0))

    assert closed.outcome == SleepOutcome.CLOSED
    assert closed.duration_minutes == 480
    assert closed.sleep_at == utc(2024, 1, 1, 23, 0)
    assert closed.wake_at == utc(2024, 1, 2, 7, 0)
    assert closed.session_id == created.session_id

    user = _user(session_factory, "U")
    assert user.sleep_total_minutes == 480
    assert user.sleep_count == 1
    assert user.open_session_id is None

    record = _records(session_factory, "U")[0]
    assert record.id == created.session_id
    assert record.user_id == "U"
    assert record.duration_minutes == duration_minutes(record.sleep_at, record.wake_at)


def test_sleep_end_without_open_session_changes_nothing(state_machine, session_factory) -> None:
    result = state_machine.handle_sleep_end("nobody", "good morning", utc(2024, 1, 2, 7, 0))

    assert result.outcome == SleepOutcome.NO_OPEN_SESSION
    assert _user(session_factory, "nobody") is None
    assert _records(session_factory, "nobody") == []


def test_second_wake_up_finds_nothing_to_close(state_machine, session_factory) -> None:
    state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, 0))
    state_machine.handle_sleep_end("U", "good morning", utc(2024, 1, 2, 7, 0))

    again = state_machine.handle_sleep_end("U", "good morning", utc(2024, 1, 2, 7, 5))

    assert again.outcome == SleepOutcome.NO_OPEN_SESSION
    user = _user(session_factory, "U")
    assert user.sleep_total_minutes == 480
    assert user.sleep_count == 1


@pytest.mark.parametrize(
    "text, hour",
    [
        ("hello there", 23),
        ("good night", 15),
    ],
)
def test_sleep_start_not_applicable(state_machine, session_factory, text: str, hour: int) -> None:
    result = state_machine.handle_sleep_start("U", text, utc(2024, 1, 1, hour, 0))

    assert result.outcome == SleepOutcome.NOT_APPLICABLE
    assert _user(session_factory, "U") is None


def test_sleep_end_outside_morning_window_is_not_applicable(state_machine) -> None:
    state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, 0))

    result = state_machine.handle_sleep_end("U", "good morning", utc(2024, 1, 2, 14, 0))

    assert result.outcome == SleepOutcome.NOT_APPLICABLE


def test_sleep_after_midnight_belongs_to_the_new_day(state_machine, session_factory) -> None:
    state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 22, 0))
    state_machine.handle_sleep_end("U", "good morning", utc(2024, 1, 2, 6, 0))

    result = state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 3, 1, 30))

    assert result.outcome == SleepOutcome.CREATED
    assert _records(session_factory, "U")[-1].day == date(2024, 1, 3)


def test_goodnight_counter_escalates_on_nights_without_a_wake_up(state_machine, session_factory) -> None:
    counts = []
    escalated = []
    for day in (1, 2, 3):
        started = state_machine.handle_sleep_start("U", "good night", utc(2024, 1, day, 23, 0))
        assert started.outcome == SleepOutcome.CREATED
        counts.append(started.evening_count)
        escalated.append(started.escalated)

    assert counts == [1, 2, 3]
    assert escalated == [False, False, True]
    assert _user(session_factory, "U").evening_count == 3


def test_wake_up_resets_the_goodnight_counter(state_machine, session_factory) -> None:
    state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, 0))
    state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 2, 23, 0))
    assert state_machine.handle_sleep_end("U", "good morning", utc(2024, 1, 3, 7, 0)).outcome == SleepOutcome.CLOSED
    assert _user(session_factory, "U").evening_count == 0

    next_night = state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 3, 23, 0))

    assert next_night.evening_count == 1
    assert next_night.escalated is False


def test_naive_timestamps_are_read_in_the_configured_zone(session_factory) -> None:
    machine = SleepStateMachine(session_factory, SleepConfig(timezone_name="Asia/Shanghai"))

    started = machine.handle_sleep_start("U", "good night", datetime(2024, 1, 1, 23, 0))

    assert started.outcome == SleepOutcome.CREATED
    assert started.sleep_at == datetime(2024, 1, 1, 23, 0, tzinfo=ZoneInfo("Asia/Shanghai"))
    record = _records(session_factory, "U")[0]
    assert record.day == date(2024, 1, 1)
    assert record.sleep_at == datetime(2024, 1, 1, 15, 0)

    closed = machine.handle_sleep_end("U", "good morning", datetime(2024, 1, 2, 7, 0))

    assert closed.duration_minutes == 480


def test_stale_open_session_from_earlier_day_is_abandoned(state_machine, session_factory) -> None:
    first = state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, 0))

    second = state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 2, 23, 0))

    assert second.outcome == SleepOutcome.CREATED
    assert second.session_id != first.session_id

    old, new = _records(session_factory, "U")
    assert old.abandoned is True
    assert old.wake_at is None and old.duration_minutes is None
    assert new.is_open
    assert _user(session_factory, "U").open_session_id == new.id

    closed = state_machine.handle_sleep_end("U", "good morning", utc(2024, 1, 3, 7, 0))
    assert closed.session_id == new.id
    assert closed.duration_minutes == 480


def test_stale_pointer_is_cleared(state_machine, session_factory) -> None:
    state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, 0))
    with session_scope(session_factory) as db:
        user = crud.get_user(db, "U")
        user.open_session_id = 9999

    result = state_machine.handle_sleep_end("U", "good morning", utc(2024, 1, 2, 7, 0))

    assert result.outcome == SleepOutcome.NO_OPEN_SESSION
    assert _user(session_factory, "U").open_session_id is None


def test_pointer_to_another_users_session_is_cleared(state_machine, session_factory) -> None:
    other = state_machine.handle_sleep_start("other", "good night", utc(2024, 1, 1, 22, 0))
    state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, 0))
    with session_scope(session_factory) as db:
        crud.get_user(db, "U").open_session_id = other.session_id

    result = state_machine.handle_sleep_end("U", "good morning", utc(2024, 1, 2, 7, 0))

    assert result.outcome == SleepOutcome.NO_OPEN_SESSION
    assert _user(session_factory, "U").open_session_id is None
    assert _records(session_factory, "other")[0].is_open


def test_display_name_is_stored_and_refreshed(state_machine, session_factory) -> None:
    state_machine.handle_sleep_start(42, "good night", utc(2024, 1, 1, 23, 0), display_name="Ann")
    assert _user(session_factory, "42").display_name == "Ann"

    state_machine.handle_sleep_start(42, "good night", utc(2024, 1, 1, 23, 5), display_name="Annie")
    assert _user(session_factory, "42").display_name == "Annie"


def test_storage_failure_is_reported_not_raised(state_machine, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(crud, "get_or_create_user", broken)

    result = state_machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, 0))

    assert result.outcome == SleepOutcome.STORAGE_ERROR


def test_concurrent_sleep_starts_open_exactly_one_session(session_factory, settings) -> None:
    machine = SleepStateMachine(session_factory, settings)
    barrier = threading.Barrier(8)
    outcomes = []
    outcomes_lock = threading.Lock()

    def worker(offset: int) -> None:
        barrier.wait()
        result = machine.handle_sleep_start("U", "good night", utc(2024, 1, 1, 23, offset))
        with outcomes_lock:
            outcomes.append(result.outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(SleepOutcome.CREATED) == 1
    assert outcomes.count(SleepOutcome.REPEAT) == 7
    with session_scope(session_factory) as db:
        assert crud.count_open_records(db, "U") == 1


def test_concurrent_users_do_not_block_each_other(session_factory, settings) -> None:
    machine = SleepStateMachine(session_factory, settings)
    users = [f"user-{i}" for i in range(6)]
    results = {}

    def worker(user_id: str) -> None:
        results[user_id] = machine.handle_sleep_start(user_id, "good night", utc(2024, 1, 1, 23, 0))

    threads = [threading.Thread(target=worker, args=(user_id,)) for user_id in users]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert {result.outcome for result in results.values()} == {SleepOutcome.CREATED}
    assert machine.locks.get_lock_count() == len(users)
