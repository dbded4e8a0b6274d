import dataclasses
import datetime

import pytest
from sqlalchemy.exc import OperationalError

from passgate.core.errors import StoreUnavailableError
from passgate.models.access_record import AccessRecord, AppendOnlyViolation
from passgate.services.access_recorder import AccessEntry, AccessQuery, AccessRecorder, success_rate

from conftest import add_user, utcnow


def _entry(result="success", device_id="GATE_1", user_id=1, minutes_ago=0, now=None):
    now = now or utcnow()
    return AccessEntry(
        device_id=device_id,
        direction="in",
        result=result,
        timestamp=now - datetime.timedelta(minutes=minutes_ago),
        user_id=user_id,
        fail_reason=None if result == "success" else "passcode_expired",
    )


def test_success_rate_is_defined_for_empty_window():
    assert success_rate(0, 0) == 0.0
    assert success_rate(2, 3) == 66.67
    assert success_rate(3, 3) == 100.0


def test_stats_two_successes_one_failure(session_factory):
    recorder = AccessRecorder(session_factory)
    now = utcnow()
    recorder.append(_entry(now=now, minutes_ago=3))
    recorder.append(_entry(now=now, minutes_ago=2, device_id="GATE_2"))
    recorder.append(_entry("failed", now=now, minutes_ago=1))

    stats = recorder.stats(now=now)
    assert (stats.total, stats.success, stats.failed) == (3, 2, 1)
    assert stats.success_rate == 66.67
    assert stats.by_device == {"GATE_1": 2, "GATE_2": 1}
    assert len(stats.recent_activity) == 3
    assert stats.recent_activity[0].result == "failed"
    assert stats.end - stats.start == datetime.timedelta(days=7)


def test_stats_filters_by_merchant_and_window(session_factory):
    add_user(session_factory, 1, merchant_id=10)
    add_user(session_factory, 2, merchant_id=20)
    recorder = AccessRecorder(session_factory)
    now = utcnow()
    recorder.append(_entry(user_id=1, now=now, minutes_ago=5))
    recorder.append(_entry("failed", user_id=2, now=now, minutes_ago=5))
    recorder.append(_entry(user_id=1, now=now, minutes_ago=60 * 24 * 10))

    assert recorder.stats(now=now, merchant_id=10).total == 1
    assert recorder.stats(now=now, merchant_id=20).failed == 1
    wide = recorder.stats(start=now - datetime.timedelta(days=30), end=now)
    assert wide.total == 3
    empty = recorder.stats(now=now, device_id="GATE_9")
    assert (empty.total, empty.success_rate) == (0, 0.0)


def test_query_filters_sorts_and_paginates(session_factory):
    recorder = AccessRecorder(session_factory)
    now = utcnow()
    for minutes_ago in range(5):
        recorder.append(_entry(now=now, minutes_ago=minutes_ago, user_id=minutes_ago % 2))
    recorder.append(_entry("failed", now=now, minutes_ago=10, device_id="GATE_2", user_id=7))

    page = recorder.query(AccessQuery(page=1, page_size=4))
    assert page.total == 6
    assert page.total_pages == 2
    assert len(page.items) == 4
    stamps = [item.timestamp for item in page.items]
    assert stamps == sorted(stamps, reverse=True)

    oldest_first = recorder.query(AccessQuery(sort_order="asc", page_size=1))
    assert oldest_first.items[0].device_id == "GATE_2"

    assert recorder.query(AccessQuery(result="failed")).total == 1
    assert recorder.query(AccessQuery(user_id=1)).total == 2
    assert recorder.query(AccessQuery(device_id="GATE_1", start=now - datetime.timedelta(minutes=2))).total == 3
    assert recorder.query(AccessQuery(page=3, page_size=4)).items == []


def test_records_are_append_only(session_factory):
    recorder = AccessRecorder(session_factory)
    record = recorder.append(_entry())
    with session_factory() as db:
        row = db.get(AccessRecord, record.id)
        row.result = "failed"
        with pytest.raises(AppendOnlyViolation):
            db.commit()
        db.rollback()
        row = db.get(AccessRecord, record.id)
        db.delete(row)
        with pytest.raises(AppendOnlyViolation):
            db.commit()


class _FlakySessions:
    """Session factory that fails while `down` is set."""

    def __init__(self, factory):
        self._factory = factory
        self.down = False

    def __call__(self):
        if self.down:
            raise OperationalError("INSERT", {}, Exception("database is locked"))
        return self._factory()


def test_write_failure_is_parked_and_retried(session_factory):
    sessions = _FlakySessions(session_factory)
    recorder = AccessRecorder(sessions, max_pending=2)

    sessions.down = True
    assert recorder.append(_entry(device_id="A")) is None
    assert recorder.append(_entry(device_id="B")) is None
    assert recorder.append(_entry(device_id="C")) is None
    # bounded queue drops the oldest entry
    assert recorder.pending_count == 2
    assert recorder.retry_pending() == 0
    assert recorder.pending_count == 2

    sessions.down = False
    assert recorder.retry_pending() == 2
    assert recorder.pending_count == 0
    with session_factory() as db:
        assert sorted(r.device_id for r in db.query(AccessRecord).all()) == ["B", "C"]


def test_rejected_entry_is_dropped_not_parked(session_factory):
    recorder = AccessRecorder(session_factory)
    assert recorder.append(dataclasses.replace(_entry(), direction="IN")) is None
    assert recorder.pending_count == 0


def test_rejected_entry_does_not_block_the_retry_queue(session_factory):
    sessions = _FlakySessions(session_factory)
    recorder = AccessRecorder(sessions)

    sessions.down = True
    recorder.append(dataclasses.replace(_entry(device_id="BAD"), direction="IN"))
    recorder.append(_entry(device_id="GOOD"))
    assert recorder.pending_count == 2

    sessions.down = False
    assert recorder.retry_pending() == 1
    assert recorder.pending_count == 0
    with session_factory() as db:
        assert [r.device_id for r in db.query(AccessRecord).all()] == ["GOOD"]


def test_read_failure_is_infrastructure_error(session_factory):
    sessions = _FlakySessions(session_factory)
    sessions.down = True
    recorder = AccessRecorder(sessions)
    with pytest.raises(StoreUnavailableError):
        recorder.query(AccessQuery())
    with pytest.raises(StoreUnavailableError):
        recorder.stats()
