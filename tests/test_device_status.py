import datetime

from passgate.services.access_recorder import AccessEntry, AccessRecorder
from passgate.services.device_status import DeviceStatusResolver

NOW = datetime.datetime(2026, 10, 19, 14, 30, tzinfo=datetime.timezone.utc)


def _seen(recorder, device_id, ago):
    recorder.append(
        AccessEntry(device_id=device_id, direction="in", result="success", timestamp=NOW - ago, user_id=1)
    )


def test_recent_traffic_means_online(session_factory):
    recorder = AccessRecorder(session_factory)
    _seen(recorder, "GATE_1", datetime.timedelta(minutes=2))

    status = DeviceStatusResolver(recorder).realtime_status("GATE_1", now=NOW)
    assert status.is_online is True
    assert status.status == "active"
    assert status.last_activity == NOW - datetime.timedelta(minutes=2)
    assert status.today_count == 1
    assert status.current_hour_count == 1


def test_stale_traffic_means_offline(session_factory):
    recorder = AccessRecorder(session_factory)
    _seen(recorder, "GATE_1", datetime.timedelta(hours=2))
    _seen(recorder, "GATE_1", datetime.timedelta(hours=3))

    status = DeviceStatusResolver(recorder).realtime_status("GATE_1", now=NOW)
    assert status.is_online is False
    assert status.status == "offline"
    assert status.today_count == 2
    assert status.current_hour_count == 0


def test_latest_record_wins(session_factory):
    recorder = AccessRecorder(session_factory)
    _seen(recorder, "GATE_1", datetime.timedelta(hours=2))
    _seen(recorder, "GATE_1", datetime.timedelta(seconds=30))
    _seen(recorder, "GATE_2", datetime.timedelta(seconds=5))

    status = DeviceStatusResolver(recorder).realtime_status("GATE_1", now=NOW)
    assert status.is_online is True
    assert status.last_activity == NOW - datetime.timedelta(seconds=30)


def test_never_seen_device_is_unknown(session_factory):
    status = DeviceStatusResolver(AccessRecorder(session_factory)).realtime_status("GATE_X", now=NOW)
    assert status.is_online is False
    assert status.status == "unknown"
    assert status.last_activity is None
    assert status.today_count == 0


def test_threshold_from_environment(session_factory, monkeypatch):
    recorder = AccessRecorder(session_factory)
    _seen(recorder, "GATE_1", datetime.timedelta(minutes=2))
    monkeypatch.setenv("DEVICE_ONLINE_THRESHOLD_SEC", "60")
    assert DeviceStatusResolver(recorder).realtime_status("GATE_1", now=NOW).is_online is False

    explicit = DeviceStatusResolver(recorder, online_threshold=datetime.timedelta(minutes=10))
    assert explicit.realtime_status("GATE_1", now=NOW).is_online is True


def test_zero_threshold_is_respected(session_factory, monkeypatch):
    recorder = AccessRecorder(session_factory)
    _seen(recorder, "GATE_1", datetime.timedelta(seconds=1))
    monkeypatch.setenv("DEVICE_ONLINE_THRESHOLD_SEC", "3600")

    resolver = DeviceStatusResolver(recorder, online_threshold=datetime.timedelta(0))
    assert resolver.online_threshold == datetime.timedelta(0)
    assert resolver.realtime_status("GATE_1", now=NOW).is_online is False
