"""
Device liveness inferred from access traffic.

There is no heartbeat channel: a device counts as online when its most
recent access record is no older than the configured threshold.
"""

from __future__ import annotations

import datetime
import os
from dataclasses import dataclass
from typing import Optional

from .access_recorder import AccessRecorder

DEFAULT_ONLINE_THRESHOLD_SEC = 300


def _ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def _online_threshold() -> datetime.timedelta:
    try:
        seconds = int(os.getenv("DEVICE_ONLINE_THRESHOLD_SEC", str(DEFAULT_ONLINE_THRESHOLD_SEC)))
    except Exception:
        seconds = DEFAULT_ONLINE_THRESHOLD_SEC
    return datetime.timedelta(seconds=max(1, seconds))


@dataclass(frozen=True)
class DeviceStatus:
    device_id: str
    is_online: bool
    status: str  # active | offline | unknown
    last_activity: Optional[datetime.datetime]
    today_count: int
    current_hour_count: int


class DeviceStatusResolver:
    def __init__(self, recorder: AccessRecorder, *, online_threshold: Optional[datetime.timedelta] = None) -> None:
        self._recorder = recorder
        self._online_threshold = online_threshold

    @property
    def online_threshold(self) -> datetime.timedelta:
        if self._online_threshold is not None:
            return self._online_threshold
        return _online_threshold()

    def realtime_status(self, device_id: str, *, now: Optional[datetime.datetime] = None) -> DeviceStatus:
        now = _ensure_utc(now or datetime.datetime.now(datetime.timezone.utc))
        latest = self._recorder.latest_for_device(device_id)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        hour_start = now.replace(minute=0, second=0, microsecond=0)
        today_count = self._recorder.count(device_id=device_id, start=day_start, end=now)
        hour_count = self._recorder.count(device_id=device_id, start=hour_start, end=now)
        if latest is None:
            return DeviceStatus(
                device_id=device_id,
                is_online=False,
                status="unknown",
                last_activity=None,
                today_count=today_count,
                current_hour_count=hour_count,
            )
        last_activity = _ensure_utc(latest.timestamp)
        is_online = (now - last_activity) <= self.online_threshold
        return DeviceStatus(
            device_id=device_id,
            is_online=is_online,
            status="active" if is_online else "offline",
            last_activity=last_activity,
            today_count=today_count,
            current_hour_count=hour_count,
        )
