"""
Operation surface consumed by the HTTP layer, and its default wiring.
"""

from __future__ import annotations

import datetime
import functools
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .access_recorder import AccessPage, AccessQuery, AccessRecorder, AccessStats
from .codes import CodeGenerator
from .device_status import DeviceStatus, DeviceStatusResolver
from .directory import SqlUserDirectory, SqlVisitorApplicationStore
from .passcode_store import PasscodeRecord, SqlPasscodeStore
from .passcodes import IssueDefaults, IssueOptions, PasscodeInfo, PasscodeService
from .validation import DeviceContext, ValidationEngine, ValidationResult


@dataclass
class AccessControl:
    passcodes: PasscodeService
    engine: ValidationEngine
    recorder: AccessRecorder
    devices: DeviceStatusResolver

    def validate(self, code: str, ctx: DeviceContext) -> ValidationResult:
        return self.engine.validate(code, ctx)

    def validate_qr(self, payload: str, ctx: DeviceContext) -> ValidationResult:
        return self.engine.validate_qr(payload, ctx)

    def validate_rolling(self, rolling_code: str, base_code: str, ctx: DeviceContext) -> ValidationResult:
        return self.engine.validate_rolling(rolling_code, base_code, ctx)

    def issue(self, user_id: int, passcode_type: str, options: Optional[IssueOptions] = None) -> PasscodeRecord:
        return self.passcodes.issue(user_id, passcode_type, options)

    def refresh(self, user_id: int) -> PasscodeRecord:
        return self.passcodes.refresh(user_id)

    def info(self, code: str) -> PasscodeInfo:
        return self.passcodes.info(code)

    def list_access(self, query: AccessQuery) -> AccessPage:
        return self.recorder.query(query)

    def access_stats(
        self,
        *,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
        merchant_id: Optional[int] = None,
        device_id: Optional[str] = None,
    ) -> AccessStats:
        return self.recorder.stats(start=start, end=end, merchant_id=merchant_id, device_id=device_id)

    def device_status(self, device_id: str) -> DeviceStatus:
        return self.devices.realtime_status(device_id)

    def user_today_count(self, user_id: int, *, now: Optional[datetime.datetime] = None) -> int:
        now = now or datetime.datetime.now(datetime.timezone.utc)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return self.recorder.count(user_id=user_id, start=day_start, end=now)


def build_access_control(
    session_factory: Callable[[], Session],
    *,
    secret: str,
    step_seconds: int = 30,
    drift_steps: int = 1,
    digits: int = 6,
    defaults: Optional[dict[str, IssueDefaults]] = None,
    min_application_validity: datetime.timedelta = datetime.timedelta(minutes=30),
    record_unresolved: bool = True,
) -> AccessControl:
    codes = CodeGenerator(secret, step_seconds=step_seconds, drift_steps=drift_steps, digits=digits)
    store = SqlPasscodeStore(session_factory)
    users = SqlUserDirectory(session_factory)
    recorder = AccessRecorder(session_factory)
    return AccessControl(
        passcodes=PasscodeService(
            store,
            users,
            codes,
            applications=SqlVisitorApplicationStore(session_factory),
            defaults=defaults,
            min_application_validity=min_application_validity,
        ),
        engine=ValidationEngine(store, users, codes, recorder, record_unresolved=record_unresolved),
        recorder=recorder,
        devices=DeviceStatusResolver(recorder),
    )


@functools.lru_cache(maxsize=1)
def get_access_control() -> AccessControl:
    """Process-wide instance bound to the configured database (FastAPI dependency)."""
    from ..core.config import settings, signing_secret
    from ..core.db import SessionLocal

    return build_access_control(
        SessionLocal,
        secret=signing_secret(),
        step_seconds=settings.rolling_code_step_sec,
        drift_steps=settings.rolling_code_drift_steps,
        digits=settings.rolling_code_digits,
        defaults={
            "employee": IssueDefaults(
                datetime.timedelta(minutes=settings.passcode_employee_duration_min),
                settings.passcode_employee_usage_limit,
            ),
            "visitor": IssueDefaults(
                datetime.timedelta(minutes=settings.passcode_visitor_duration_min),
                settings.passcode_visitor_usage_limit,
            ),
        },
        min_application_validity=datetime.timedelta(minutes=settings.passcode_min_application_min),
        record_unresolved=settings.record_unresolved_attempts,
    )
