"""
Passcode validation at access points.

Each call resolves the presented credential to a passcode, checks the
holder and the passcode state, and consumes one use through the store's
atomic conditional update. Every domain outcome is returned as a
`ValidationResult` and written to the access audit trail exactly once;
only infrastructure failures raise.

The engine keeps no state between calls. Concurrent validations of the
same passcode are serialised by the store's guarded UPDATE alone, so any
number of workers or processes can run it side by side.
"""

from __future__ import annotations

import datetime
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..core.errors import InfrastructureError
from ..models.access_record import DIRECTIONS
from .access_recorder import AccessEntry, AccessRecorder
from .codes import CodeGenerator, InvalidPayloadError
from .directory import UserDirectory
from .passcode_store import PasscodeRecord, PasscodeStore

logger = logging.getLogger("validation")


class FailReason(str, enum.Enum):
    PASSCODE_NOT_FOUND = "passcode_not_found"
    ACCOUNT_DISABLED = "account_disabled"
    PASSCODE_REVOKED = "passcode_revoked"
    PASSCODE_EXPIRED = "passcode_expired"
    USAGE_LIMIT_EXCEEDED = "usage_limit_exceeded"
    PAYLOAD_INVALID = "payload_invalid"


UNRESOLVED_REASONS = {FailReason.PASSCODE_NOT_FOUND, FailReason.PAYLOAD_INVALID}


def _ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def _mask(code: Optional[str]) -> str:
    if not code:
        return "-"
    return f"{code[:6]}…"


@dataclass(frozen=True)
class DeviceContext:
    device_id: str
    direction: str = "in"
    device_type: Optional[str] = None
    project_id: Optional[int] = None
    venue_id: Optional[int] = None
    floor_id: Optional[int] = None
    now: Optional[datetime.datetime] = None

    def __post_init__(self) -> None:
        if self.direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    user_id: Optional[int] = None
    user_type: Optional[str] = None
    user_name: Optional[str] = None
    passcode_id: Optional[int] = None
    permissions: tuple[str, ...] = ()
    reason: Optional[FailReason] = None

    @classmethod
    def failed(
        cls,
        reason: FailReason,
        *,
        passcode: Optional[PasscodeRecord] = None,
        user_id: Optional[int] = None,
    ) -> "ValidationResult":
        if user_id is None and passcode is not None:
            user_id = passcode.user_id
        return cls(
            valid=False,
            user_id=user_id,
            passcode_id=passcode.id if passcode else None,
            reason=reason,
        )


@dataclass(frozen=True)
class _Resolution:
    passcode: Optional[PasscodeRecord] = None
    reason: Optional[FailReason] = None


class ValidationEngine:
    def __init__(
        self,
        store: PasscodeStore,
        users: UserDirectory,
        codes: CodeGenerator,
        recorder: AccessRecorder,
        *,
        record_unresolved: bool = True,
    ) -> None:
        self._store = store
        self._users = users
        self._codes = codes
        self._recorder = recorder
        self._record_unresolved = record_unresolved

    # -- entry points -------------------------------------------------

    def validate(self, code: str, ctx: DeviceContext) -> ValidationResult:
        return self._run(ctx, lambda now: self._resolve_static(code), credential=code)

    def validate_qr(self, payload: str, ctx: DeviceContext) -> ValidationResult:
        return self._run(ctx, lambda now: self._resolve_qr(payload), credential=None)

    def validate_rolling(self, rolling_code: str, base_code: str, ctx: DeviceContext) -> ValidationResult:
        return self._run(
            ctx,
            lambda now: self._resolve_rolling(rolling_code, base_code, now),
            credential=base_code,
        )

    # -- resolution ---------------------------------------------------

    def _lookup(self, code: str) -> _Resolution:
        passcode = self._store.find_by_code(code) if code else None
        if passcode is None:
            return _Resolution(reason=FailReason.PASSCODE_NOT_FOUND)
        return _Resolution(passcode=passcode)

    def _resolve_static(self, code: str) -> _Resolution:
        return self._lookup((code or "").strip())

    def _resolve_qr(self, payload: str) -> _Resolution:
        try:
            decoded = self._codes.decode_qr(payload)
        except InvalidPayloadError as exc:
            logger.info("QR payload rejected: %s", exc)
            return _Resolution(reason=FailReason.PAYLOAD_INVALID)
        resolution = self._lookup(decoded.code)
        if resolution.passcode is not None and resolution.passcode.user_id != decoded.user_id:
            # Signed by us but bound to another owner: treat as forged content.
            return _Resolution(reason=FailReason.PAYLOAD_INVALID)
        return resolution

    def _resolve_rolling(self, rolling_code: str, base_code: str, now: datetime.datetime) -> _Resolution:
        base_code = (base_code or "").strip()
        if not self._codes.validate_rolling(rolling_code, base_code, now):
            return _Resolution(reason=FailReason.PAYLOAD_INVALID)
        return self._lookup(base_code)

    # -- state machine ------------------------------------------------

    def _run(
        self,
        ctx: DeviceContext,
        resolve: Callable[[datetime.datetime], _Resolution],
        *,
        credential: Optional[str],
    ) -> ValidationResult:
        now = _ensure_utc(ctx.now or datetime.datetime.now(datetime.timezone.utc))
        resolution = resolve(now)
        if resolution.passcode is None:
            result = ValidationResult.failed(resolution.reason or FailReason.PASSCODE_NOT_FOUND)
        else:
            result = self._evaluate(resolution.passcode, now)
        self._record(result, ctx, now)
        logger.info(
            "Access %s device=%s direction=%s passcode=%s code=%s reason=%s",
            "granted" if result.valid else "denied",
            ctx.device_id,
            ctx.direction,
            result.passcode_id,
            _mask(credential),
            result.reason.value if result.reason else None,
        )
        return result

    def _evaluate(self, passcode: PasscodeRecord, now: datetime.datetime) -> ValidationResult:
        user = self._users.find_by_id(passcode.user_id)
        if user is None or not user.is_active:
            return ValidationResult.failed(FailReason.ACCOUNT_DISABLED, passcode=passcode)

        if passcode.status == "revoked":
            return ValidationResult.failed(FailReason.PASSCODE_REVOKED, passcode=passcode)
        if passcode.status != "active":
            if passcode.usage_count >= passcode.usage_limit:
                return ValidationResult.failed(FailReason.USAGE_LIMIT_EXCEEDED, passcode=passcode)
            return ValidationResult.failed(FailReason.PASSCODE_EXPIRED, passcode=passcode)

        if now > passcode.valid_until:
            self._expire_best_effort(passcode)
            return ValidationResult.failed(FailReason.PASSCODE_EXPIRED, passcode=passcode)

        if not self._store.atomic_increment_usage(passcode.id):
            return ValidationResult.failed(self._lost_race_reason(passcode), passcode=passcode)

        return ValidationResult(
            valid=True,
            user_id=user.id,
            user_type=user.user_type,
            user_name=user.name,
            passcode_id=passcode.id,
            permissions=passcode.permissions,
        )

    def _expire_best_effort(self, passcode: PasscodeRecord) -> None:
        try:
            self._store.mark_expired(passcode.id)
        except InfrastructureError:
            # The sweeper flips it later; the attempt is still denied.
            logger.warning("Could not mark passcode expired passcode=%s", passcode.id)

    def _lost_race_reason(self, passcode: PasscodeRecord) -> FailReason:
        """Explain a guarded update that changed no row."""
        current = self._store.find_by_id(passcode.id)
        if current is not None and current.status == "revoked":
            return FailReason.PASSCODE_REVOKED
        if current is not None and current.is_active and current.usage_count >= current.usage_limit:
            self._expire_best_effort(current)
        return FailReason.USAGE_LIMIT_EXCEEDED

    # -- audit --------------------------------------------------------

    def _record(self, result: ValidationResult, ctx: DeviceContext, now: datetime.datetime) -> None:
        if result.reason in UNRESOLVED_REASONS and not self._record_unresolved:
            return
        self._recorder.append(
            AccessEntry(
                device_id=ctx.device_id,
                direction=ctx.direction,
                result="success" if result.valid else "failed",
                timestamp=now,
                user_id=result.user_id,
                passcode_id=result.passcode_id,
                device_type=ctx.device_type,
                fail_reason=result.reason.value if result.reason else None,
                project_id=ctx.project_id,
                venue_id=ctx.venue_id,
                floor_id=ctx.floor_id,
            )
        )
