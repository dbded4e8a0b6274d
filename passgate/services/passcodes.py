"""
Passcode issuance and lifecycle operations.

A user holds at most one active passcode: the new passcode is stored
first, then every older active passcode of that user is revoked. A failed
insert leaves the previous passcode untouched, and concurrent issues for
the same user settle on the newest row. Codes are minted by the
`CodeGenerator` and made unique by the store; a collision simply draws a
fresh code.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from ..core.errors import (
    AccountDisabledError,
    ApplicationNotApprovedError,
    ApplicationNotFoundError,
    CodeConflictError,
    PasscodeError,
    PasscodeNotFoundError,
    StoreUnavailableError,
    UserNotFoundError,
)
from ..models.passcode import PASSCODE_TYPES
from .codes import CodeGenerator
from .directory import UserDirectory, UserView, VisitorApplicationStore
from .passcode_store import NewPasscode, PasscodeRecord, PasscodeStore

logger = logging.getLogger("passcodes")

MAX_CODE_ATTEMPTS = 5


def _ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class IssueDefaults:
    valid_for: datetime.timedelta
    usage_limit: int


@dataclass
class IssueOptions:
    usage_limit: Optional[int] = None
    valid_for: Optional[datetime.timedelta] = None
    application_id: Optional[int] = None
    permissions: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class PasscodeInfo:
    passcode: PasscodeRecord
    user: Optional[UserView]


@dataclass(frozen=True)
class PasscodeCredentials:
    passcode: PasscodeRecord
    qr_payload: str
    rolling_code: str
    rolling_valid_until: datetime.datetime


class PasscodeService:
    def __init__(
        self,
        store: PasscodeStore,
        users: UserDirectory,
        codes: CodeGenerator,
        *,
        applications: Optional[VisitorApplicationStore] = None,
        defaults: Optional[dict[str, IssueDefaults]] = None,
        min_application_validity: datetime.timedelta = datetime.timedelta(minutes=30),
    ) -> None:
        self._store = store
        self._users = users
        self._codes = codes
        self._applications = applications
        self._defaults = defaults or {
            "employee": IssueDefaults(datetime.timedelta(minutes=480), 50),
            "visitor": IssueDefaults(datetime.timedelta(minutes=120), 5),
        }
        self._min_application_validity = min_application_validity

    # -- issuance -----------------------------------------------------

    def _require_user(self, user_id: int) -> UserView:
        user = self._users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError(f"user {user_id} not found")
        if not user.is_active:
            raise AccountDisabledError(f"user {user_id} is disabled")
        return user

    def _apply_application(self, options: IssueOptions, now: datetime.datetime) -> IssueOptions:
        if options.application_id is None:
            return options
        if self._applications is None:
            raise ApplicationNotFoundError("visitor applications are not available")
        application = self._applications.find_by_id(options.application_id)
        if application is None:
            raise ApplicationNotFoundError(f"visitor application {options.application_id} not found")
        if not application.is_approved:
            raise ApplicationNotApprovedError(f"visitor application {application.id} is not approved")
        valid_for = options.valid_for
        if valid_for is None:
            valid_for = max(application.valid_until - now, self._min_application_validity)
        return IssueOptions(
            usage_limit=options.usage_limit if options.usage_limit is not None else application.usage_limit,
            valid_for=valid_for,
            application_id=application.id,
            permissions=options.permissions,
        )

    def issue(
        self,
        user_id: int,
        passcode_type: str,
        options: Optional[IssueOptions] = None,
        *,
        now: Optional[datetime.datetime] = None,
    ) -> PasscodeRecord:
        if passcode_type not in PASSCODE_TYPES:
            raise ValueError(f"unsupported passcode type: {passcode_type}")
        now = _ensure_utc(now or _utcnow())
        user = self._require_user(user_id)
        options = self._apply_application(options or IssueOptions(), now)
        defaults = self._defaults[passcode_type]
        usage_limit = options.usage_limit if options.usage_limit is not None else defaults.usage_limit
        if usage_limit < 1:
            raise ValueError("usage_limit must be at least 1")
        valid_for = options.valid_for if options.valid_for is not None else defaults.valid_for
        if valid_for <= datetime.timedelta(0):
            raise ValueError("validity must be positive")
        permissions = tuple(dict.fromkeys([*user.permissions, *options.permissions]))

        created = self._create_unique(user_id, passcode_type, now, valid_for, usage_limit, permissions, options)
        # Newest wins: only passcodes older than this one are revoked.
        revoked = self._store.revoke_active_for_user(user_id, before_id=created.id)
        if revoked:
            logger.info("Revoked prior passcodes user=%s ids=%s", user_id, revoked)
        logger.info(
            "Issued passcode id=%s user=%s type=%s limit=%s valid_until=%s",
            created.id,
            user_id,
            passcode_type,
            usage_limit,
            created.valid_until.isoformat(),
        )
        return created

    def _create_unique(
        self,
        user_id: int,
        passcode_type: str,
        now: datetime.datetime,
        valid_for: datetime.timedelta,
        usage_limit: int,
        permissions: tuple[str, ...],
        options: IssueOptions,
    ) -> PasscodeRecord:
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            record = NewPasscode(
                user_id=user_id,
                code=self._codes.new_static_code(user_id, passcode_type),
                type=passcode_type,
                valid_from=now,
                valid_until=now + valid_for,
                usage_limit=usage_limit,
                permissions=permissions,
                application_id=options.application_id,
            )
            try:
                return self._store.create(record)
            except CodeConflictError:
                logger.warning("Passcode code collision user=%s attempt=%s", user_id, attempt)
        raise StoreUnavailableError("could not allocate a unique passcode code")

    def refresh(self, user_id: int, *, now: Optional[datetime.datetime] = None) -> PasscodeRecord:
        """Issue a fresh passcode of the matching type; the previous one is revoked once it exists."""
        user = self._require_user(user_id)
        passcode_type = "visitor" if user.user_type == "visitor" else "employee"
        return self.issue(user_id, passcode_type, now=now)

    def issue_for_application(self, application_id: int, *, now: Optional[datetime.datetime] = None) -> PasscodeRecord:
        if self._applications is None:
            raise ApplicationNotFoundError("visitor applications are not available")
        application = self._applications.find_by_id(application_id)
        if application is None:
            raise ApplicationNotFoundError(f"visitor application {application_id} not found")
        return self.issue(
            application.applicant_id,
            "visitor",
            IssueOptions(application_id=application_id),
            now=now,
        )

    def batch_issue(
        self,
        user_ids: Iterable[int],
        passcode_type: str,
        options: Optional[IssueOptions] = None,
        *,
        now: Optional[datetime.datetime] = None,
    ) -> list[PasscodeRecord]:
        issued: list[PasscodeRecord] = []
        for user_id in user_ids:
            try:
                issued.append(self.issue(user_id, passcode_type, options, now=now))
            except PasscodeError as exc:
                logger.warning("Batch issue skipped user=%s: %s", user_id, exc)
        return issued

    # -- lookups ------------------------------------------------------

    def current(self, user_id: int) -> Optional[PasscodeRecord]:
        return self._store.find_active_by_user(user_id)

    def get(self, passcode_id: int) -> PasscodeRecord:
        passcode = self._store.find_by_id(passcode_id)
        if passcode is None:
            raise PasscodeNotFoundError(f"passcode {passcode_id} not found")
        return passcode

    def info(self, code: str) -> PasscodeInfo:
        passcode = self._store.find_by_code(code)
        if passcode is None:
            raise PasscodeNotFoundError("passcode not found")
        return PasscodeInfo(passcode=passcode, user=self._users.find_by_id(passcode.user_id))

    def credentials(self, passcode_id: int, *, now: Optional[datetime.datetime] = None) -> PasscodeCredentials:
        """QR payload and the current rolling code for a passcode."""
        now = _ensure_utc(now or _utcnow())
        passcode = self.get(passcode_id)
        return PasscodeCredentials(
            passcode=passcode,
            qr_payload=self._codes.encode_qr(passcode),
            rolling_code=self._codes.rolling_code(passcode.code, now),
            rolling_valid_until=self._codes.rolling_valid_until(now),
        )

    # -- lifecycle ----------------------------------------------------

    def revoke(self, passcode_id: int) -> PasscodeRecord:
        self.get(passcode_id)
        if self._store.revoke(passcode_id):
            logger.info("Revoked passcode id=%s", passcode_id)
        return self.get(passcode_id)

    def expire_overdue(self, *, now: Optional[datetime.datetime] = None) -> int:
        expired = self._store.expire_overdue(_ensure_utc(now or _utcnow()))
        if expired:
            logger.info("Expired overdue passcodes count=%s", expired)
        return expired

    def statistics(self, *, user_id: Optional[int] = None, passcode_type: Optional[str] = None) -> dict[str, int]:
        return self._store.count_by_status(user_id=user_id, passcode_type=passcode_type)
