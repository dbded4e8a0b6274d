"""
Lookups against collaborators this service reads but does not own.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import StoreUnavailableError, log_exception
from ..models.user import MerchantPermission, User
from ..models.visitor_application import VisitorApplication

logger = logging.getLogger("directory")

BASIC_ACCESS = "basic_access"
MERCHANT_SCOPED_TYPES = {"employee", "merchant_admin"}


def _ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


@dataclass(frozen=True)
class UserView:
    id: int
    status: str
    user_type: str
    merchant_id: Optional[int] = None
    name: Optional[str] = None
    permissions: tuple[str, ...] = (BASIC_ACCESS,)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True)
class ApplicationView:
    id: int
    applicant_id: int
    status: str
    valid_from: datetime.datetime
    valid_until: datetime.datetime
    usage_limit: Optional[int] = None

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"


class UserDirectory(Protocol):
    def find_by_id(self, user_id: int) -> Optional[UserView]: ...


class VisitorApplicationStore(Protocol):
    def find_by_id(self, application_id: int) -> Optional[ApplicationView]: ...


class SqlUserDirectory:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def find_by_id(self, user_id: int) -> Optional[UserView]:
        try:
            with self._session_factory() as db:
                user = db.get(User, user_id)
                if user is None:
                    return None
                permissions: tuple[str, ...] = (BASIC_ACCESS,)
                if user.user_type in MERCHANT_SCOPED_TYPES and user.merchant_id is not None:
                    codes = [
                        row[0]
                        for row in db.query(MerchantPermission.permission_code)
                        .filter(MerchantPermission.merchant_id == user.merchant_id)
                        .order_by(MerchantPermission.id.asc())
                        .all()
                    ]
                    if codes:
                        permissions = tuple(dict.fromkeys(codes))
                return UserView(
                    id=user.id,
                    status=user.status,
                    user_type=user.user_type,
                    merchant_id=user.merchant_id,
                    name=user.name,
                    permissions=permissions,
                )
        except SQLAlchemyError as exc:
            log_exception(logger, "User lookup failed", extra={"user_id": user_id}, exc=exc)
            raise StoreUnavailableError("user directory unavailable") from exc


class SqlVisitorApplicationStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def find_by_id(self, application_id: int) -> Optional[ApplicationView]:
        try:
            with self._session_factory() as db:
                row = db.get(VisitorApplication, application_id)
                if row is None:
                    return None
                start = _ensure_utc(row.scheduled_time)
                return ApplicationView(
                    id=row.id,
                    applicant_id=row.applicant_id,
                    status=row.status,
                    valid_from=start,
                    valid_until=start + datetime.timedelta(hours=row.duration_hours or 0),
                    usage_limit=row.usage_limit,
                )
        except SQLAlchemyError as exc:
            log_exception(logger, "Visitor application lookup failed", extra={"application_id": application_id}, exc=exc)
            raise StoreUnavailableError("visitor application store unavailable") from exc
