import dataclasses
import datetime
import threading
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from passgate.core.errors import CodeConflictError
from passgate.models import Base
from passgate.models.user import MerchantPermission, User
from passgate.models.visitor_application import VisitorApplication
from passgate.services.access_control import build_access_control
from passgate.services.codes import CodeGenerator
from passgate.services.directory import UserView
from passgate.services.passcode_store import NewPasscode, PasscodeRecord

SECRET = "test-signing-secret-0123456789abcdef"


def make_session_factory(url: str = "sqlite+pysqlite:///:memory:"):
    if url.endswith(":memory:"):
        engine = create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, future=True, connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class FakePasscodeStore:
    """Dict-backed store; the lock plays the role of the database row lock."""

    def __init__(self) -> None:
        self._rows: dict[int, PasscodeRecord] = {}
        self._lock = threading.Lock()
        self._next_id = 1
        self.increment_calls = 0

    def _replace(self, passcode_id: int, **changes) -> None:
        self._rows[passcode_id] = dataclasses.replace(self._rows[passcode_id], updated_at=utcnow(), **changes)

    def create(self, record: NewPasscode) -> PasscodeRecord:
        with self._lock:
            if any(row.code == record.code for row in self._rows.values()):
                raise CodeConflictError(record.code)
            now = utcnow()
            row = PasscodeRecord(
                id=self._next_id,
                user_id=record.user_id,
                code=record.code,
                type=record.type,
                status="active",
                valid_from=record.valid_from,
                valid_until=record.valid_until,
                usage_limit=record.usage_limit,
                usage_count=0,
                application_id=record.application_id,
                permissions=tuple(record.permissions),
                created_at=now,
                updated_at=now,
            )
            self._rows[row.id] = row
            self._next_id += 1
            return row

    def find_by_code(self, code: str) -> Optional[PasscodeRecord]:
        return next((row for row in self._rows.values() if row.code == code), None)

    def find_by_id(self, passcode_id: int) -> Optional[PasscodeRecord]:
        return self._rows.get(passcode_id)

    def find_active_by_user(self, user_id: int) -> Optional[PasscodeRecord]:
        active = [row for row in self._rows.values() if row.user_id == user_id and row.is_active]
        return max(active, key=lambda row: row.id) if active else None

    def atomic_increment_usage(self, passcode_id: int) -> bool:
        with self._lock:
            self.increment_calls += 1
            row = self._rows.get(passcode_id)
            if row is None or row.status != "active" or row.usage_count >= row.usage_limit:
                return False
            count = row.usage_count + 1
            self._replace(passcode_id, usage_count=count, status="expired" if count >= row.usage_limit else "active")
            return True

    def _transition(self, passcode_id: int, target: str) -> bool:
        with self._lock:
            row = self._rows.get(passcode_id)
            if row is None or row.status != "active":
                return False
            self._replace(passcode_id, status=target)
            return True

    def mark_expired(self, passcode_id: int) -> bool:
        return self._transition(passcode_id, "expired")

    def revoke(self, passcode_id: int) -> bool:
        return self._transition(passcode_id, "revoked")

    def revoke_active_for_user(self, user_id: int, *, before_id: Optional[int] = None) -> list[int]:
        ids = [
            row.id
            for row in list(self._rows.values())
            if row.user_id == user_id and row.is_active and (before_id is None or row.id < before_id)
        ]
        return [pid for pid in ids if self._transition(pid, "revoked")]

    def expire_overdue(self, now: datetime.datetime) -> int:
        ids = [row.id for row in list(self._rows.values()) if row.is_active and row.valid_until < now]
        return sum(1 for pid in ids if self._transition(pid, "expired"))

    def count_by_status(self, *, user_id: Optional[int] = None, passcode_type: Optional[str] = None) -> dict[str, int]:
        counts = {"active": 0, "expired": 0, "revoked": 0}
        for row in self._rows.values():
            if user_id is not None and row.user_id != user_id:
                continue
            if passcode_type and row.type != passcode_type:
                continue
            counts[row.status] += 1
        counts["total"] = sum(counts.values())
        return counts


class FakeUserDirectory:
    def __init__(self, *users: UserView) -> None:
        self.users = {user.id: user for user in users}

    def find_by_id(self, user_id: int) -> Optional[UserView]:
        return self.users.get(user_id)


class ListRecorder:
    def __init__(self) -> None:
        self.entries = []
        self._lock = threading.Lock()

    def append(self, entry):
        with self._lock:
            self.entries.append(entry)
        return None


@pytest.fixture
def codes() -> CodeGenerator:
    return CodeGenerator(SECRET)


@pytest.fixture
def fake_store() -> FakePasscodeStore:
    return FakePasscodeStore()


@pytest.fixture
def fake_users() -> FakeUserDirectory:
    return FakeUserDirectory(
        UserView(id=1, status="active", user_type="employee", merchant_id=10, name="Alice"),
        UserView(id=2, status="inactive", user_type="employee", name="Bob"),
        UserView(id=3, status="active", user_type="visitor", name="Vera"),
    )


@pytest.fixture
def recorder() -> ListRecorder:
    return ListRecorder()


@pytest.fixture
def session_factory():
    return make_session_factory()


def add_user(factory, user_id: int, *, status: str = "active", user_type: str = "employee", merchant_id=None, name=None):
    with factory() as db:
        db.add(User(id=user_id, status=status, user_type=user_type, merchant_id=merchant_id, name=name or f"user-{user_id}"))
        db.commit()


def add_permissions(factory, merchant_id: int, *codes: str) -> None:
    with factory() as db:
        for code in codes:
            db.add(MerchantPermission(merchant_id=merchant_id, permission_code=code))
        db.commit()


def add_application(factory, application_id: int, applicant_id: int, *, status: str = "approved", scheduled_time=None, duration_hours: int = 2, usage_limit=None):
    with factory() as db:
        db.add(
            VisitorApplication(
                id=application_id,
                applicant_id=applicant_id,
                status=status,
                scheduled_time=scheduled_time or utcnow(),
                duration_hours=duration_hours,
                usage_limit=usage_limit,
            )
        )
        db.commit()


@pytest.fixture
def control(session_factory):
    return build_access_control(session_factory, secret=SECRET)
