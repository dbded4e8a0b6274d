"""
Passcode persistence: the store contract and its SQLAlchemy adapter.

The only way usage is ever consumed is `atomic_increment_usage`, a single
conditional UPDATE guarded by ``status = 'active' AND usage_count <
usage_limit`` that also flips the row to ``expired`` when the new count
reaches the limit. Nothing reads a counter and writes it back.
"""

from __future__ import annotations

import datetime
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Protocol, Sequence

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import CodeConflictError, StoreUnavailableError, log_exception
from ..models.passcode import Passcode

logger = logging.getLogger("passcode_store")

SessionFactory = Callable[[], Session]


def _ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class NewPasscode:
    user_id: int
    code: str
    type: str
    valid_from: datetime.datetime
    valid_until: datetime.datetime
    usage_limit: int
    permissions: tuple[str, ...] = ()
    application_id: Optional[int] = None


@dataclass(frozen=True)
class PasscodeRecord:
    id: int
    user_id: int
    code: str
    type: str
    status: str
    valid_from: datetime.datetime
    valid_until: datetime.datetime
    usage_limit: int
    usage_count: int
    application_id: Optional[int] = None
    permissions: tuple[str, ...] = field(default_factory=tuple)
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def remaining_uses(self) -> int:
        return max(0, self.usage_limit - self.usage_count)


class PasscodeStore(Protocol):
    def create(self, record: NewPasscode) -> PasscodeRecord: ...

    def find_by_code(self, code: str) -> Optional[PasscodeRecord]: ...

    def find_by_id(self, passcode_id: int) -> Optional[PasscodeRecord]: ...

    def find_active_by_user(self, user_id: int) -> Optional[PasscodeRecord]: ...

    def atomic_increment_usage(self, passcode_id: int) -> bool: ...

    def mark_expired(self, passcode_id: int) -> bool: ...

    def revoke(self, passcode_id: int) -> bool: ...

    def revoke_active_for_user(self, user_id: int, *, before_id: Optional[int] = None) -> list[int]: ...

    def expire_overdue(self, now: datetime.datetime) -> int: ...

    def count_by_status(self, *, user_id: Optional[int] = None, passcode_type: Optional[str] = None) -> dict[str, int]: ...


def to_record(row: Passcode) -> PasscodeRecord:
    return PasscodeRecord(
        id=row.id,
        user_id=row.user_id,
        code=row.code,
        type=row.type,
        status=row.status,
        valid_from=_ensure_utc(row.valid_from),
        valid_until=_ensure_utc(row.valid_until),
        usage_limit=row.usage_limit,
        usage_count=row.usage_count,
        application_id=row.application_id,
        permissions=tuple(row.permissions or ()),
        created_at=_ensure_utc(row.created_at) if row.created_at else None,
        updated_at=_ensure_utc(row.updated_at) if row.updated_at else None,
    )


class SqlPasscodeStore:
    """`PasscodeStore` over SQLAlchemy; one short-lived session per call."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str, **context) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except CodeConflictError:
            raise
        except SQLAlchemyError as exc:
            log_exception(logger, "Passcode store call failed", extra={"op": operation, **context}, exc=exc)
            raise StoreUnavailableError(f"passcode store unavailable ({operation})") from exc

    def create(self, record: NewPasscode) -> PasscodeRecord:
        now = _utcnow()
        row = Passcode(
            user_id=record.user_id,
            code=record.code,
            type=record.type,
            status="active",
            valid_from=record.valid_from,
            valid_until=record.valid_until,
            usage_limit=record.usage_limit,
            usage_count=0,
            application_id=record.application_id,
            permissions=list(record.permissions),
            created_at=now,
            updated_at=now,
        )
        with self._session("create", user_id=record.user_id) as db:
            db.add(row)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if self._code_exists(db, record.code):
                    raise CodeConflictError("passcode code already exists") from exc
                raise StoreUnavailableError("passcode insert rejected") from exc
            db.refresh(row)
            return to_record(row)

    @staticmethod
    def _code_exists(db: Session, code: str) -> bool:
        return db.execute(select(Passcode.id).where(Passcode.code == code)).first() is not None

    def find_by_code(self, code: str) -> Optional[PasscodeRecord]:
        with self._session("find_by_code") as db:
            row = db.query(Passcode).filter(Passcode.code == code).first()
            return to_record(row) if row else None

    def find_by_id(self, passcode_id: int) -> Optional[PasscodeRecord]:
        with self._session("find_by_id", passcode_id=passcode_id) as db:
            row = db.get(Passcode, passcode_id)
            return to_record(row) if row else None

    def find_active_by_user(self, user_id: int) -> Optional[PasscodeRecord]:
        with self._session("find_active_by_user", user_id=user_id) as db:
            row = (
                db.query(Passcode)
                .filter(Passcode.user_id == user_id, Passcode.status == "active")
                .order_by(Passcode.id.desc())
                .first()
            )
            return to_record(row) if row else None

    def atomic_increment_usage(self, passcode_id: int) -> bool:
        """Consume one use; False when the guard did not match (lost race, exhausted or inactive)."""
        stmt = (
            update(Passcode)
            .where(
                Passcode.id == passcode_id,
                Passcode.status == "active",
                Passcode.usage_count < Passcode.usage_limit,
            )
            # status first: MySQL evaluates SET assignments left to right.
            .ordered_values(
                (
                    Passcode.status,
                    case((Passcode.usage_count + 1 >= Passcode.usage_limit, "expired"), else_="active"),
                ),
                (Passcode.usage_count, Passcode.usage_count + 1),
                (Passcode.updated_at, _utcnow()),
            )
            .execution_options(synchronize_session=False)
        )
        with self._session("atomic_increment_usage", passcode_id=passcode_id) as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount == 1

    def _transition(self, operation: str, passcode_id: int, target: str) -> bool:
        stmt = (
            update(Passcode)
            .where(Passcode.id == passcode_id, Passcode.status == "active")
            .values(status=target, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        with self._session(operation, passcode_id=passcode_id) as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount == 1

    def mark_expired(self, passcode_id: int) -> bool:
        return self._transition("mark_expired", passcode_id, "expired")

    def revoke(self, passcode_id: int) -> bool:
        return self._transition("revoke", passcode_id, "revoked")

    def revoke_active_for_user(self, user_id: int, *, before_id: Optional[int] = None) -> list[int]:
        """Revoke the user's active passcodes; with `before_id`, only those older than it."""
        with self._session("revoke_active_for_user", user_id=user_id) as db:
            stmt = select(Passcode.id).where(Passcode.user_id == user_id, Passcode.status == "active")
            if before_id is not None:
                stmt = stmt.where(Passcode.id < before_id)
            ids = [row[0] for row in db.execute(stmt).all()]
            if not ids:
                return []
            db.execute(
                update(Passcode)
                .where(Passcode.id.in_(ids), Passcode.status == "active")
                .values(status="revoked", updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return ids

    def expire_overdue(self, now: datetime.datetime) -> int:
        stmt = (
            update(Passcode)
            .where(Passcode.status == "active", Passcode.valid_until < now)
            .values(status="expired", updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        with self._session("expire_overdue") as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount or 0

    def count_by_status(self, *, user_id: Optional[int] = None, passcode_type: Optional[str] = None) -> dict[str, int]:
        with self._session("count_by_status") as db:
            query = db.query(Passcode.status, func.count(Passcode.id))
            if user_id is not None:
                query = query.filter(Passcode.user_id == user_id)
            if passcode_type:
                query = query.filter(Passcode.type == passcode_type)
            rows: Sequence = query.group_by(Passcode.status).all()
        counts = {"active": 0, "expired": 0, "revoked": 0}
        for status, count in rows:
            counts[status] = int(count)
        counts["total"] = sum(counts[key] for key in ("active", "expired", "revoked"))
        return counts
