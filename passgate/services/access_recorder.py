"""
Append-only access audit trail.

`append` never raises for store failures: the validation decision has
already been made by the time it is called, so a failed write is logged and
parked in a bounded in-process queue that `retry_pending` (driven by the
sweeper thread) drains later. Entries the database rejects outright
(constraint or data errors) are logged and dropped, never parked.
"""

from __future__ import annotations

import datetime
import logging
import os
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Callable, Iterator, Optional

from sqlalchemy import func
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.errors import StoreUnavailableError, log_exception
from ..core.pagination import total_pages
from ..models.access_record import AccessRecord
from ..models.user import User

logger = logging.getLogger("access_recorder")

SORTABLE_FIELDS = {
    "timestamp": AccessRecord.timestamp,
    "id": AccessRecord.id,
    "device_id": AccessRecord.device_id,
    "user_id": AccessRecord.user_id,
    "result": AccessRecord.result,
}
DEFAULT_STATS_WINDOW = datetime.timedelta(days=7)
RECENT_ACTIVITY_LIMIT = 10


def _ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt.astimezone(datetime.timezone.utc)


def _max_pending() -> int:
    try:
        return max(1, int(os.getenv("ACCESS_AUDIT_MAX_PENDING", "1000")))
    except Exception:
        return 1000


@dataclass(frozen=True)
class AccessEntry:
    device_id: str
    direction: str
    result: str
    timestamp: datetime.datetime
    user_id: Optional[int] = None
    passcode_id: Optional[int] = None
    device_type: Optional[str] = None
    fail_reason: Optional[str] = None
    project_id: Optional[int] = None
    venue_id: Optional[int] = None
    floor_id: Optional[int] = None


@dataclass
class AccessQuery:
    user_id: Optional[int] = None
    device_id: Optional[str] = None
    result: Optional[str] = None
    start: Optional[datetime.datetime] = None
    end: Optional[datetime.datetime] = None
    page: int = 1
    page_size: int = 10
    sort_by: str = "timestamp"
    sort_order: str = "desc"


@dataclass
class AccessPage:
    items: list[AccessRecord]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return total_pages(self.total, self.page_size)


@dataclass
class AccessStats:
    total: int
    success: int
    failed: int
    success_rate: float
    start: datetime.datetime
    end: datetime.datetime
    by_device: dict[str, int] = field(default_factory=dict)
    recent_activity: list[AccessRecord] = field(default_factory=list)


def success_rate(success: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(success / total * 100, 2)


class AccessRecorder:
    def __init__(self, session_factory: Callable[[], Session], *, max_pending: Optional[int] = None) -> None:
        self._session_factory = session_factory
        self._pending: deque[AccessEntry] = deque()
        self._pending_lock = threading.Lock()
        self._max_pending = max_pending or _max_pending()

    # -- writes -------------------------------------------------------

    def _insert(self, entry: AccessEntry) -> AccessRecord:
        with self._session_factory() as db:
            record = AccessRecord(**asdict(entry))
            db.add(record)
            db.commit()
            db.refresh(record)
            return record

    def append(self, entry: AccessEntry) -> Optional[AccessRecord]:
        """Write one immutable record; on failure queue it for retry and return None."""
        try:
            return self._insert(entry)
        except (IntegrityError, DataError) as exc:
            self._reject(entry, exc)
            return None
        except SQLAlchemyError as exc:
            log_exception(
                logger,
                "Access record write failed; queued for retry",
                extra={"device_id": entry.device_id, "result": entry.result, "passcode_id": entry.passcode_id},
                exc=exc,
            )
            self._park(entry)
            return None

    def _reject(self, entry: AccessEntry, exc: Exception) -> None:
        log_exception(
            logger,
            "Access record rejected by the database; dropped",
            extra={"device_id": entry.device_id, "result": entry.result, "passcode_id": entry.passcode_id},
            exc=exc,
        )

    def _park(self, entry: AccessEntry) -> None:
        with self._pending_lock:
            if len(self._pending) >= self._max_pending:
                dropped = self._pending.popleft()
                logger.error(
                    "Access audit retry queue full (max=%s); dropping oldest entry device=%s ts=%s",
                    self._max_pending,
                    dropped.device_id,
                    dropped.timestamp.isoformat(),
                )
            self._pending.append(entry)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def retry_pending(self) -> int:
        """Flush queued entries in arrival order.

        Rejected entries are dropped and the flush continues; a transient
        failure puts the entry back at the head and ends the cycle.
        """
        written = 0
        while True:
            with self._pending_lock:
                if not self._pending:
                    break
                entry = self._pending.popleft()
            try:
                self._insert(entry)
            except (IntegrityError, DataError) as exc:
                self._reject(entry, exc)
                continue
            except SQLAlchemyError:
                logger.warning("Access audit retry failed; %s entries still pending", self.pending_count + 1)
                with self._pending_lock:
                    self._pending.appendleft(entry)
                break
            written += 1
        if written:
            logger.info("Access audit retry flushed entries=%s", written)
        return written

    # -- reads --------------------------------------------------------

    @contextmanager
    def _read(self, operation: str) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            log_exception(logger, "Access record query failed", extra={"op": operation}, exc=exc)
            raise StoreUnavailableError(f"access records unavailable ({operation})") from exc

    @staticmethod
    def _filtered(db: Session, q: AccessQuery) -> Query:
        query = db.query(AccessRecord)
        if q.user_id is not None:
            query = query.filter(AccessRecord.user_id == q.user_id)
        if q.device_id:
            query = query.filter(AccessRecord.device_id == q.device_id)
        if q.result:
            query = query.filter(AccessRecord.result == q.result)
        if q.start is not None:
            query = query.filter(AccessRecord.timestamp >= q.start)
        if q.end is not None:
            query = query.filter(AccessRecord.timestamp <= q.end)
        return query

    def query(self, q: AccessQuery) -> AccessPage:
        page = max(1, q.page)
        page_size = max(1, q.page_size)
        column = SORTABLE_FIELDS.get(q.sort_by, AccessRecord.timestamp)
        descending = (q.sort_order or "desc").lower() != "asc"
        ordering = [column.desc() if descending else column.asc()]
        if column is not AccessRecord.id:
            ordering.append(AccessRecord.id.desc() if descending else AccessRecord.id.asc())
        with self._read("query") as db:
            base = self._filtered(db, q)
            total = base.count()
            items = base.order_by(*ordering).offset((page - 1) * page_size).limit(page_size).all()
        return AccessPage(items=items, total=total, page=page, page_size=page_size)

    def stats(
        self,
        *,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
        merchant_id: Optional[int] = None,
        device_id: Optional[str] = None,
        now: Optional[datetime.datetime] = None,
    ) -> AccessStats:
        end = _ensure_utc(end or now or datetime.datetime.now(datetime.timezone.utc))
        start = _ensure_utc(start) if start else end - DEFAULT_STATS_WINDOW
        with self._read("stats") as db:
            base = db.query(AccessRecord).filter(AccessRecord.timestamp >= start, AccessRecord.timestamp <= end)
            if device_id:
                base = base.filter(AccessRecord.device_id == device_id)
            if merchant_id is not None:
                base = base.join(User, User.id == AccessRecord.user_id).filter(User.merchant_id == merchant_id)
            counts = dict(
                base.with_entities(AccessRecord.result, func.count(AccessRecord.id))
                .group_by(AccessRecord.result)
                .all()
            )
            by_device = dict(
                base.with_entities(AccessRecord.device_id, func.count(AccessRecord.id))
                .group_by(AccessRecord.device_id)
                .all()
            )
            recent = (
                base.order_by(AccessRecord.timestamp.desc(), AccessRecord.id.desc())
                .limit(RECENT_ACTIVITY_LIMIT)
                .all()
            )
        success = int(counts.get("success", 0))
        failed = int(counts.get("failed", 0))
        total = success + failed
        return AccessStats(
            total=total,
            success=success,
            failed=failed,
            success_rate=success_rate(success, total),
            start=start,
            end=end,
            by_device={str(k): int(v) for k, v in by_device.items()},
            recent_activity=recent,
        )

    def latest_for_device(self, device_id: str) -> Optional[AccessRecord]:
        with self._read("latest_for_device") as db:
            return (
                db.query(AccessRecord)
                .filter(AccessRecord.device_id == device_id)
                .order_by(AccessRecord.timestamp.desc(), AccessRecord.id.desc())
                .first()
            )

    def count(
        self,
        *,
        device_id: Optional[str] = None,
        user_id: Optional[int] = None,
        start: Optional[datetime.datetime] = None,
        end: Optional[datetime.datetime] = None,
    ) -> int:
        with self._read("count") as db:
            return self._filtered(db, AccessQuery(device_id=device_id, user_id=user_id, start=start, end=end)).count()
