"""
ORM model for the access audit trail.

One row per validation attempt at an access point. Rows are immutable:
the ORM refuses updates and deletes, and nothing in this service issues
them in SQL either.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

DIRECTIONS = ("in", "out")


class AccessRecord(Base):
    __tablename__ = "access_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Null when the presented credential never resolved to a passcode.
    user_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    passcode_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    device_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    device_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    direction: Mapped[str] = mapped_column(String(8), nullable=False, default="in")
    result: Mapped[str] = mapped_column(String(16), nullable=False)
    fail_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    venue_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    floor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)

    __table_args__ = (
        CheckConstraint("direction IN ('in', 'out')", name="ck_access_records_direction"),
        CheckConstraint(
            "(result = 'success' AND fail_reason IS NULL) OR (result = 'failed' AND fail_reason IS NOT NULL)",
            name="ck_access_records_fail_reason",
        ),
        Index("ix_access_records_device_timestamp", "device_id", "timestamp"),
    )


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(AccessRecord, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise AppendOnlyViolation("access_records is append-only; updates are not allowed")


@event.listens_for(AccessRecord, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise AppendOnlyViolation("access_records is append-only; deletes are not allowed")
