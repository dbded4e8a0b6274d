"""
ORM model for passcodes.

A passcode is never deleted: it leaves the `active` state exactly once,
either by expiry (time or quota) or by revocation, and stays there so the
access audit trail keeps pointing at it.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

PASSCODE_TYPES = ("employee", "visitor")


class Passcode(Base):
    __tablename__ = "passcodes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    code: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # employee | visitor
    status: Mapped[str] = mapped_column(String(16), index=True, default="active", nullable=False)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    usage_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    application_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    permissions: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("usage_limit >= 1", name="ck_passcodes_usage_limit_positive"),
        CheckConstraint("usage_count >= 0", name="ck_passcodes_usage_count_non_negative"),
        CheckConstraint("usage_count <= usage_limit", name="ck_passcodes_usage_within_limit"),
        CheckConstraint("status IN ('active', 'expired', 'revoked')", name="ck_passcodes_status"),
        CheckConstraint("type IN ('employee', 'visitor')", name="ck_passcodes_type"),
        Index("ix_passcodes_user_status", "user_id", "status"),
    )
