"""
Read-only mappings of the user directory tables.

Users and merchant permissions are owned by the account service; passgate
only reads them to decide whether a passcode holder is still allowed in and
which permission scopes a new passcode carries.
"""

from __future__ import annotations

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_type: Mapped[str] = mapped_column(String(32), nullable=False)  # employee | visitor | merchant_admin | ...
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False)  # active | inactive
    merchant_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)


class MerchantPermission(Base):
    __tablename__ = "merchant_permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    merchant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    permission_code: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (Index("ix_merchant_permissions_merchant_id", "merchant_id"),)
