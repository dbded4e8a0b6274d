"""
Read-only mapping of visitor applications (approval workflow lives elsewhere).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class VisitorApplication(Base):
    __tablename__ = "visitor_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    applicant_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    merchant_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    status: Mapped[str] = mapped_column(String(16), index=True, nullable=False)  # pending | approved | rejected | ...
    scheduled_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_hours: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
