"""
SQLAlchemy model base class for the passgate backend.

This package defines ORM models for passcodes and the access audit trail,
plus read-only mappings of the user, merchant permission and visitor
application tables owned by neighbouring services. All models should
inherit from the declarative `Base` defined here.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .passcode import Passcode  # noqa: E402,F401
from .access_record import AccessRecord  # noqa: E402,F401
from .user import User, MerchantPermission  # noqa: E402,F401
from .visitor_application import VisitorApplication  # noqa: E402,F401

__all__ = [
    "Base",

    # Credentials / audit
    "Passcode",
    "AccessRecord",

    # External (read-only)
    "User",
    "MerchantPermission",
    "VisitorApplication",
]
